"""Operation requests sent to the trading backend.

The backend builds the venue-specific transactions; this module only shapes
the request body and validates caller input before any network call.
"""

from enum import Enum
from typing import Any, Mapping, Optional, Sequence

from pydantic import BaseModel, Field

DEFAULT_SLIPPAGE_BPS = 9900


class OperationAction(str, Enum):
    """Target action chosen by the caller."""
    BUY = "buy"
    SELL = "sell"
    CREATE = "create"


class OperationRequest(BaseModel):
    """Parameters for one buy/sell/create operation."""

    token_address: str = Field(default="", description="Token mint address (buy/sell)")
    amount: Optional[float] = Field(None, description="SOL amount to spend (buy)")
    sell_percent: Optional[float] = Field(None, description="Percent of holdings to sell")
    tokens_amount: Optional[float] = Field(None, description="Exact token amount to sell")
    input_mint: Optional[str] = Field(None, description="Non-SOL input mint (buy)")
    output_mint: Optional[str] = Field(None, description="Non-SOL output mint (sell)")
    slippage_bps: Optional[int] = Field(None, description="Slippage in basis points")
    fee_tip_lamports: Optional[int] = Field(None, description="Relay tip in lamports")
    extra: dict[str, Any] = Field(
        default_factory=dict,
        description="Venue-specific fields passed through unchanged (e.g. create metadata)",
    )

    def to_payload(
        self,
        action: OperationAction,
        wallet_addresses: Sequence[str],
        amounts: Optional[Sequence[float]] = None,
    ) -> dict[str, Any]:
        """Build the JSON body for the prepare endpoint."""
        body: dict[str, Any] = {"walletAddresses": list(wallet_addresses)}
        if self.token_address:
            body["tokenAddress"] = self.token_address

        if action == OperationAction.BUY:
            if self.input_mint:
                body["inputMint"] = self.input_mint
                body["inputAmountRaw"] = self.amount
            else:
                body["solAmount"] = self.amount
                if amounts:
                    body["amounts"] = list(amounts)
        elif action == OperationAction.SELL:
            if self.tokens_amount is not None:
                body["tokensAmount"] = self.tokens_amount
            else:
                body["percentage"] = self.sell_percent
            if self.output_mint:
                body["outputMint"] = self.output_mint
        elif action == OperationAction.CREATE:
            body["wallets"] = [
                {"address": address, "amount": amounts[i] if amounts else self.amount}
                for i, address in enumerate(wallet_addresses)
            ]
            del body["walletAddresses"]

        if action != OperationAction.CREATE:
            body["slippageBps"] = (
                self.slippage_bps if self.slippage_bps is not None else DEFAULT_SLIPPAGE_BPS
            )
            if self.fee_tip_lamports is not None:
                body["feeTipLamports"] = self.fee_tip_lamports
            body["encoding"] = "base64"

        body.update(self.extra)
        return body


def validate_operation(
    action: OperationAction,
    wallets: Sequence[Any],
    request: OperationRequest,
    amounts: Optional[Sequence[float]] = None,
    balances: Optional[Mapping[str, float]] = None,
) -> tuple[bool, Optional[str]]:
    """Check caller input before contacting the backend.

    Args:
        action: Requested operation
        wallets: Objects with `address` and `private_key`
        request: Operation parameters
        amounts: Optional per-wallet amounts
        balances: Optional address -> SOL balance map for buy/create checks

    Returns:
        (valid, error message)
    """
    if not wallets:
        return False, "No wallets provided"

    if action in (OperationAction.BUY, OperationAction.SELL) and not request.token_address:
        return False, "Invalid token address"

    if action in (OperationAction.BUY, OperationAction.CREATE) and not amounts:
        if request.amount is None or request.amount <= 0:
            return False, "Invalid SOL amount"

    if action == OperationAction.SELL and request.tokens_amount is None:
        if request.sell_percent is None or not 0 < request.sell_percent <= 100:
            return False, "Sell percentage must be between 0 and 100"

    if amounts is not None:
        if len(amounts) != len(wallets):
            return False, "Custom amounts array length must match wallets array length"
        if any(a <= 0 for a in amounts):
            return False, "All custom amounts must be positive numbers"

    if request.slippage_bps is not None and request.slippage_bps < 0:
        return False, "Invalid slippage value"

    for i, wallet in enumerate(wallets):
        if not getattr(wallet, "address", None) or not getattr(wallet, "private_key", None):
            return False, "Invalid wallet data"

        if balances is not None and action != OperationAction.SELL:
            required = amounts[i] if amounts else (request.amount or 0)
            if balances.get(wallet.address, 0) < required:
                return False, f"Wallet {wallet.address[:6]}... has insufficient SOL balance"

    return True, None
