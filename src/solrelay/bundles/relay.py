"""HTTP client for the trading server.

Two remote calls matter here: preparing partially-built transactions for an
operation, and sending a signed bundle to the block-engine proxy.
"""

import logging
from typing import Any, Optional, Sequence

import httpx
from pydantic import ValidationError

from solrelay.bundles.models import PreparedBundles, RelayEnvelope, normalize_bundle_response
from solrelay.bundles.operations import OperationAction, OperationRequest
from solrelay.errors import ConfigurationError, NetworkError, ProtocolError

logger = logging.getLogger(__name__)

SEND_PATH = "/v2/sol/send"
PREPARE_PATHS = {
    OperationAction.BUY: "/v2/sol/buy",
    OperationAction.SELL: "/v2/sol/sell",
    OperationAction.CREATE: "/v2/sol/create",
}
SWAP_SELL_PATH = "/v2/swap/sell"


class RelayClient:
    """Client for the trading server's prepare and send endpoints.

    Example:
        relay = RelayClient("https://trade.example.com")
        prepared = await relay.prepare_bundles(OperationAction.BUY, addresses, request)
        relay_id = await relay.submit_bundle(signed.transactions)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the relay client.

        Args:
            base_url: Trading server base URL
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings=None) -> "RelayClient":
        """Create a client from application settings."""
        if settings is None:
            from solrelay.config import get_settings
            settings = get_settings()
        if not settings.relay_url:
            raise ConfigurationError("RELAY_URL is not configured")
        return cls(settings.relay_url, timeout=settings.relay_timeout)

    async def _post(self, path: str, body: dict) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=body)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request to {path} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Request to {path} failed: {type(e).__name__}: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.status_code < 200 or response.status_code >= 300:
            detail = data.get("error") if isinstance(data, dict) else None
            raise NetworkError(
                f"HTTP error {response.status_code} from {path}"
                + (f": {detail}" if detail else ""),
                status_code=response.status_code,
            )

        if data is None:
            raise ProtocolError(f"Invalid JSON from {path}", details=response.text[:200])

        return data

    async def prepare_bundles(
        self,
        action: OperationAction,
        wallet_addresses: Sequence[str],
        request: OperationRequest,
        amounts: Optional[Sequence[float]] = None,
    ) -> PreparedBundles:
        """Get partially prepared bundles for an operation.

        Raises:
            NetworkError: On transport failure or non-2xx status
            ProtocolError: If the response is error-flagged or has no transactions
        """
        body = request.to_payload(action, wallet_addresses, amounts)
        path = PREPARE_PATHS[action]
        if action == OperationAction.SELL and request.output_mint:
            path = SWAP_SELL_PATH
        logger.info(f"Preparing {action.value} for {len(wallet_addresses)} wallet(s)")

        data = await self._post(path, body)
        prepared = normalize_bundle_response(data)

        logger.info(
            f"Backend returned {len(prepared.bundles)} bundle(s) "
            f"({prepared.shape.value}) for {action.value}"
        )
        return prepared

    async def submit_bundle(self, transactions: Sequence[str]) -> Optional[str]:
        """Send a signed bundle to the relay.

        Returns:
            Relay-assigned bundle id (None if the relay did not report one)

        Raises:
            NetworkError: On transport failure or non-2xx status
            ProtocolError: If the relay response is malformed or error-flagged
        """
        data = await self._post(SEND_PATH, {"transactions": list(transactions)})

        try:
            envelope = RelayEnvelope.model_validate(data)
        except ValidationError as e:
            raise ProtocolError("Malformed relay response", details=str(e)) from e

        if not envelope.success:
            raise ProtocolError(
                envelope.error or "Unknown error sending transactions",
                details=envelope.details,
            )

        logger.debug(f"Relay accepted bundle: {envelope.relay_id}")
        return envelope.relay_id
