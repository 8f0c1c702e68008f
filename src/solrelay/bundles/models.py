"""Bundle data model and backend response normalization.

The trading backend returns prepared transactions in several JSON shapes.
normalize_bundle_response() is the single place where those shapes are told
apart; everything downstream works on the canonical TransactionBundle list.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from solrelay.errors import ProtocolError

logger = logging.getLogger(__name__)

LUT_ACTIVATION_DELAY = 5.0


@dataclass
class SigningWallet:
    """A wallet supplied by the caller for one operation.

    The private key is a base58-encoded 64-byte Solana secret key. It is
    never persisted or logged.
    """

    address: str
    private_key: str = field(repr=False)


@dataclass
class TransactionBundle:
    """Ordered transactions submitted together.

    Attributes:
        transactions: Encoded (base58 or base64) serialized transactions
        name: Stage name, if the backend supplied one
        critical: Failure of this bundle aborts the operation
        settle_delay: Seconds to wait after this bundle lands
    """

    transactions: list[str]
    name: Optional[str] = None
    critical: bool = False
    settle_delay: float = 0.0

    def __len__(self) -> int:
        return len(self.transactions)


class ErrorKind(str, Enum):
    """Classification of a bundle failure."""
    NETWORK = "network"
    PROTOCOL = "protocol"
    CONFIGURATION = "configuration"
    EXHAUSTED = "exhausted"


@dataclass
class BundleError:
    """Structured error for a failed bundle."""
    kind: ErrorKind
    message: str


@dataclass
class BundleResult:
    """Outcome of submitting one bundle."""

    index: int
    success: bool
    relay_id: Optional[str] = None
    error: Optional[BundleError] = None
    attempts: int = 0
    name: Optional[str] = None


@dataclass
class OperationResult:
    """Summary of a whole operation, returned to the UI layer."""

    success: bool
    total_bundles: int = 0
    success_count: int = 0
    failure_count: int = 0
    per_bundle_results: list[BundleResult] = field(default_factory=list)
    error: Optional[str] = None
    message: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def relay_ids(self) -> list[str]:
        return [r.relay_id for r in self.per_bundle_results if r.success and r.relay_id]

    def to_dict(self) -> dict:
        """Convert to a JSON-friendly dictionary."""
        return {
            "success": self.success,
            "total_bundles": self.total_bundles,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "per_bundle_results": [
                {
                    "index": r.index,
                    "name": r.name,
                    "success": r.success,
                    "relay_id": r.relay_id,
                    "attempts": r.attempts,
                    "error": (
                        {"kind": r.error.kind.value, "message": r.error.message}
                        if r.error else None
                    ),
                }
                for r in self.per_bundle_results
            ],
            "error": self.error,
            "message": self.message,
            "metadata": self.metadata,
        }


# ======================
# Backend response shapes
# ======================


class BundlePayload(BaseModel):
    """Bundle given as an object."""
    model_config = ConfigDict(extra="allow")

    transactions: list[str]


class StagePayload(BaseModel):
    """One stage of a multi-stage deployment."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str
    description: str = ""
    transactions: list[str]
    requires_confirmation: bool = Field(default=False, alias="requiresConfirmation")
    wait_for_activation: bool = Field(default=False, alias="waitForActivation")


class PrepareData(BaseModel):
    """Fields the backend may place at either envelope level."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    bundles: Optional[list[Union[list[str], BundlePayload]]] = None
    transactions: Optional[list[str]] = None
    stages: Optional[list[StagePayload]] = None
    mint: Optional[str] = None
    pool_id: Optional[str] = Field(default=None, alias="poolId")
    lookup_table_address: Optional[str] = Field(default=None, alias="lookupTableAddress")
    mint_private_key: Optional[str] = Field(default=None, alias="mintPrivateKey")


class PrepareEnvelope(PrepareData):
    """Top-level response of the prepare endpoints."""

    success: Optional[bool] = None
    error: Optional[str] = None
    data: Optional[PrepareData] = None


class RelayEnvelope(BaseModel):
    """Response of the bundle send endpoint."""
    model_config = ConfigDict(extra="allow")

    success: bool = False
    result: Optional[Union[dict[str, Any], str]] = None
    error: Optional[str] = None
    details: Optional[str] = None

    @property
    def relay_id(self) -> Optional[str]:
        """Relay-assigned bundle id, if the relay reported one."""
        if isinstance(self.result, str):
            return self.result
        if isinstance(self.result, dict):
            for key in ("jito", "bundleId", "bundle_id", "id"):
                value = self.result.get(key)
                if value:
                    return str(value)
        return None


class ResponseShape(str, Enum):
    """Which backend response layout a prepared batch arrived in."""
    NESTED_BUNDLES = "data.bundles"
    NESTED_TRANSACTIONS = "data.transactions"
    BUNDLES = "bundles"
    TRANSACTIONS = "transactions"
    RAW_LIST = "list"
    STAGES = "stages"


@dataclass
class PreparedBundles:
    """Canonical form of a prepare response."""

    shape: ResponseShape
    bundles: list[TransactionBundle]
    metadata: dict[str, Any] = field(default_factory=dict)
    extra_signer_key: Optional[str] = field(default=None, repr=False)


def _to_bundle(item: Union[list[str], BundlePayload]) -> TransactionBundle:
    if isinstance(item, BundlePayload):
        return TransactionBundle(transactions=list(item.transactions))
    return TransactionBundle(transactions=list(item))


def _mark_first_critical(bundles: list[TransactionBundle]) -> list[TransactionBundle]:
    if bundles:
        bundles[0].critical = True
    return bundles


def normalize_bundle_response(payload: Any) -> PreparedBundles:
    """Convert any known prepare-response shape into canonical bundles.

    Resolution order (first match wins): stages, data.bundles,
    data.transactions, bundles, transactions, bare list.

    Raises:
        ProtocolError: If the response is error-flagged or carries no
            transactions in any known shape
    """
    if isinstance(payload, list):
        if not all(isinstance(tx, str) for tx in payload):
            raise ProtocolError("Bare transaction list contains non-string entries")
        return PreparedBundles(
            shape=ResponseShape.RAW_LIST,
            bundles=_mark_first_critical([TransactionBundle(transactions=list(payload))]),
        )

    if not isinstance(payload, dict):
        raise ProtocolError(f"Unexpected prepare response type: {type(payload).__name__}")

    try:
        envelope = PrepareEnvelope.model_validate(payload)
    except ValidationError as e:
        raise ProtocolError("Malformed prepare response", details=str(e)) from e

    if envelope.success is False:
        raise ProtocolError(envelope.error or "Failed to get partially prepared transactions")

    nested = envelope.data or PrepareData()
    metadata = {
        "mint": nested.mint or envelope.mint,
        "pool_id": nested.pool_id or envelope.pool_id,
        "lookup_table_address": nested.lookup_table_address or envelope.lookup_table_address,
    }
    metadata = {k: v for k, v in metadata.items() if v}
    extra_signer_key = nested.mint_private_key or envelope.mint_private_key

    stages = nested.stages or envelope.stages
    if stages:
        bundles = [
            TransactionBundle(
                transactions=list(stage.transactions),
                name=stage.name,
                critical=True,
                settle_delay=(
                    LUT_ACTIVATION_DELAY
                    if stage.requires_confirmation and stage.wait_for_activation
                    else 0.0
                ),
            )
            for stage in stages
        ]
        shape = ResponseShape.STAGES
    elif nested.bundles is not None:
        bundles = _mark_first_critical([_to_bundle(b) for b in nested.bundles])
        shape = ResponseShape.NESTED_BUNDLES
    elif nested.transactions is not None:
        bundles = _mark_first_critical([TransactionBundle(transactions=nested.transactions)])
        shape = ResponseShape.NESTED_TRANSACTIONS
    elif envelope.bundles is not None:
        bundles = _mark_first_critical([_to_bundle(b) for b in envelope.bundles])
        shape = ResponseShape.BUNDLES
    elif envelope.transactions is not None:
        bundles = _mark_first_critical([TransactionBundle(transactions=envelope.transactions)])
        shape = ResponseShape.TRANSACTIONS
    else:
        raise ProtocolError("No transactions returned from backend")

    logger.debug(f"Normalized prepare response ({shape.value}): {len(bundles)} bundle(s)")
    return PreparedBundles(
        shape=shape,
        bundles=bundles,
        metadata=metadata,
        extra_signer_key=extra_signer_key,
    )


def split_large_bundles(
    bundles: list[TransactionBundle],
    max_size: int = 5,
) -> list[TransactionBundle]:
    """Split bundles holding more than `max_size` transactions.

    Chunks keep the original order. Only the first chunk of a bundle
    inherits its critical flag; only the last inherits its settle delay.
    Empty bundles are dropped.
    """
    result: list[TransactionBundle] = []

    for bundle in bundles:
        if not bundle.transactions:
            continue

        if len(bundle.transactions) <= max_size:
            result.append(bundle)
            continue

        chunks = [
            bundle.transactions[i:i + max_size]
            for i in range(0, len(bundle.transactions), max_size)
        ]
        for n, chunk in enumerate(chunks):
            result.append(
                TransactionBundle(
                    transactions=chunk,
                    name=f"{bundle.name} ({n + 1}/{len(chunks)})" if bundle.name else None,
                    critical=bundle.critical and n == 0,
                    settle_delay=bundle.settle_delay if n == len(chunks) - 1 else 0.0,
                )
            )

    return result
