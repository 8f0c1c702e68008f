"""Bundle preparation, signing and submission."""

from solrelay.bundles.models import (
    BundleError,
    BundleResult,
    ErrorKind,
    OperationResult,
    PreparedBundles,
    ResponseShape,
    SigningWallet,
    TransactionBundle,
    normalize_bundle_response,
    split_large_bundles,
)
from solrelay.bundles.operations import OperationAction, OperationRequest, validate_operation
from solrelay.bundles.pipeline import BundlePipeline
from solrelay.bundles.relay import RelayClient
from solrelay.bundles.signing import (
    complete_bundle_signing,
    create_keypairs,
    decode_transaction,
    encode_transaction,
    keypair_from_secret,
    sign_transaction,
)

__all__ = [
    "BundleError",
    "BundlePipeline",
    "BundleResult",
    "ErrorKind",
    "OperationAction",
    "OperationRequest",
    "OperationResult",
    "PreparedBundles",
    "RelayClient",
    "ResponseShape",
    "SigningWallet",
    "TransactionBundle",
    "complete_bundle_signing",
    "create_keypairs",
    "decode_transaction",
    "encode_transaction",
    "keypair_from_secret",
    "normalize_bundle_response",
    "sign_transaction",
    "split_large_bundles",
]
