"""Client-side completion of server-prepared transactions.

The backend returns versioned transactions that may already carry a
signature (for example from a mint authority it controls). Local wallets
only fill the signer slots they own; a pre-existing partial signature on the
first transaction of a critical bundle is never overwritten.

Ed25519 signatures are deterministic, so signing a slot that already holds
the same key's signature reproduces identical bytes.
"""

import base64
import binascii
import logging
from enum import Enum
from typing import Iterable, Optional

import base58
from solders.errors import BincodeError
from solders.keypair import Keypair
from solders.message import to_bytes_versioned
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from solrelay.bundles.models import SigningWallet, TransactionBundle
from solrelay.errors import ConfigurationError, MissingSignerError, ProtocolError

logger = logging.getLogger(__name__)


class TransactionEncoding(str, Enum):
    """Wire encoding of a serialized transaction."""
    BASE58 = "base58"
    BASE64 = "base64"


def _is_empty(signature: Signature) -> bool:
    return bytes(signature) == bytes(64)


def decode_transaction(encoded: str) -> tuple[VersionedTransaction, TransactionEncoding]:
    """Deserialize an encoded transaction, trying base58 before base64.

    Raises:
        ProtocolError: If the payload decodes under neither encoding
    """
    try:
        raw = base58.b58decode(encoded)
        return VersionedTransaction.from_bytes(raw), TransactionEncoding.BASE58
    except (ValueError, TypeError, BincodeError):
        # Not base58, fall through to base64
        pass

    try:
        raw = base64.b64decode(encoded, validate=True)
        return VersionedTransaction.from_bytes(raw), TransactionEncoding.BASE64
    except (binascii.Error, ValueError, TypeError) as e:
        raise ProtocolError("Undecodable transaction payload", details=str(e)) from e
    except BincodeError as e:
        raise ProtocolError("Invalid transaction bytes", details=str(e)) from e


def encode_transaction(
    transaction: VersionedTransaction,
    encoding: TransactionEncoding = TransactionEncoding.BASE58,
) -> str:
    """Serialize and encode a transaction."""
    raw = bytes(transaction)
    if encoding == TransactionEncoding.BASE64:
        return base64.b64encode(raw).decode()
    return base58.b58encode(raw).decode()


def keypair_from_secret(secret: str) -> Keypair:
    """Load a keypair from a base58-encoded 64-byte secret key.

    Raises:
        ConfigurationError: If the key material is invalid
    """
    try:
        return Keypair.from_bytes(base58.b58decode(secret))
    except Exception as e:
        # Never include the key itself in the message
        raise ConfigurationError(f"Invalid private key material: {type(e).__name__}") from None


def create_keypairs(wallets: Iterable[SigningWallet]) -> list[Keypair]:
    """Create keypairs for the given wallets.

    Raises:
        ConfigurationError: If a key is invalid or does not match its address
    """
    keypairs = []
    for wallet in wallets:
        keypair = keypair_from_secret(wallet.private_key)
        if wallet.address and str(keypair.pubkey()) != wallet.address:
            raise ConfigurationError(f"Private key does not match wallet {wallet.address[:6]}...")
        keypairs.append(keypair)
    return keypairs


def sign_transaction(
    encoded: str,
    keypairs: Iterable[Keypair],
    preserve_partial: bool = False,
    transaction_index: Optional[int] = None,
) -> str:
    """Fill this transaction's signer slots that have a local keypair.

    Args:
        encoded: Encoded serialized transaction
        keypairs: Local keypairs available for signing
        preserve_partial: If the transaction already carries any signature,
            only sign slots that are still empty
        transaction_index: Position in the bundle, for error messages

    Returns:
        The signed transaction in its original encoding

    Raises:
        ProtocolError: If the transaction cannot be decoded
        MissingSignerError: If a required slot is still unsigned afterwards
    """
    transaction, encoding = decode_transaction(encoded)
    message = transaction.message
    num_required = message.header.num_required_signatures
    signer_keys = list(message.account_keys)[:num_required]
    signatures = list(transaction.signatures)

    by_pubkey = {kp.pubkey(): kp for kp in keypairs}

    only_empty = preserve_partial and any(not _is_empty(sig) for sig in signatures)
    if only_empty:
        logger.debug("Transaction is partially signed, preserving existing signatures")

    message_bytes = to_bytes_versioned(message)
    signed_slots = 0
    for slot, pubkey in enumerate(signer_keys):
        keypair = by_pubkey.get(pubkey)
        if keypair is None:
            continue
        if only_empty and not _is_empty(signatures[slot]):
            continue
        signatures[slot] = keypair.sign_message(message_bytes)
        signed_slots += 1

    for slot, pubkey in enumerate(signer_keys):
        if _is_empty(signatures[slot]):
            raise MissingSignerError(str(pubkey), transaction_index)

    transaction.signatures = signatures
    logger.debug(f"Signed {signed_slots}/{num_required} slot(s)")
    return encode_transaction(transaction, encoding)


def complete_bundle_signing(
    bundle: TransactionBundle,
    keypairs: Iterable[Keypair],
    extra_keypairs: Iterable[Keypair] = (),
) -> TransactionBundle:
    """Sign every transaction in a bundle with the local keypairs.

    The first transaction of a critical bundle may arrive partially signed
    by the backend; its existing signatures are preserved.

    Raises:
        ProtocolError: If a transaction cannot be decoded
        MissingSignerError: If a required signer has no local keypair
    """
    all_keypairs = list(keypairs) + list(extra_keypairs)

    signed = [
        sign_transaction(
            tx,
            all_keypairs,
            preserve_partial=bundle.critical and index == 0,
            transaction_index=index,
        )
        for index, tx in enumerate(bundle.transactions)
    ]

    return TransactionBundle(
        transactions=signed,
        name=bundle.name,
        critical=bundle.critical,
        settle_delay=bundle.settle_delay,
    )
