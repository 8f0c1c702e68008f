"""Tests for client-side transaction signing."""

import pytest
from solders.keypair import Keypair
from solders.message import to_bytes_versioned

from solrelay.bundles.models import SigningWallet, TransactionBundle
from solrelay.bundles.signing import (
    TransactionEncoding,
    complete_bundle_signing,
    create_keypairs,
    decode_transaction,
    keypair_from_secret,
    sign_transaction,
)
from solrelay.errors import ConfigurationError, MissingSignerError, ProtocolError


def signature_for(encoded: str, keypair: Keypair):
    transaction, _ = decode_transaction(encoded)
    slot = list(transaction.message.account_keys).index(keypair.pubkey())
    return transaction.signatures[slot]


def expected_signature(encoded: str, keypair: Keypair):
    transaction, _ = decode_transaction(encoded)
    return keypair.sign_message(to_bytes_versioned(transaction.message))


class TestSignTransaction:
    """Tests for sign_transaction."""

    def test_signs_owned_slot(self, keypair, build_tx):
        """Test that a local keypair fills its signer slot."""
        encoded = build_tx(keypair)

        signed = sign_transaction(encoded, [keypair])

        assert signature_for(signed, keypair) == expected_signature(encoded, keypair)

    def test_signing_is_idempotent(self, keypair, build_tx):
        """Test that signing twice yields identical bytes."""
        encoded = build_tx(keypair)

        once = sign_transaction(encoded, [keypair])
        twice = sign_transaction(once, [keypair])

        assert once == twice

    def test_fills_multiple_signers(self, keypair, build_tx):
        """Test that every owned slot is signed."""
        cosigner = Keypair()
        encoded = build_tx(keypair, cosigner)

        signed = sign_transaction(encoded, [keypair, cosigner])

        assert signature_for(signed, keypair) == expected_signature(encoded, keypair)
        assert signature_for(signed, cosigner) == expected_signature(encoded, cosigner)

    def test_missing_signer_raises(self, keypair, build_tx):
        """Test that an unfilled required slot is a configuration error."""
        cosigner = Keypair()
        encoded = build_tx(keypair, cosigner)

        with pytest.raises(MissingSignerError) as exc_info:
            sign_transaction(encoded, [keypair], transaction_index=3)

        assert exc_info.value.pubkey == str(cosigner.pubkey())
        assert exc_info.value.transaction_index == 3
        assert isinstance(exc_info.value, ConfigurationError)

    def test_preserves_partial_signature(self, keypair, build_tx):
        """Test that an existing signature survives when preserving."""
        backend = Keypair()
        foreign = Keypair().sign_message(b"server side signature")
        encoded = build_tx(backend, keypair, presigned={backend.pubkey(): foreign})

        signed = sign_transaction(encoded, [keypair, backend], preserve_partial=True)

        assert signature_for(signed, backend) == foreign
        assert signature_for(signed, keypair) == expected_signature(encoded, keypair)

    def test_overwrites_without_preserve(self, keypair, build_tx):
        """Test that owned slots are re-signed when not preserving."""
        foreign = Keypair().sign_message(b"stale")
        encoded = build_tx(keypair, presigned={keypair.pubkey(): foreign})

        signed = sign_transaction(encoded, [keypair])

        assert signature_for(signed, keypair) == expected_signature(encoded, keypair)

    def test_backend_signed_slot_needs_no_local_key(self, keypair, build_tx):
        """Test that a slot signed by the backend is not reported missing."""
        backend = Keypair()
        encoded = build_tx(
            backend, keypair, presigned={backend.pubkey(): backend.sign_message(b"placeholder")}
        )

        signed = sign_transaction(encoded, [keypair], preserve_partial=True)

        assert signature_for(signed, keypair) == expected_signature(encoded, keypair)

    def test_preserves_base64_encoding(self, keypair, build_tx):
        """Test that a base64 payload is returned as base64."""
        encoded = build_tx(keypair, encoding=TransactionEncoding.BASE64)

        signed = sign_transaction(encoded, [keypair])

        _, encoding = decode_transaction(signed)
        assert encoding == TransactionEncoding.BASE64

    def test_undecodable_payload(self, keypair):
        """Test that garbage is a protocol error."""
        with pytest.raises(ProtocolError):
            sign_transaction("not a transaction!", [keypair])

    def test_valid_encoding_but_invalid_bytes(self):
        """Test that well-formed text that is not a transaction is a protocol error."""
        with pytest.raises(ProtocolError, match="Invalid transaction bytes"):
            decode_transaction("AAAA")


class TestKeypairs:
    """Tests for key loading."""

    def test_keypair_from_secret(self, keypair):
        """Test loading a base58 secret key."""
        assert keypair_from_secret(str(keypair)).pubkey() == keypair.pubkey()

    def test_invalid_secret_not_echoed(self):
        """Test that invalid key material is rejected without leaking it."""
        with pytest.raises(ConfigurationError) as exc_info:
            keypair_from_secret("abc123secret")

        assert "abc123secret" not in str(exc_info.value)

    def test_create_keypairs_checks_address(self, keypair):
        """Test that a key not matching its wallet address is rejected."""
        other = Keypair()
        wallet = SigningWallet(address=str(other.pubkey()), private_key=str(keypair))

        with pytest.raises(ConfigurationError):
            create_keypairs([wallet])

    def test_create_keypairs(self, wallet, keypair):
        """Test building keypairs for valid wallets."""
        assert [kp.pubkey() for kp in create_keypairs([wallet])] == [keypair.pubkey()]

    def test_wallet_repr_hides_key(self, wallet):
        """Test that the private key is not part of the repr."""
        assert wallet.private_key not in repr(wallet)


class TestCompleteBundleSigning:
    """Tests for complete_bundle_signing."""

    def test_preserves_only_first_of_critical(self, keypair, build_tx):
        """Test that only the first transaction of a critical bundle keeps partial signatures."""
        foreign = Keypair().sign_message(b"server")
        first = build_tx(keypair, presigned={keypair.pubkey(): foreign})
        second = build_tx(keypair, presigned={keypair.pubkey(): foreign})
        bundle = TransactionBundle([first, second], name="stage", critical=True, settle_delay=5.0)

        signed = complete_bundle_signing(bundle, [keypair])

        assert signature_for(signed.transactions[0], keypair) == foreign
        assert signature_for(signed.transactions[1], keypair) == expected_signature(second, keypair)
        assert (signed.name, signed.critical, signed.settle_delay) == ("stage", True, 5.0)

    def test_non_critical_bundle_fully_signed(self, keypair, build_tx):
        """Test that non-critical bundles are always re-signed."""
        foreign = Keypair().sign_message(b"server")
        first = build_tx(keypair, presigned={keypair.pubkey(): foreign})

        signed = complete_bundle_signing(TransactionBundle([first]), [keypair])

        assert signature_for(signed.transactions[0], keypair) == expected_signature(first, keypair)

    def test_extra_keypairs_sign(self, keypair, build_tx):
        """Test that an extra signer (e.g. a new mint) fills its slot."""
        mint = Keypair()
        encoded = build_tx(keypair, mint)

        signed = complete_bundle_signing(TransactionBundle([encoded]), [keypair], extra_keypairs=[mint])

        assert signature_for(signed.transactions[0], mint) == expected_signature(encoded, mint)
