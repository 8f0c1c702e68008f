"""Pytest configuration and fixtures."""

import asyncio
import os
from typing import Optional

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["RELAY_URL"] = "https://relay.test"
os.environ["RPC_ENDPOINTS"] = ""
os.environ["DEBUG"] = "true"

from solrelay.bundles.models import SigningWallet
from solrelay.bundles.signing import TransactionEncoding, encode_transaction
from solrelay.config import get_settings
from solrelay.utils.ratelimit import reset_rate_limiter


class FakeClock:
    """Manually advanced clock whose sleep moves time forward.

    sleep() also yields to the event loop so other tasks get to run.
    """

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


def build_transaction(
    payer: Keypair,
    *cosigners: Keypair,
    encoding: TransactionEncoding = TransactionEncoding.BASE58,
    presigned: Optional[dict] = None,
) -> str:
    """Build an encoded, unsigned v0 transaction with the given signers.

    Args:
        payer: Fee payer (signer slot 0)
        cosigners: Additional required signers
        encoding: Output encoding
        presigned: Optional pubkey -> Signature map placed into slots up front
    """
    instructions = [
        transfer(TransferParams(from_pubkey=payer.pubkey(), to_pubkey=Pubkey.new_unique(), lamports=1000))
    ]
    for cosigner in cosigners:
        instructions.append(
            transfer(TransferParams(from_pubkey=cosigner.pubkey(), to_pubkey=payer.pubkey(), lamports=1))
        )

    message = MessageV0.try_compile(payer.pubkey(), instructions, [], Hash.default())
    num_required = message.header.num_required_signatures
    signatures = [Signature.default()] * num_required

    if presigned:
        signer_keys = list(message.account_keys)[:num_required]
        for slot, pubkey in enumerate(signer_keys):
            if pubkey in presigned:
                signatures[slot] = presigned[pubkey]

    transaction = VersionedTransaction.populate(message, signatures)
    return encode_transaction(transaction, encoding)


def wallet_for(keypair: Keypair) -> SigningWallet:
    return SigningWallet(address=str(keypair.pubkey()), private_key=str(keypair))


@pytest.fixture(autouse=True)
def clean_state():
    """Reset cached settings and the shared rate limiter around each test."""
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def keypair() -> Keypair:
    return Keypair()


@pytest.fixture
def wallet(keypair) -> SigningWallet:
    return wallet_for(keypair)


@pytest.fixture
def build_tx():
    """Transaction builder (see build_transaction)."""
    return build_transaction


@pytest.fixture
def make_wallet():
    """SigningWallet factory for a keypair."""
    return wallet_for
