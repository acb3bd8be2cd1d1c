# tests/conftest.py
import pytest
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from optirollup.consensus.validator_registry import ValidatorRegistry
from optirollup.monitoring.metrics import RollupMetrics
from optirollup.rollup.transaction import Transaction
from optirollup.settlement.memory import InMemorySettlementLayer
from optirollup.settlement.retry import RetryPolicy

T0 = 1_700_000_000


class FakeClock:
    """Manually advanced time source for coordinators"""

    def __init__(self, start: float = T0):
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def sign_transaction(account, recipient: str, value: int = 1, nonce: int = 0, data: str = "0x") -> dict:
    """Wire payload signed by ``account`` over the transaction's signing message"""
    message = Transaction.signing_message(account.address, recipient, value, data, nonce)
    signed = Account.sign_message(encode_defunct(primitive=message), private_key=account.key)
    return {
        "from": account.address,
        "to": recipient,
        "value": value,
        "data": data,
        "nonce": nonce,
        "signature": Web3.to_hex(signed.signature)
    }


def new_public_key() -> str:
    """0x-prefixed 64-byte uncompressed secp256k1 point without the 04 prefix"""
    key = ec.generate_private_key(ec.SECP256K1())
    raw = key.public_key().public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)
    return "0x" + raw[1:].hex()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def metrics():
    return RollupMetrics()


@pytest.fixture
def settlement():
    return InMemorySettlementLayer()


@pytest.fixture
def fast_retry():
    return RetryPolicy(attempts=3, timeout=0.5, backoff=0.0, max_backoff=0.0)


@pytest.fixture
def registry(clock, metrics):
    return ValidatorRegistry(minimum_stake=1, metrics=metrics, clock=clock)


@pytest.fixture
def sender():
    return Account.create()


@pytest.fixture
def recipient():
    return Account.create().address


@pytest.fixture
def make_tx(sender, recipient):
    def _make(nonce: int = 0, value: int = 1, data: str = "0x", account=None) -> dict:
        return sign_transaction(account or sender, recipient, value=value, nonce=nonce, data=data)
    return _make


@pytest.fixture
def public_key():
    return new_public_key()


@pytest.fixture
def new_key():
    return new_public_key()
