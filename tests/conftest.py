import pytest
import structlog

from multisig.multisig_core.custody import derive_identity, message_digest

# BIP-39 reference vectors (valid words and checksums)
MNEMONICS = [
    "abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon about",
    "legal winner thank year wave sausage worth useful legal winner thank yellow",
    "letter advice cage absurd amount doctor acoustic avoid letter advice cage above",
    "zoo zoo zoo zoo zoo zoo zoo zoo zoo zoo zoo wrong",
]

DIGEST = message_digest(b"pay 100 tokens to Bob")


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _reset_structlog():
    """configure_logging() binds the current (per-test captured) stderr; undo it after each test."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(scope="session")
def identities():
    """Four identities shared by the whole run. Tests must not release them."""
    kms = [derive_identity(m) for m in MNEMONICS]
    yield kms
    for km in kms:
        km.release()


@pytest.fixture
def digest():
    return DIGEST
