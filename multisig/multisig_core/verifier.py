# multisig_core/verifier.py
"""
Stateless secp256k1 ECDSA verification.

verify() never raises for malformed input, it answers False. High-S
signatures are rejected even when they satisfy the raw ECDSA equation, so a
single (key, digest) pair has exactly one acceptable signature encoding.
"""

from typing import Tuple

from coincurve import PublicKey
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

SECP_N = int("0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)
HALF_N = SECP_N // 2
DIGEST_LEN = 32


def normalize_public_key(data: bytes) -> bytes:
    """Compressed 33B form of a public key. Raises ValueError if not on the curve."""
    try:
        return PublicKey(bytes(data)).format(compressed=True)
    except (TypeError, ValueError) as e:
        raise ValueError(f"invalid secp256k1 public key: {e}")


def is_low_s(s: int) -> bool:
    return 1 <= s <= HALF_N


def _in_range(x: int) -> bool:
    return isinstance(x, int) and not isinstance(x, bool) and 1 <= x < SECP_N


def verify(pubkey: bytes, digest: bytes, signature: Tuple[int, int]) -> bool:
    try:
        r, s = signature
    except (TypeError, ValueError):
        return False
    if not isinstance(digest, (bytes, bytearray)) or len(digest) != DIGEST_LEN:
        return False
    if not (_in_range(r) and _in_range(s)) or not is_low_s(s):
        return False
    try:
        key = PublicKey(bytes(pubkey))
        der = encode_dss_signature(r, s)
        # digest is already hashed, coincurve must not hash it again
        return bool(key.verify(der, bytes(digest), hasher=None))
    except (TypeError, ValueError):
        return False
