# multisig_core/encoding.py
from typing import Union


def _strip0x(s: str) -> str:
    return s[2:] if s.lower().startswith("0x") else s


def h2b(h: str) -> bytes:
    """Hex string (with or without 0x) to bytes. Odd length is an error, never padded."""
    if not isinstance(h, str):
        raise ValueError("expected a hex string")
    return bytes.fromhex(_strip0x(h.strip()))


def b2h(b: bytes) -> str:
    return "0x" + bytes(b).hex()


def h2i(h: Union[str, int]) -> int:
    """Hex string to a non-negative int. Ints pass through."""
    if isinstance(h, bool):
        raise ValueError("expected a hex string")
    if isinstance(h, int):
        return h
    if not isinstance(h, str) or not _strip0x(h.strip()):
        raise ValueError("expected a hex string")
    return int(_strip0x(h.strip()), 16)


def i2h(x: int) -> str:
    return f"0x{x:064x}"
