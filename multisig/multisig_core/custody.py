# multisig_core/custody.py
"""
Key custody: BIP-39 mnemonic -> BIP-44 secp256k1 identity.

The secret scalar lives in a SecretBox owned by exactly one KeyMaterial.
Nothing in this module returns, serializes or logs it. Only the compressed
public key and its Base58Check identifier leave the module.

    with derive_identity(mnemonic, passphrase, index=0) as km:
        share = sign(km, digest)
    # the secret is zeroed here
"""

from __future__ import annotations

import hashlib
from contextlib import contextmanager
from typing import Iterator

from bip_utils import (
    Bip39MnemonicGenerator,
    Bip39MnemonicValidator,
    Bip39SeedGenerator,
    Bip39WordsNum,
    Bip44,
    Bip44Changes,
    Bip44Coins,
    P2PKHAddrDecoder,
    P2PKHAddrEncoder,
)
from coincurve import PrivateKey
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

from .errors import InvalidMnemonic, SigningUnavailable
from .session import SignatureShare
from .verifier import DIGEST_LEN

P2PKH_NET_VER = b"\x00"  # bitcoin mainnet
MAX_INDEX = 2**31  # non-hardened range

_WORD_COUNTS = {
    12: Bip39WordsNum.WORDS_NUM_12,
    15: Bip39WordsNum.WORDS_NUM_15,
    18: Bip39WordsNum.WORDS_NUM_18,
    21: Bip39WordsNum.WORDS_NUM_21,
    24: Bip39WordsNum.WORDS_NUM_24,
}


class SecretBox:
    """Holder for a private scalar. Not copyable, not picklable, zeroed on release."""
    __slots__ = ("_buf", "_released")

    def __init__(self, secret: bytes):
        self._buf = bytearray(secret)
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    @contextmanager
    def exposed(self) -> Iterator[bytes]:
        if self._released:
            raise SigningUnavailable("secret container already released")
        yield bytes(self._buf)

    def release(self) -> None:
        # overwrite in place, the bytearray keeps its memory
        for i in range(len(self._buf)):
            self._buf[i] = 0
        self._released = True

    def __enter__(self) -> "SecretBox":
        return self

    def __exit__(self, *exc) -> None:
        self.release()

    def __del__(self):
        try:
            self.release()
        except AttributeError:
            pass

    def __repr__(self) -> str:
        return "SecretBox(<redacted>)"

    __str__ = __repr__

    def __copy__(self):
        raise TypeError("SecretBox cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("SecretBox cannot be copied")

    def __reduce__(self):
        raise TypeError("SecretBox cannot be serialized")


class KeyMaterial:
    """One derived identity. Only public_key and identifier are public."""
    __slots__ = ("public_key", "identifier", "index", "_secret")

    def __init__(self, public_key: bytes, secret: SecretBox, index: int = 0):
        self.public_key = public_key
        self.identifier = identifier_for_public_key(public_key)
        self.index = index
        self._secret = secret

    @property
    def released(self) -> bool:
        return self._secret.released

    def release(self) -> None:
        self._secret.release()

    def __enter__(self) -> "KeyMaterial":
        return self

    def __exit__(self, *exc) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"KeyMaterial(identifier={self.identifier!r}, index={self.index})"

    def __copy__(self):
        raise TypeError("KeyMaterial cannot be copied")

    def __deepcopy__(self, memo):
        raise TypeError("KeyMaterial cannot be copied")

    def __reduce__(self):
        raise TypeError("KeyMaterial cannot be serialized")


def _normalize_mnemonic(mnemonic: str) -> str:
    if not isinstance(mnemonic, str) or not mnemonic.strip():
        raise InvalidMnemonic("mnemonic must be a non-empty string")
    return " ".join(mnemonic.lower().split())


def validate_mnemonic(mnemonic: str) -> str:
    """Checks words and checksum. Returns the normalized phrase."""
    phrase = _normalize_mnemonic(mnemonic)
    if len(phrase.split()) not in _WORD_COUNTS:
        raise InvalidMnemonic(f"unsupported word count {len(phrase.split())}")
    if not Bip39MnemonicValidator().IsValid(phrase):
        raise InvalidMnemonic("unknown word or bad checksum")
    return phrase


def derive_identity(mnemonic: str, passphrase: str = "", index: int = 0) -> KeyMaterial:
    phrase = validate_mnemonic(mnemonic)
    if isinstance(index, bool) or not isinstance(index, int) or not (0 <= index < MAX_INDEX):
        raise InvalidMnemonic(f"derivation index must be in [0, 2^31), got {index!r}")

    seed = Bip39SeedGenerator(phrase).Generate(passphrase or "")
    ctx = (
        Bip44.FromSeed(seed, Bip44Coins.BITCOIN)
        .Purpose()
        .Coin()
        .Account(0)
        .Change(Bip44Changes.CHAIN_EXT)
        .AddressIndex(index)
    )
    secret = SecretBox(ctx.PrivateKey().Raw().ToBytes())
    public_key = ctx.PublicKey().RawCompressed().ToBytes()
    return KeyMaterial(public_key, secret, index)


def sign(key_material: KeyMaterial, digest: bytes) -> SignatureShare:
    """RFC 6979 deterministic, low-S ECDSA over a 32B digest."""
    if not isinstance(digest, (bytes, bytearray)) or len(digest) != DIGEST_LEN:
        raise ValueError(f"digest must be {DIGEST_LEN} bytes")
    with key_material._secret.exposed() as raw:
        der = PrivateKey(raw).sign(bytes(digest), hasher=None)
    r, s = decode_dss_signature(der)
    return SignatureShare(public_key=key_material.public_key, r=r, s=s)


def public_identifier(key_material: KeyMaterial) -> str:
    return key_material.identifier


def identifier_for_public_key(public_key: bytes) -> str:
    """Base58Check P2PKH address: 0x00 || hash160(pubkey) || checksum."""
    return P2PKHAddrEncoder.EncodeKey(public_key, net_ver=P2PKH_NET_VER)


def decode_identifier(identifier: str) -> bytes:
    """hash160 carried by an identifier. Raises ValueError on any malformation."""
    try:
        return P2PKHAddrDecoder.DecodeAddr(identifier, net_ver=P2PKH_NET_VER)
    except Exception as e:
        raise ValueError(f"invalid identifier {identifier!r}: {e}")


def identifier_matches(identifier: str, public_key: bytes) -> bool:
    try:
        return identifier_for_public_key(public_key) == identifier
    except (TypeError, ValueError):
        return False


def generate_mnemonic(words: int = 12) -> str:
    if words not in _WORD_COUNTS:
        raise ValueError(f"words must be one of {sorted(_WORD_COUNTS)}")
    return str(Bip39MnemonicGenerator().FromWordsNumber(_WORD_COUNTS[words]))


def message_digest(content: bytes) -> bytes:
    """sha256 of raw message content, the digest a ceremony authorizes."""
    return hashlib.sha256(content).digest()
