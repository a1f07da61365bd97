# multisig_core/session.py
"""
Data model of a signing ceremony.

A SigningSession only ever holds public keys and signatures. Shares are keyed
by compressed public key; dict insertion order is the acceptance order.

A signer is authorized either by its public key or by its Base58 identifier
(P2PKH of the compressed key). The identifier form only binds to a key when
that key submits.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .encoding import b2h, i2h


class SessionState(str, Enum):
    OPEN = "open"
    FINALIZED = "finalized"
    EXPIRED = "expired"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self is not SessionState.OPEN


@dataclass(frozen=True)
class SignatureShare:
    public_key: bytes  # 33B compressed
    r: int
    s: int
    submitted_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "public_key": b2h(self.public_key),
            "r": i2h(self.r),
            "s": i2h(self.s),
            "submitted_at": self.submitted_at,
        }


@dataclass(frozen=True)
class CeremonyRecord:
    session_id: str
    digest: bytes
    shares: Tuple[SignatureShare, ...]
    threshold: int
    total: int
    finalized_at: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "digest": b2h(self.digest),
            "threshold": self.threshold,
            "total": self.total,
            "finalized_at": self.finalized_at,
            "shares": [sh.to_dict() for sh in self.shares],
        }


@dataclass
class SigningSession:
    session_id: str
    digest: bytes
    authorized_keys: Tuple[bytes, ...]
    threshold: int
    created_at: float
    expires_at: float
    state: SessionState = SessionState.OPEN
    shares: Dict[bytes, SignatureShare] = field(default_factory=dict)
    record: Optional[CeremonyRecord] = None
    closed_at: Optional[float] = None
    authorized_ids: Tuple[str, ...] = ()

    @property
    def total(self) -> int:
        return len(self.authorized_keys) + len(self.authorized_ids)

    @property
    def signed(self) -> int:
        return len(self.shares)

    def is_authorized(self, public_key: bytes, identifier: Optional[str] = None) -> bool:
        if public_key in self.authorized_keys:
            return True
        return identifier is not None and identifier in self.authorized_ids

    def snapshot(self) -> "SigningSession":
        # shares and record are immutable, a shallow copy of the dict is enough
        return replace(self, shares=dict(self.shares))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "digest": b2h(self.digest),
            "threshold": self.threshold,
            "total": self.total,
            "signed": self.signed,
            "signers": [b2h(pk) for pk in self.shares],
            "authorized_keys": [b2h(pk) for pk in self.authorized_keys],
            "authorized_ids": list(self.authorized_ids),
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "closed_at": self.closed_at,
            "record": self.record.to_dict() if self.record else None,
        }
