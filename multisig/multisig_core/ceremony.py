# multisig_core/ceremony.py
"""
Per-session lifecycle.

    open --threshold reached--> finalized
    open --deadline passed----> expired
    open --abort--------------> aborted

finalized, expired and aborted are terminal. These functions mutate the
session they are given and are meant to run inside SessionRegistry.mutate(),
which serializes them per session and commits atomically.

A share that is already part of a finalized record may be resubmitted and is
answered as a duplicate; any other share for a terminal session is rejected.

Expiry wins: a share arriving after the deadline is never admitted, even when
it would complete the threshold. The expiry transition is returned rather than
raised so that it is committed; the caller raises SessionExpired afterwards.
"""

from __future__ import annotations

from dataclasses import replace
from enum import Enum

from .custody import identifier_for_public_key
from .errors import InvalidSignature, InvalidState, UnauthorizedKey
from .session import CeremonyRecord, SessionState, SignatureShare, SigningSession
from .verifier import verify


class Transition(str, Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    FINALIZED = "finalized"
    EXPIRED = "expired"


def _close(session: SigningSession, state: SessionState, now: float) -> None:
    session.state = state
    session.closed_at = now


def signer_authorized(session: SigningSession, public_key: bytes) -> bool:
    if session.is_authorized(public_key):
        return True
    if not session.authorized_ids:
        return False
    return session.is_authorized(public_key, identifier_for_public_key(public_key))


def _is_recorded(session: SigningSession, share: SignatureShare) -> bool:
    held = session.shares.get(share.public_key)
    return held is not None and (held.r, held.s) == (share.r, share.s)


def check_expiry(session: SigningSession, now: float) -> bool:
    """Open -> expired once now is past the deadline. Idempotent."""
    if session.state is SessionState.OPEN and now > session.expires_at:
        _close(session, SessionState.EXPIRED, now)
        return True
    return False


def _finalize(session: SigningSession, now: float) -> CeremonyRecord:
    record = CeremonyRecord(
        session_id=session.session_id,
        digest=session.digest,
        shares=tuple(session.shares.values()),
        threshold=session.threshold,
        total=session.total,
        finalized_at=now,
    )
    session.record = record
    _close(session, SessionState.FINALIZED, now)
    return record


def submit_share(session: SigningSession, share: SignatureShare, now: float) -> Transition:
    if check_expiry(session, now):
        return Transition.EXPIRED
    if session.state is SessionState.FINALIZED and _is_recorded(session, share):
        # a retry of a share that is already part of the record
        return Transition.DUPLICATE
    if session.state.terminal:
        raise InvalidState(f"session {session.session_id} is {session.state.value}")
    if not signer_authorized(session, share.public_key):
        raise UnauthorizedKey(share.public_key.hex())
    if not verify(share.public_key, session.digest, (share.r, share.s)):
        raise InvalidSignature(share.public_key.hex())

    if share.public_key in session.shares:
        # first valid share from a key stands, later ones do not count again
        return Transition.DUPLICATE

    session.shares[share.public_key] = replace(share, submitted_at=now)
    if session.signed >= session.threshold:
        _finalize(session, now)
        return Transition.FINALIZED
    return Transition.ACCEPTED


def abort(session: SigningSession, now: float) -> Transition:
    if check_expiry(session, now):
        return Transition.EXPIRED
    if session.state.terminal:
        raise InvalidState(f"session {session.session_id} is {session.state.value}")
    _close(session, SessionState.ABORTED, now)
    return Transition.ACCEPTED
