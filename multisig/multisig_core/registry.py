# multisig_core/registry.py
"""
In-memory session registry.

One lock per session serializes mutations of that session; the registry lock
only guards the id -> entry map and is never held while a mutation runs, so
distinct sessions never wait on each other.

mutate() works on a copy and commits it only when the transition returns
normally and the session invariants still hold.
"""

from __future__ import annotations

import math
import threading
import time
import uuid
from typing import Callable, Dict, Iterable, List, Optional, TypeVar

import structlog

from .ceremony import signer_authorized
from .custody import decode_identifier, identifier_for_public_key
from .errors import InvalidPolicy, InvariantViolation, NotFound
from .session import SessionState, SigningSession
from .verifier import DIGEST_LEN, normalize_public_key

log = structlog.get_logger(__name__)

T = TypeVar("T")
Clock = Callable[[], float]


class _Entry:
    __slots__ = ("lock", "session", "poisoned")

    def __init__(self, session: SigningSession):
        self.lock = threading.Lock()
        self.session = session
        self.poisoned = False


def _check_invariants(session: SigningSession) -> None:
    if not (1 <= session.threshold <= session.total):
        raise InvariantViolation(f"threshold {session.threshold} outside [1, {session.total}]")
    if any(not signer_authorized(session, pk) for pk in session.shares):
        raise InvariantViolation("share recorded for an unauthorized key")
    if session.state is SessionState.FINALIZED:
        if session.record is None or session.signed < session.threshold:
            raise InvariantViolation("finalized without a complete record")
    elif session.record is not None:
        raise InvariantViolation(f"record present in state {session.state.value}")
    if session.state is SessionState.OPEN and session.signed >= session.threshold:
        raise InvariantViolation("threshold met but session still open")


class SessionRegistry:

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _new_id(self) -> str:
        # caller holds self._lock
        while True:
            sid = str(uuid.uuid4())
            if sid not in self._entries:
                return sid

    def create(
        self,
        digest: bytes,
        authorized_keys: Iterable[bytes],
        threshold: int,
        ttl: float,
        identifiers: Iterable[str] = (),
    ) -> str:
        if not isinstance(digest, (bytes, bytearray)) or len(digest) != DIGEST_LEN:
            raise InvalidPolicy(f"digest must be {DIGEST_LEN} bytes")
        keys: List[bytes] = []
        for raw in authorized_keys:
            try:
                pk = normalize_public_key(raw)
            except ValueError as e:
                raise InvalidPolicy(str(e))
            if pk in keys:
                raise InvalidPolicy(f"duplicate authorized key {pk.hex()}")
            keys.append(pk)
        ids: List[str] = []
        for raw in identifiers:
            ident = raw.strip() if isinstance(raw, str) else raw
            try:
                decode_identifier(ident)
            except ValueError as e:
                raise InvalidPolicy(str(e))
            if ident in ids or any(identifier_for_public_key(pk) == ident for pk in keys):
                raise InvalidPolicy(f"duplicate authorized identifier {ident}")
            ids.append(ident)
        total = len(keys) + len(ids)
        if not total:
            raise InvalidPolicy("at least one authorized key is required")
        if isinstance(threshold, bool) or not isinstance(threshold, int):
            raise InvalidPolicy("threshold must be an integer")
        if not (1 <= threshold <= total):
            raise InvalidPolicy(f"threshold {threshold} outside [1, {total}]")
        if isinstance(ttl, bool) or not isinstance(ttl, (int, float)) or not math.isfinite(ttl) or ttl <= 0:
            raise InvalidPolicy("ttl must be a positive, finite number of seconds")

        now = self._clock()
        with self._lock:
            sid = self._new_id()
            self._entries[sid] = _Entry(SigningSession(
                session_id=sid,
                digest=bytes(digest),
                authorized_keys=tuple(keys),
                authorized_ids=tuple(ids),
                threshold=threshold,
                created_at=now,
                expires_at=now + ttl,
            ))
        return sid

    def _entry(self, session_id: str) -> _Entry:
        with self._lock:
            entry = self._entries.get(session_id)
        if entry is None:
            raise NotFound(session_id)
        return entry

    def get(self, session_id: str) -> SigningSession:
        entry = self._entry(session_id)
        with entry.lock:
            return entry.session.snapshot()

    def mutate(self, session_id: str, fn: Callable[[SigningSession], T]) -> T:
        entry = self._entry(session_id)
        with entry.lock:
            if entry.poisoned:
                raise InvariantViolation(f"session {session_id} is quarantined")
            work = entry.session.snapshot()
            result = fn(work)
            try:
                _check_invariants(work)
            except InvariantViolation:
                entry.poisoned = True
                log.error("session_quarantined", session_id=session_id)
                raise
            entry.session = work
            return result

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def list(self) -> List[SigningSession]:
        out = []
        for sid in self.ids():
            try:
                out.append(self.get(sid))
            except NotFound:
                continue  # discarded meanwhile
        return out

    def discard(self, session_id: str) -> Optional[SigningSession]:
        with self._lock:
            entry = self._entries.pop(session_id, None)
        if entry is None:
            return None
        with entry.lock:
            return entry.session.snapshot()
