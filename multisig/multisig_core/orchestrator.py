# multisig_core/orchestrator.py
"""
Entry point used by the HTTP layer.

Each call is exactly one registry interaction running one state machine
transition. The orchestrator keeps no mutable state of its own and never
touches secret material; it only sees public keys and signatures.
"""

from __future__ import annotations

import math
import time
from typing import Callable, List, Optional, Sequence, Tuple

import structlog

from . import ceremony
from .ceremony import Transition
from .errors import InvalidPolicy, InvalidSignature, InvariantViolation, NotFound, SessionExpired, UnauthorizedKey
from .registry import SessionRegistry
from .session import CeremonyRecord, SessionState, SignatureShare, SigningSession
from .verifier import normalize_public_key

log = structlog.get_logger(__name__)

DEFAULT_TTL_S = 60.0
MAX_TTL_S = 3600.0
RETENTION_S = 300.0


class Orchestrator:

    def __init__(
        self,
        registry: Optional[SessionRegistry] = None,
        *,
        default_ttl: float = DEFAULT_TTL_S,
        max_ttl: float = MAX_TTL_S,
        retention: float = RETENTION_S,
        clock: Callable[[], float] = time.time,
        on_finalized: Optional[Callable[[CeremonyRecord], None]] = None,
    ):
        self.clock = clock
        self.registry = registry if registry is not None else SessionRegistry(clock=clock)
        self.default_ttl = default_ttl
        self.max_ttl = max_ttl
        self.retention = retention
        self.on_finalized = on_finalized

    # ------------------------------------------------------------------ api

    def open_ceremony(
        self,
        digest: bytes,
        authorized_keys: Sequence[bytes],
        threshold: Optional[int] = None,
        ttl: Optional[float] = None,
        identifiers: Sequence[str] = (),
    ) -> str:
        keys = list(authorized_keys)
        ids = list(identifiers)
        if threshold is None:
            threshold = len(keys) + len(ids)
        if ttl is None:
            ttl = self.default_ttl
        if isinstance(ttl, bool) or not isinstance(ttl, (int, float)):
            raise InvalidPolicy("ttl must be a number of seconds")
        if not math.isfinite(ttl):
            raise InvalidPolicy(f"ttl {ttl} is not finite")
        if ttl > self.max_ttl:
            raise InvalidPolicy(f"ttl {ttl} exceeds maximum {self.max_ttl}")

        sid = self.registry.create(digest, keys, threshold, ttl, identifiers=ids)
        log.info("session_opened", session_id=sid, threshold=threshold, total=len(keys) + len(ids), ttl=ttl)
        return sid

    def contribute(self, session_id: str, share: SignatureShare) -> SigningSession:
        try:
            pk = normalize_public_key(share.public_key)
        except ValueError:
            log.warning("share_rejected", session_id=session_id, reason="malformed_key")
            raise UnauthorizedKey("malformed public key")
        share = SignatureShare(public_key=pk, r=share.r, s=share.s)

        def _submit(session: SigningSession) -> Tuple[Transition, SigningSession]:
            outcome = ceremony.submit_share(session, share, self.clock())
            return outcome, session.snapshot()

        try:
            outcome, session = self.registry.mutate(session_id, _submit)
        except (UnauthorizedKey, InvalidSignature) as e:
            log.warning("share_rejected", session_id=session_id, public_key=pk.hex(), reason=e.code)
            raise

        if outcome is Transition.EXPIRED:
            log.info("session_expired", session_id=session_id, on="submit")
            raise SessionExpired(session_id)
        if outcome is Transition.DUPLICATE:
            log.info("share_duplicate", session_id=session_id, public_key=pk.hex())
        else:
            log.info("share_accepted", session_id=session_id, public_key=pk.hex(),
                     signed=session.signed, threshold=session.threshold)
        if outcome is Transition.FINALIZED:
            log.info("ceremony_finalized", session_id=session_id, signers=session.signed)
            self._publish(session.record)
        return session

    def status(self, session_id: str) -> SigningSession:
        def _check(session: SigningSession) -> SigningSession:
            if ceremony.check_expiry(session, self.clock()):
                log.info("session_expired", session_id=session_id, on="read")
            return session.snapshot()

        return self.registry.mutate(session_id, _check)

    def cancel(self, session_id: str) -> SigningSession:
        def _abort(session: SigningSession) -> Tuple[Transition, SigningSession]:
            return ceremony.abort(session, self.clock()), session.snapshot()

        outcome, session = self.registry.mutate(session_id, _abort)
        if outcome is Transition.EXPIRED:
            raise SessionExpired(session_id)
        log.info("session_aborted", session_id=session_id)
        return session

    # ------------------------------------------------------------ supplements

    def sessions(self) -> List[SigningSession]:
        found = (self._status_or_none(sid) for sid in self.registry.ids())
        return [s for s in found if s is not None]

    def _status_or_none(self, session_id: str) -> Optional[SigningSession]:
        try:
            return self.status(session_id)
        except (NotFound, InvariantViolation):
            return None

    def sweep(self) -> Tuple[int, int]:
        """Expire overdue sessions and drop terminal ones past retention."""
        expired = purged = 0
        for sid in self.registry.ids():
            try:
                if self.registry.mutate(sid, lambda s: ceremony.check_expiry(s, self.clock())):
                    expired += 1
                    log.info("session_expired", session_id=sid, on="sweep")
                session = self.registry.get(sid)
            except NotFound:
                continue
            except InvariantViolation:
                log.error("sweep_skipped", session_id=sid)
                continue
            if session.state is not SessionState.OPEN and session.closed_at is not None \
                    and self.clock() > session.closed_at + self.retention:
                self.registry.discard(sid)
                purged += 1
        if expired or purged:
            log.debug("sweep_done", expired=expired, purged=purged)
        return expired, purged

    def _publish(self, record: Optional[CeremonyRecord]) -> None:
        if record is None or self.on_finalized is None:
            return
        try:
            self.on_finalized(record)
        except Exception:
            # the ceremony itself is committed; only the archive copy is missing
            log.error("record_sink_failed", session_id=record.session_id, exc_info=True)

