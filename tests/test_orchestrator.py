import threading
from dataclasses import replace

import pytest

from multisig.multisig_core.custody import sign
from multisig.multisig_core.errors import (
    InvalidPolicy,
    InvalidSignature,
    InvalidState,
    NotFound,
    SessionExpired,
    UnauthorizedKey,
)
from multisig.multisig_core.orchestrator import Orchestrator
from multisig.multisig_core.session import SessionState, SignatureShare
from multisig.multisig_core.verifier import SECP_N

from conftest import DIGEST


@pytest.fixture
def orch(clock):
    return Orchestrator(clock=clock, default_ttl=60, max_ttl=600, retention=30)


def _keys(identities, n):
    return [km.public_key for km in identities[:n]]


def test_scenario_two_of_three(orch, identities):
    a, b, c = identities[:3]
    sid = orch.open_ceremony(DIGEST, _keys(identities, 3), threshold=2, ttl=60)

    s = orch.contribute(sid, sign(a, DIGEST))
    assert s.state is SessionState.OPEN
    assert (s.signed, s.threshold) == (1, 2)

    s = orch.contribute(sid, sign(b, DIGEST))
    assert s.state is SessionState.FINALIZED
    assert {sh.public_key for sh in s.record.shares} == {a.public_key, b.public_key}

    with pytest.raises(InvalidState):
        orch.contribute(sid, sign(c, DIGEST))
    assert orch.status(sid).record == s.record


def test_scenario_expiry_two_of_two(orch, identities, clock):
    a, b = identities[:2]
    sid = orch.open_ceremony(DIGEST, _keys(identities, 2), threshold=2, ttl=60)
    orch.contribute(sid, sign(a, DIGEST))

    clock.advance(61)
    assert orch.status(sid).state is SessionState.EXPIRED

    with pytest.raises(SessionExpired):
        orch.contribute(sid, sign(b, DIGEST))
    assert orch.status(sid).state is SessionState.EXPIRED


def test_late_share_expires_session_instead_of_finalizing(orch, identities, clock):
    a, b = identities[:2]
    sid = orch.open_ceremony(DIGEST, _keys(identities, 2), threshold=2, ttl=60)
    orch.contribute(sid, sign(a, DIGEST))
    clock.advance(60.001)
    # no status() call in between: the submission itself notices the deadline
    with pytest.raises(SessionExpired):
        orch.contribute(sid, sign(b, DIGEST))
    s = orch.status(sid)
    assert s.state is SessionState.EXPIRED
    assert s.record is None and s.signed == 1


def test_idempotent_resubmission(orch, identities):
    sid = orch.open_ceremony(DIGEST, _keys(identities, 3), threshold=3)
    share = sign(identities[0], DIGEST)
    first = orch.contribute(sid, share)
    second = orch.contribute(sid, share)
    assert first.signed == second.signed == 1
    assert first.state is second.state is SessionState.OPEN
    assert first.shares == second.shares


def test_rejections(orch, identities):
    sid = orch.open_ceremony(DIGEST, _keys(identities, 2), threshold=2)
    with pytest.raises(UnauthorizedKey):
        orch.contribute(sid, sign(identities[3], DIGEST))
    with pytest.raises(UnauthorizedKey):
        orch.contribute(sid, SignatureShare(public_key=b"\x02" * 5, r=1, s=1))
    share = sign(identities[0], DIGEST)
    with pytest.raises(InvalidSignature):
        orch.contribute(sid, replace(share, s=SECP_N - share.s))
    with pytest.raises(NotFound):
        orch.contribute("missing", share)
    assert orch.status(sid).signed == 0


def test_uncompressed_submission_matches_compressed_authorization(orch, identities):
    from coincurve import PublicKey
    km = identities[0]
    sid = orch.open_ceremony(DIGEST, [km.public_key], threshold=1)
    share = sign(km, DIGEST)
    uncompressed = PublicKey(km.public_key).format(compressed=False)
    s = orch.contribute(sid, replace(share, public_key=uncompressed))
    assert s.state is SessionState.FINALIZED
    assert s.record.shares[0].public_key == km.public_key


def test_threshold_defaults_to_all_keys(orch, identities):
    sid = orch.open_ceremony(DIGEST, _keys(identities, 3))
    assert orch.status(sid).threshold == 3


def test_ttl_policy(orch, identities, clock):
    sid = orch.open_ceremony(DIGEST, _keys(identities, 1))
    assert orch.status(sid).expires_at == clock.now + 60
    with pytest.raises(InvalidPolicy):
        orch.open_ceremony(DIGEST, _keys(identities, 1), ttl=601)
    with pytest.raises(InvalidPolicy):
        orch.open_ceremony(DIGEST, _keys(identities, 1), ttl=-5)
    with pytest.raises(InvalidPolicy):
        orch.open_ceremony(DIGEST, _keys(identities, 1), ttl="60")
    for ttl in (float("nan"), float("inf"), float("-inf")):
        with pytest.raises(InvalidPolicy):
            orch.open_ceremony(DIGEST, _keys(identities, 1), ttl=ttl)
    assert len(orch.sessions()) == 1


def test_cancel(orch, identities, clock):
    sid = orch.open_ceremony(DIGEST, _keys(identities, 2), threshold=2)
    assert orch.cancel(sid).state is SessionState.ABORTED
    with pytest.raises(InvalidState):
        orch.cancel(sid)
    with pytest.raises(InvalidState):
        orch.contribute(sid, sign(identities[0], DIGEST))

    late = orch.open_ceremony(DIGEST, _keys(identities, 2), threshold=2, ttl=5)
    clock.advance(6)
    with pytest.raises(SessionExpired):
        orch.cancel(late)
    assert orch.status(late).state is SessionState.EXPIRED


def test_sweep_expires_then_purges(orch, identities, clock):
    stale = orch.open_ceremony(DIGEST, _keys(identities, 2), ttl=10)
    fresh = orch.open_ceremony(DIGEST, _keys(identities, 2), ttl=100)

    clock.advance(11)
    assert orch.sweep() == (1, 0)
    assert orch.status(stale).state is SessionState.EXPIRED
    assert orch.sweep() == (0, 0)  # same result on repeat

    clock.advance(31)  # past retention
    assert orch.sweep() == (0, 1)
    with pytest.raises(NotFound):
        orch.status(stale)
    assert orch.status(fresh).state is SessionState.OPEN


def test_sessions_listing(orch, identities):
    a = orch.open_ceremony(DIGEST, _keys(identities, 2))
    b = orch.open_ceremony(DIGEST, _keys(identities, 3))
    assert {s.session_id for s in orch.sessions()} == {a, b}


def test_finalized_record_published_once(clock, identities):
    published = []
    orch = Orchestrator(clock=clock, on_finalized=published.append)
    sid = orch.open_ceremony(DIGEST, _keys(identities, 3), threshold=2)
    for km in identities[:2]:
        orch.contribute(sid, sign(km, DIGEST))
    # a retried finishing share answers with the finalized session
    again = orch.contribute(sid, sign(identities[1], DIGEST))
    assert again.state is SessionState.FINALIZED
    assert again.record == orch.status(sid).record
    with pytest.raises(InvalidState):
        orch.contribute(sid, sign(identities[2], DIGEST))
    assert len(published) == 1
    assert published[0].session_id == sid


def test_sink_failure_does_not_undo_finalization(clock, identities):
    def broken(record):
        raise OSError("disk full")

    orch = Orchestrator(clock=clock, on_finalized=broken)
    sid = orch.open_ceremony(DIGEST, _keys(identities, 1), threshold=1)
    s = orch.contribute(sid, sign(identities[0], DIGEST))
    assert s.state is SessionState.FINALIZED
    assert orch.status(sid).record is not None


def test_concurrent_submissions_finalize_exactly_once(clock, identities):
    published = []
    orch = Orchestrator(clock=clock, on_finalized=published.append)
    sid = orch.open_ceremony(DIGEST, _keys(identities, 4), threshold=2)
    shares = [sign(km, DIGEST) for km in identities[:4]]
    barrier = threading.Barrier(16)
    outcomes = []
    lock = threading.Lock()

    def worker(i):
        barrier.wait(5)
        try:
            orch.contribute(sid, shares[i % 4])
            res = "ok"
        except InvalidState:
            res = "terminal"
        with lock:
            outcomes.append(res)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    s = orch.status(sid)
    assert len(outcomes) == 16
    assert s.state is SessionState.FINALIZED
    assert s.signed == 2
    assert len(s.record.shares) == 2
    assert len({sh.public_key for sh in s.record.shares}) == 2
    assert len(published) == 1


def test_ceremony_with_identifier_signers(orch, identities):
    a, b, c = identities[:3]
    sid = orch.open_ceremony(DIGEST, [a.public_key], identifiers=[b.identifier, c.identifier])
    assert orch.status(sid).threshold == 3

    with pytest.raises(UnauthorizedKey):
        orch.contribute(sid, sign(identities[3], DIGEST))
    for km in (c, a):
        assert orch.contribute(sid, sign(km, DIGEST)).state is SessionState.OPEN

    from coincurve import PublicKey
    share = sign(b, DIGEST)
    uncompressed = PublicKey(b.public_key).format(compressed=False)
    s = orch.contribute(sid, replace(share, public_key=uncompressed))
    assert s.state is SessionState.FINALIZED
    assert [sh.public_key for sh in s.record.shares] == [c.public_key, a.public_key, b.public_key]
