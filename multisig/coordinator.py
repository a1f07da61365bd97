# multisig/coordinator.py
"""In-process 2-of-3 ceremony: three identities, one orchestrator, no HTTP."""

from typing import Optional, Sequence

from .multisig_core.custody import derive_identity, generate_mnemonic, message_digest, sign
from .multisig_core.errors import InvalidState
from .multisig_core.orchestrator import Orchestrator
from .multisig_core.session import SigningSession


def run_demo(mnemonics: Optional[Sequence[str]] = None, message: bytes = b"pay 100 tokens to Bob") -> SigningSession:
    if mnemonics is None:
        mnemonics = [generate_mnemonic() for _ in range(3)]
    orch = Orchestrator()
    digest = message_digest(message)

    print("=== DEMO: Multisig ceremony (2-of-3) ===")
    identities = [derive_identity(m) for m in mnemonics]
    try:
        for km in identities:
            print(f"signer {km.identifier}")
        sid = orch.open_ceremony(digest, [km.public_key for km in identities], threshold=2, ttl=60)

        # two of three sign, the third arrives late
        for km in identities[:2]:
            session = orch.contribute(sid, sign(km, digest))
            print(f"{km.identifier} -> {session.state.value} {session.signed}/{session.threshold}")
        try:
            orch.contribute(sid, sign(identities[2], digest))
        except InvalidState as e:
            print(f"late signer rejected: {e}")

        session = orch.status(sid)
        print(f"Ceremony finalized? {session.record is not None}")
        return session
    finally:
        for km in identities:
            km.release()


if __name__ == "__main__":
    run_demo()
