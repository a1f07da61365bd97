import pytest
from fastapi.testclient import TestClient

from multisig.config import Settings
from multisig.multisig_core.custody import derive_identity
from multisig.multisig_core.encoding import b2h, h2b, h2i
from multisig.multisig_core.verifier import verify
from multisig.signer_node import create_app

from conftest import DIGEST, MNEMONICS


@pytest.fixture
def node(identities):
    # no context manager: the lifespan would release the shared identity
    return TestClient(create_app(identity=identities[0], settings=Settings()))


def test_whoami_exposes_public_data_only(node, identities):
    body = node.get("/whoami").json()
    assert body == {"public_key": b2h(identities[0].public_key), "identifier": identities[0].identifier}


def test_sign_returns_verifiable_signature(node, identities):
    body = node.post("/sign", json={"digest": b2h(DIGEST)}).json()
    assert h2b(body["public_key"]) == identities[0].public_key
    assert verify(identities[0].public_key, DIGEST, (h2i(body["r"]), h2i(body["s"])))
    assert set(body) == {"public_key", "identifier", "r", "s"}


@pytest.mark.parametrize("digest", ["0xzz", "0x" + "00" * 31, "0x" + "00" * 33])
def test_sign_rejects_bad_digest(node, digest):
    assert node.post("/sign", json={"digest": digest}).status_code == 400


def test_identity_released_on_shutdown():
    km = derive_identity(MNEMONICS[3])
    with TestClient(create_app(identity=km, settings=Settings())) as c:
        assert c.get("/health").json() == {"ok": True}
        assert c.post("/sign", json={"digest": b2h(DIGEST)}).status_code == 200
    assert km.released
    c = TestClient(create_app(identity=km, settings=Settings()))
    assert c.post("/sign", json={"digest": b2h(DIGEST)}).status_code == 503
    assert c.get("/health").json() == {"ok": False}


def test_identity_derived_from_settings_at_startup():
    settings = Settings(signer_mnemonic=MNEMONICS[1], signer_index=2)
    with TestClient(create_app(settings=settings)) as c:
        body = c.get("/whoami").json()
    with derive_identity(MNEMONICS[1], index=2) as expected:
        assert body["public_key"] == b2h(expected.public_key)


def test_missing_identity_is_unavailable():
    c = TestClient(create_app(settings=Settings()))
    assert c.get("/whoami").status_code == 503
