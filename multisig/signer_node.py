# multisig/signer_node.py
# -*- coding: utf-8 -*-
"""
Co-signer node: owns exactly one identity and signs digests with it.

- the identity is derived from SIGNER_MNEMONIC / SIGNER_PASSPHRASE / SIGNER_INDEX
  when the app starts and zeroed when it stops
- GET  /whoami  -> {"public_key": "0x02/03..", "identifier": "1..."}
- POST /sign    {"digest": "0x..32B"} -> {"public_key", "identifier", "r", "s"}
- the secret never leaves the process, /whoami and /sign return public data only

Run (three nodes, three ports):
  export SIGNER_MNEMONIC="..."  SIGNER_INDEX=0
  uvicorn multisig.signer_node:create_app --factory --host 127.0.0.1 --port 7001
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from .config import Settings, require_env
from .log import configure_logging
from .multisig_core.custody import KeyMaterial, derive_identity, sign
from .multisig_core.encoding import b2h, h2b, i2h
from .multisig_core.errors import SigningUnavailable

log = structlog.get_logger(__name__)


class SignReq(BaseModel):
    digest: str  # 0x.. 32B


class SignResp(BaseModel):
    public_key: str
    identifier: str
    r: str
    s: str


class WhoAmIResp(BaseModel):
    public_key: str
    identifier: str


def create_app(identity: Optional[KeyMaterial] = None, settings: Optional[Settings] = None) -> FastAPI:
    """Build a signer app. With no identity it derives one from the environment at startup."""
    if settings is None:
        settings = Settings.from_env()
        configure_logging(settings.log_level, settings.log_json)

    holder = {"km": identity}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if holder["km"] is None:
            mnemonic = settings.signer_mnemonic or require_env("SIGNER_MNEMONIC")
            holder["km"] = derive_identity(mnemonic, settings.signer_passphrase, settings.signer_index)
        km = holder["km"]
        log.info("signer_ready", identifier=km.identifier, index=km.index)
        try:
            yield
        finally:
            km.release()
            log.info("signer_released", identifier=km.identifier)

    app = FastAPI(title="Multisig Signer Node", lifespan=lifespan)

    def _km() -> KeyMaterial:
        km = holder["km"]
        if km is None:
            raise HTTPException(status_code=503, detail="identity not loaded")
        return km

    @app.get("/health")
    def health():
        km = holder["km"]
        return {"ok": km is not None and not km.released}

    @app.get("/whoami", response_model=WhoAmIResp)
    def whoami():
        km = _km()
        return WhoAmIResp(public_key=b2h(km.public_key), identifier=km.identifier)

    @app.post("/sign", response_model=SignResp)
    def sign_digest(req: SignReq):
        km = _km()
        try:
            digest = h2b(req.digest.strip())
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid hex for digest")
        if len(digest) != 32:
            raise HTTPException(status_code=400, detail="digest must be 32 bytes")
        try:
            share = sign(km, digest)
        except SigningUnavailable as e:
            raise HTTPException(status_code=503, detail=e.message)
        log.info("digest_signed", identifier=km.identifier, digest=b2h(digest))
        return SignResp(public_key=b2h(share.public_key), identifier=km.identifier,
                        r=i2h(share.r), s=i2h(share.s))

    return app


if __name__ == "__main__":
    import uvicorn
    _settings = Settings.from_env()
    configure_logging(_settings.log_level, _settings.log_json)
    uvicorn.run(create_app(settings=_settings), host=_settings.host, port=_settings.signer_port)
