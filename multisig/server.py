# multisig/server.py
"""
Coordinator HTTP service.

  POST /sessions                  open a ceremony
  POST /sessions/{id}/shares      contribute a signature
  GET  /sessions/{id}             state, progress, record once finalized
  POST /sessions/{id}/cancel      abort an open ceremony
  GET  /sessions                  all sessions still held in memory
  GET  /health

Run:
  uvicorn multisig.server:create_app --factory --host 127.0.0.1 --port 8000
"""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import List, Optional, Tuple

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import Settings
from .log import configure_logging
from .multisig_core.custody import decode_identifier
from .multisig_core.encoding import h2b, h2i
from .multisig_core.errors import CeremonyError, InvariantViolation, UnauthorizedKey
from .multisig_core.orchestrator import Orchestrator
from .multisig_core.records import RecordStore
from .multisig_core.session import SignatureShare, SigningSession

log = structlog.get_logger(__name__)


# 请求模型
class OpenSessionReq(BaseModel):
    digest: str                       # 0x.. 32B
    authorized_keys: List[str]        # 0x02/03.. 33B (65B uncompressed accepted) or Base58 "1..." identifier
    threshold: Optional[int] = None   # defaults to len(authorized_keys)
    ttl_seconds: Optional[float] = None


class OpenSessionResp(BaseModel):
    session_id: str


class ShareReq(BaseModel):
    public_key: str
    r: str
    s: str


def _split_signers(entries: List[str]) -> Tuple[List[bytes], List[str]]:
    """Base58 identifiers go by identifier, anything else must be a hex public key."""
    keys: List[bytes] = []
    ids: List[str] = []
    for entry in entries:
        try:
            decode_identifier(entry.strip())
        except ValueError:
            keys.append(h2b(entry))
            continue
        ids.append(entry.strip())
    return keys, ids


def _status(session: SigningSession) -> dict:
    body = session.to_dict()
    body["progress"] = f"{session.signed}/{session.threshold}"
    return body


def create_app(orchestrator: Optional[Orchestrator] = None, settings: Optional[Settings] = None) -> FastAPI:
    if settings is None:
        settings = Settings.from_env()
        configure_logging(settings.log_level, settings.log_json)

    if orchestrator is None:
        store = None
        if settings.records_db_path:
            store = RecordStore(settings.records_db_path)
            store.ensure_tables()
        orchestrator = Orchestrator(
            default_ttl=settings.session_ttl_s,
            max_ttl=settings.max_ttl_s,
            retention=settings.retention_s,
            on_finalized=store.save if store else None,
        )
    orch = orchestrator

    async def _sweep_loop(stop: asyncio.Event) -> None:
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=settings.sweep_interval_s)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await asyncio.to_thread(orch.sweep)
            except Exception:
                log.warning("sweep_error", exc_info=True)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info("coordinator_starting", host=settings.host, port=settings.port,
                 default_ttl=settings.session_ttl_s, records=settings.records_db_path or "off")
        stop = asyncio.Event()
        task = asyncio.create_task(_sweep_loop(stop))
        yield
        stop.set()
        await task
        log.info("coordinator_stopped")

    app = FastAPI(title="Multisig Ceremony Coordinator", lifespan=lifespan)
    app.state.orchestrator = orch

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def trace_requests(request: Request, call_next):
        if request.url.path == "/health":
            return await call_next(request)
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(request_id=request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")
        log.info("request", request_id=request_id, method=request.method, path=request.url.path,
                 status=response.status_code, latency_ms=round((time.perf_counter() - started) * 1000, 2))
        response.headers["x-request-id"] = request_id
        return response

    @app.exception_handler(CeremonyError)
    async def _ceremony_error(request: Request, exc: CeremonyError) -> JSONResponse:
        if isinstance(exc, InvariantViolation):
            log.error("invariant_violation", path=request.url.path, error=str(exc))
            return JSONResponse(status_code=500, content={"detail": "Internal server error", "code": exc.code})
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})

    # API 端点
    @app.get("/health")
    def health():
        return {"ok": True, "sessions": len(orch.registry)}

    @app.post("/sessions", response_model=OpenSessionResp, status_code=201)
    def open_session(req: OpenSessionReq):
        try:
            digest = h2b(req.digest)
            keys, ids = _split_signers(req.authorized_keys)
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid hex in digest or authorized_keys")
        sid = orch.open_ceremony(digest, keys, threshold=req.threshold, ttl=req.ttl_seconds, identifiers=ids)
        return OpenSessionResp(session_id=sid)

    @app.get("/sessions")
    def list_sessions():
        return {"sessions": [_status(s) for s in orch.sessions()]}

    @app.get("/sessions/{session_id}")
    def get_session(session_id: str):
        return _status(orch.status(session_id))

    @app.post("/sessions/{session_id}/shares")
    def submit_share(session_id: str, req: ShareReq):
        try:
            public_key = h2b(req.public_key)
        except ValueError:
            raise UnauthorizedKey("public key is not valid hex")
        try:
            r, s = h2i(req.r), h2i(req.s)
        except ValueError:
            raise HTTPException(status_code=422, detail="invalid hex in signature")
        session = orch.contribute(session_id, SignatureShare(public_key=public_key, r=r, s=s))
        return _status(session)

    @app.post("/sessions/{session_id}/cancel")
    def cancel_session(session_id: str):
        return _status(orch.cancel(session_id))

    return app


if __name__ == "__main__":
    import uvicorn
    _settings = Settings.from_env()
    configure_logging(_settings.log_level, _settings.log_json)
    uvicorn.run(create_app(settings=_settings), host=_settings.host, port=_settings.port)
