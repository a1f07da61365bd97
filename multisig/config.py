# multisig/config.py
"""
Environment settings for the coordinator, the signer node and the contributor.

A .env file is loaded first (cwd or any parent, then this package's directory);
variables already present in the environment win.

  APP_HOST=127.0.0.1
  APP_PORT=8000
  SESSION_TTL_S=60          # default ttl when a request omits it
  MAX_TTL_S=3600
  RETENTION_S=300           # terminal sessions are kept this long
  SWEEP_INTERVAL_S=5
  CORS_ORIGINS=http://localhost:3000,http://127.0.0.1:3000
  LOG_LEVEL=info
  LOG_JSON=false
  RECORDS_DB_PATH=          # unset: finalized records are not archived

  SIGNER_MNEMONIC=...       # signer node only, never logged
  SIGNER_PASSPHRASE=
  SIGNER_INDEX=0
  SIGNER_PORT=7001

  COORDINATOR_URL=http://127.0.0.1:8000
  SIGNER_NODES=http://127.0.0.1:7001,http://127.0.0.1:7002,http://127.0.0.1:7003
  HTTP_TIMEOUT_S=1.5
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import find_dotenv, load_dotenv


def _load_dotenv() -> Optional[str]:
    path = find_dotenv(usecwd=True)
    if not path:
        here = os.path.dirname(os.path.abspath(__file__))
        cand = os.path.join(here, ".env")
        if os.path.exists(cand):
            path = cand
    if path:
        load_dotenv(path, override=False)
        return path
    return None


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _list(name: str, default: str = "") -> List[str]:
    return [x.strip() for x in os.getenv(name, default).split(",") if x.strip()]


def require_env(name: str) -> str:
    v = os.getenv(name)
    if not v:
        raise RuntimeError(f"env {name} is required")
    return v


@dataclass(frozen=True)
class Settings:
    host: str = "127.0.0.1"
    port: int = 8000
    session_ttl_s: float = 60.0
    max_ttl_s: float = 3600.0
    retention_s: float = 300.0
    sweep_interval_s: float = 5.0
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"])
    log_level: str = "info"
    log_json: bool = False
    records_db_path: Optional[str] = None

    signer_mnemonic: Optional[str] = field(default=None, repr=False)
    signer_passphrase: str = field(default="", repr=False)
    signer_index: int = 0
    signer_port: int = 7001

    coordinator_url: str = "http://127.0.0.1:8000"
    signer_nodes: List[str] = field(default_factory=list)
    http_timeout_s: float = 1.5

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        if dotenv:
            _load_dotenv()
        return cls(
            host=os.getenv("APP_HOST", "127.0.0.1"),
            port=int(os.getenv("APP_PORT", "8000")),
            session_ttl_s=float(os.getenv("SESSION_TTL_S", "60")),
            max_ttl_s=float(os.getenv("MAX_TTL_S", "3600")),
            retention_s=float(os.getenv("RETENTION_S", "300")),
            sweep_interval_s=float(os.getenv("SWEEP_INTERVAL_S", "5")),
            cors_origins=_list("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"),
            log_level=os.getenv("LOG_LEVEL", "info"),
            log_json=_flag("LOG_JSON"),
            records_db_path=os.getenv("RECORDS_DB_PATH") or None,
            signer_mnemonic=os.getenv("SIGNER_MNEMONIC") or None,
            signer_passphrase=os.getenv("SIGNER_PASSPHRASE", ""),
            signer_index=int(os.getenv("SIGNER_INDEX", "0")),
            signer_port=int(os.getenv("SIGNER_PORT", "7001")),
            coordinator_url=os.getenv("COORDINATOR_URL", "http://127.0.0.1:8000"),
            signer_nodes=_list("SIGNER_NODES", "http://127.0.0.1:7001,http://127.0.0.1:7002,http://127.0.0.1:7003"),
            http_timeout_s=float(os.getenv("HTTP_TIMEOUT_S", "1.5")),
        )
