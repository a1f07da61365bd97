# multisig/contributor.py
# -*- coding: utf-8 -*-
"""
Ceremony client.

- asks each signer node for its identity (/whoami) and opens a ceremony on the
  coordinator with those public keys
- collects signatures over the digest from the nodes (/sign), checking each one
  locally before it is submitted
- submits them to the coordinator until the session leaves the open state

A failing node is skipped, never retried; re-signing is the operator's call.

Env: COORDINATOR_URL, SIGNER_NODES, HTTP_TIMEOUT_S (see multisig/config.py)

  python -m multisig.contributor --message "pay 100 tokens to Bob" --threshold 2
"""

import argparse
import json
from typing import Dict, List, Optional, Sequence

import requests
import structlog

from .config import Settings
from .log import configure_logging
from .multisig_core.custody import identifier_matches, message_digest
from .multisig_core.encoding import b2h, h2b, h2i, i2h
from .multisig_core.session import SignatureShare
from .multisig_core.verifier import normalize_public_key, verify

log = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_S = 1.5


def fetch_identity(node_url: str, timeout: float = DEFAULT_TIMEOUT_S) -> Dict[str, str]:
    resp = requests.get(f"{node_url.rstrip('/')}/whoami", timeout=timeout)
    resp.raise_for_status()
    data = resp.json()
    pk = normalize_public_key(h2b(data["public_key"]))
    if not identifier_matches(data["identifier"], pk):
        raise ValueError(f"identifier {data['identifier']} does not belong to {pk.hex()}")
    return {"public_key": b2h(pk), "identifier": data["identifier"]}


def collect_signatures(
    digest: bytes,
    nodes: Sequence[str],
    need: int,
    timeout: float = DEFAULT_TIMEOUT_S,
    allowed_keys: Optional[Sequence[bytes]] = None,
) -> List[SignatureShare]:
    """
    POST {"digest": "0x.."} to each node's /sign until `need` distinct keys have
    produced a signature that verifies locally.
    """
    shares: List[SignatureShare] = []
    seen = set()
    payload = {"digest": b2h(digest)}

    for url in nodes:
        try:
            resp = requests.post(f"{url.rstrip('/')}/sign", json=payload, timeout=timeout)
            resp.raise_for_status()
            data = resp.json()
            pk = normalize_public_key(h2b(data["public_key"]))
            if pk in seen:
                continue
            if allowed_keys is not None and pk not in allowed_keys:
                log.warning("signature_skipped", node=url, reason="key_not_in_ceremony")
                continue
            share = SignatureShare(public_key=pk, r=h2i(data["r"]), s=h2i(data["s"]))
            if not verify(pk, digest, (share.r, share.s)):
                log.warning("signature_skipped", node=url, reason="does_not_verify")
                continue
            shares.append(share)
            seen.add(pk)
            if len(shares) >= need:
                break
        except (requests.RequestException, KeyError, ValueError) as e:
            log.warning("signer_failed", node=url, error=str(e))
            continue
    return shares


def open_ceremony(
    coordinator_url: str,
    digest: bytes,
    public_keys: Sequence[bytes],
    threshold: Optional[int] = None,
    ttl_seconds: Optional[float] = None,
    timeout: float = DEFAULT_TIMEOUT_S,
) -> str:
    body = {"digest": b2h(digest), "authorized_keys": [b2h(pk) for pk in public_keys]}
    if threshold is not None:
        body["threshold"] = threshold
    if ttl_seconds is not None:
        body["ttl_seconds"] = ttl_seconds
    resp = requests.post(f"{coordinator_url.rstrip('/')}/sessions", json=body, timeout=timeout)
    resp.raise_for_status()
    return resp.json()["session_id"]


def submit_share(coordinator_url: str, session_id: str, share: SignatureShare,
                 timeout: float = DEFAULT_TIMEOUT_S) -> dict:
    body = {"public_key": b2h(share.public_key), "r": i2h(share.r), "s": i2h(share.s)}
    resp = requests.post(f"{coordinator_url.rstrip('/')}/sessions/{session_id}/shares", json=body, timeout=timeout)
    resp.raise_for_status()
    return resp.json()


def get_status(coordinator_url: str, session_id: str, timeout: float = DEFAULT_TIMEOUT_S) -> dict:
    resp = requests.get(f"{coordinator_url.rstrip('/')}/sessions/{session_id}", timeout=timeout)
    resp.raise_for_status()
    return resp.json()


def run_ceremony(
    coordinator_url: str,
    nodes: Sequence[str],
    digest: bytes,
    threshold: Optional[int] = None,
    ttl_seconds: Optional[float] = None,
    timeout: float = DEFAULT_TIMEOUT_S,
) -> dict:
    """Open a ceremony for every reachable node and drive it to a terminal state."""
    keys: List[bytes] = []
    for url in nodes:
        try:
            keys.append(h2b(fetch_identity(url, timeout)["public_key"]))
        except (requests.RequestException, KeyError, ValueError) as e:
            log.warning("signer_unreachable", node=url, error=str(e))
    if not keys:
        raise RuntimeError("no signer node reachable")

    need = threshold if threshold is not None else len(keys)
    session_id = open_ceremony(coordinator_url, digest, keys, threshold, ttl_seconds, timeout)
    log.info("ceremony_opened", session_id=session_id, threshold=need, total=len(keys))

    shares = collect_signatures(digest, nodes, need, timeout, allowed_keys=keys)
    if len(shares) < need:
        log.warning("not_enough_signatures", got=len(shares), need=need)

    status = get_status(coordinator_url, session_id, timeout)
    for share in shares:
        status = submit_share(coordinator_url, session_id, share, timeout)
        if status["state"] != "open":
            break
    log.info("ceremony_result", session_id=session_id, state=status["state"], progress=status["progress"])
    return status


def main(argv: Optional[Sequence[str]] = None) -> int:
    settings = Settings.from_env()
    configure_logging(settings.log_level, settings.log_json)

    parser = argparse.ArgumentParser(description="Run a multisig signing ceremony against signer nodes")
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--digest", help="0x.. 32B digest to authorize")
    src.add_argument("--message", help="message whose sha256 is authorized")
    parser.add_argument("--threshold", type=int, default=None)
    parser.add_argument("--ttl", type=float, default=None)
    parser.add_argument("--coordinator", default=settings.coordinator_url)
    parser.add_argument("--nodes", default=",".join(settings.signer_nodes))
    args = parser.parse_args(argv)

    digest = h2b(args.digest) if args.digest else message_digest(args.message.encode("utf-8"))
    nodes = [x.strip() for x in args.nodes.split(",") if x.strip()]
    status = run_ceremony(args.coordinator, nodes, digest, args.threshold, args.ttl, settings.http_timeout_s)
    print(json.dumps(status, indent=2))
    return 0 if status["state"] == "finalized" else 1


if __name__ == "__main__":
    raise SystemExit(main())
