# multisig_core/records.py
"""SQLite archive of finalized ceremony records (one row per session)."""

import json
import sqlite3
from typing import List, Optional

from .encoding import h2b
from .session import CeremonyRecord, SignatureShare


class RecordStore:

    def __init__(self, db_path: str):
        self.db_path = db_path

    def _open_db(self):
        con = sqlite3.connect(self.db_path)
        try:
            con.execute("PRAGMA journal_mode=WAL;")
        except sqlite3.DatabaseError:
            pass  # e.g. :memory: or read-only media
        return con

    def ensure_tables(self) -> None:
        con = self._open_db()
        try:
            con.execute("""
            CREATE TABLE IF NOT EXISTS ceremony_records(
              session_id TEXT PRIMARY KEY,
              digest BLOB,
              threshold INTEGER,
              total INTEGER,
              finalized_at REAL,
              shares TEXT
            )""")
            con.commit()
        finally:
            con.close()

    def save(self, record: CeremonyRecord) -> bool:
        """Insert a record once. Returns False if the session was already archived."""
        con = self._open_db()
        try:
            cur = con.execute("""
              INSERT OR IGNORE INTO ceremony_records(session_id, digest, threshold, total, finalized_at, shares)
              VALUES(?,?,?,?,?,?)
            """, (
                record.session_id,
                record.digest,
                record.threshold,
                record.total,
                record.finalized_at,
                json.dumps([sh.to_dict() for sh in record.shares]),
            ))
            con.commit()
            return cur.rowcount == 1
        finally:
            con.close()

    def get(self, session_id: str) -> Optional[CeremonyRecord]:
        con = self._open_db()
        try:
            row = con.execute(
                "SELECT session_id, digest, threshold, total, finalized_at, shares "
                "FROM ceremony_records WHERE session_id=?", (session_id,)
            ).fetchone()
        finally:
            con.close()
        return _row_to_record(row) if row else None

    def all(self) -> List[CeremonyRecord]:
        con = self._open_db()
        try:
            rows = con.execute(
                "SELECT session_id, digest, threshold, total, finalized_at, shares "
                "FROM ceremony_records ORDER BY finalized_at"
            ).fetchall()
        finally:
            con.close()
        return [_row_to_record(r) for r in rows]


def _row_to_record(row) -> CeremonyRecord:
    sid, digest, threshold, total, finalized_at, shares_json = row
    shares = tuple(
        SignatureShare(
            public_key=h2b(d["public_key"]),
            r=int(d["r"], 16),
            s=int(d["s"], 16),
            submitted_at=d["submitted_at"],
        )
        for d in json.loads(shares_json)
    )
    return CeremonyRecord(
        session_id=sid,
        digest=bytes(digest),
        shares=shares,
        threshold=threshold,
        total=total,
        finalized_at=finalized_at,
    )
