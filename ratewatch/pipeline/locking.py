import sqlite3
from datetime import datetime, timezone, timedelta

from ..utils import to_utc_iso

PIPELINE_LOCK = "rate_pipeline"


def _ensure_table(cur):
    cur.execute("""
    CREATE TABLE IF NOT EXISTS locks(
      name TEXT PRIMARY KEY,
      owner TEXT NOT NULL,
      acquired_at_utc TEXT NOT NULL,
      expires_at_utc TEXT NOT NULL
    )
    """)


def acquire_lock(conn: sqlite3.Connection, name: str, owner: str, ttl_seconds: int = 1800, now: datetime | None = None) -> bool:
    cur = conn.cursor()
    _ensure_table(cur)
    now = now or datetime.now(timezone.utc)
    now_iso = to_utc_iso(now)
    exp_iso = to_utc_iso(now + timedelta(seconds=ttl_seconds))
    cur.execute(
        "INSERT INTO locks(name, owner, acquired_at_utc, expires_at_utc) VALUES(?,?,?,?) ON CONFLICT(name) DO NOTHING",
        (name, owner, now_iso, exp_iso),
    )
    if cur.rowcount == 1:
        return True
    # Take over an expired lock; the WHERE makes the steal single-winner.
    cur.execute(
        "UPDATE locks SET owner=?, acquired_at_utc=?, expires_at_utc=? WHERE name=? AND expires_at_utc < ?",
        (owner, now_iso, exp_iso, name, now_iso),
    )
    return cur.rowcount == 1


def release_lock(conn: sqlite3.Connection, name: str, owner: str):
    cur = conn.cursor()
    cur.execute("DELETE FROM locks WHERE name=? AND owner=?", (name, owner))
