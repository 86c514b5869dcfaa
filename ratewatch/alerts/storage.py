from __future__ import annotations

import sqlite3

DDL_ALERTS = [
    """
    CREATE TABLE IF NOT EXISTS alert_cooldowns (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      client_id TEXT NOT NULL,
      alert_kind TEXT NOT NULL,
      sent_at_utc TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS alert_notifications (
      id INTEGER PRIMARY KEY AUTOINCREMENT,
      client_id TEXT,
      role TEXT NOT NULL,       -- 'owner'|'client'|'weekly'
      channel TEXT NOT NULL,
      sent_at_utc TEXT NOT NULL,
      success INTEGER NOT NULL,
      error TEXT
    );
    """,
]


def migrate_alerts(conn: sqlite3.Connection):
    cur = conn.cursor()
    for stmt in DDL_ALERTS:
        cur.execute(stmt)
    cur.execute("CREATE INDEX IF NOT EXISTS ix_alert_cooldowns_client ON alert_cooldowns(client_id, alert_kind, sent_at_utc);")
    cur.execute("CREATE INDEX IF NOT EXISTS ix_alert_notifications_time ON alert_notifications(sent_at_utc);")
    conn.commit()


def has_recent_cooldown(conn: sqlite3.Connection, client_id: str, alert_kind: str, since_utc: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM alert_cooldowns WHERE client_id=? AND alert_kind=? AND sent_at_utc>=? LIMIT 1",
        (client_id, alert_kind, since_utc),
    ).fetchone()
    return row is not None


def record_cooldown(conn: sqlite3.Connection, client_id: str, alert_kind: str, now_utc: str):
    conn.execute(
        "INSERT INTO alert_cooldowns(client_id, alert_kind, sent_at_utc) VALUES (?,?,?)",
        (client_id, alert_kind, now_utc),
    )
    conn.commit()


def count_cooldowns(conn: sqlite3.Connection, client_id: str | None = None) -> int:
    if client_id is None:
        row = conn.execute("SELECT COUNT(*) FROM alert_cooldowns").fetchone()
    else:
        row = conn.execute("SELECT COUNT(*) FROM alert_cooldowns WHERE client_id=?", (client_id,)).fetchone()
    return int(row[0]) if row else 0


def mark_notification(
    conn: sqlite3.Connection,
    client_id: str | None,
    role: str,
    channel: str,
    success: bool,
    error: str | None,
    now_utc: str,
):
    conn.execute(
        "INSERT INTO alert_notifications(client_id, role, channel, sent_at_utc, success, error) VALUES (?,?,?,?,?,?)",
        (client_id, role, channel, now_utc, 1 if success else 0, error),
    )
    conn.commit()


def list_recent_notifications(conn: sqlite3.Connection, limit: int = 50) -> list[dict]:
    rows = conn.execute(
        """
        SELECT client_id, role, channel, sent_at_utc, success, error
        FROM alert_notifications
        ORDER BY sent_at_utc DESC, id DESC
        LIMIT ?
        """,
        (int(limit),),
    ).fetchall()
    return [
        {
            "client_id": r[0],
            "role": r[1],
            "channel": r[2],
            "sent_at_utc": r[3],
            "success": bool(r[4]),
            "error": r[5],
        }
        for r in rows
    ]
