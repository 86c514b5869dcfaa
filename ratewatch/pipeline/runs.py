import json
import sqlite3

from ..utils import now_utc_iso

RUN_RUNNING = "running"
RUN_SUCCEEDED = "succeeded"
RUN_DEGRADED = "degraded"
RUN_FAILED = "failed"
RUN_SKIPPED = "skipped"


def register_run(conn: sqlite3.Connection, run_id: str, trigger_key: str | None = None) -> str:
    """Create the run row; with a trigger key already seen, return that key's run id instead."""
    cur = conn.cursor()
    cur.execute(
        "INSERT OR IGNORE INTO runs(run_id, trigger_key, started_at_utc, status) VALUES(?,?,?,?)",
        (run_id, trigger_key, now_utc_iso(), RUN_RUNNING),
    )
    if trigger_key is None or cur.rowcount == 1:
        return run_id
    row = cur.execute("SELECT run_id FROM runs WHERE trigger_key=?", (trigger_key,)).fetchone()
    return row[0] if row else run_id


def start_run(conn: sqlite3.Connection, run_id: str, trigger_key: str | None = None):
    conn.execute(
        """
        INSERT INTO runs(run_id, trigger_key, started_at_utc, status) VALUES(?,?,?,?)
        ON CONFLICT(run_id) DO UPDATE SET started_at_utc=excluded.started_at_utc, status=excluded.status
        """,
        (run_id, trigger_key, now_utc_iso(), RUN_RUNNING),
    )


def finish_run(
    conn: sqlite3.Connection,
    run_id: str,
    status: str,
    err: str | None = None,
    rate_as_of_date: str | None = None,
    summary: dict | None = None,
):
    conn.execute(
        """
        UPDATE runs SET finished_at_utc=?, status=?, error_message=?, rate_as_of_date=?, summary_json=?
        WHERE run_id=?
        """,
        (
            now_utc_iso(),
            status,
            err[:1000] if err else None,
            rate_as_of_date,
            json.dumps(summary, default=str) if summary is not None else None,
            run_id,
        ),
    )


def get_run_status(conn: sqlite3.Connection, run_id: str):
    cur = conn.cursor()
    row = cur.execute(
        """
        SELECT run_id, trigger_key, started_at_utc, finished_at_utc, status, error_message, rate_as_of_date, summary_json
        FROM runs WHERE run_id=?
        """,
        (run_id,),
    ).fetchone()
    if not row: return None
    return {
        'run_id': row[0], 'trigger_key': row[1], 'started_at_utc': row[2], 'finished_at_utc': row[3],
        'status': row[4], 'error_message': row[5], 'rate_as_of_date': row[6],
        'summary': json.loads(row[7]) if row[7] else None,
    }


def get_last_run(conn: sqlite3.Connection):
    row = conn.execute(
        "SELECT run_id, status, started_at_utc, finished_at_utc FROM runs ORDER BY started_at_utc DESC LIMIT 1"
    ).fetchone()
    if not row:
        return None
    return {'run_id': row[0], 'status': row[1], 'started_at_utc': row[2], 'finished_at_utc': row[3]}
