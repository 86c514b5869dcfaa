import sqlite3
from pathlib import Path

def get_conn(db_path: str) -> sqlite3.Connection:
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)  # autocommit
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn

DDL = [
    # Rate observations (append-mostly; natural key is not unique on purpose)
    """
CREATE TABLE IF NOT EXISTS rate_observations (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  observation_date TEXT NOT NULL,
  term_years INTEGER NOT NULL,
  loan_type TEXT NOT NULL,
  rate_value TEXT NOT NULL,     -- decimal as text, 3dp
  rate_kind TEXT NOT NULL,      -- 'fixed'|'market'
  recorded_at_utc TEXT NOT NULL,
  source TEXT NOT NULL,
  run_id TEXT
);
""",
    "CREATE INDEX IF NOT EXISTS ix_rate_obs_recent ON rate_observations(observation_date DESC, recorded_at_utc DESC);",
    "CREATE INDEX IF NOT EXISTS ix_rate_obs_key ON rate_observations(term_years, loan_type, observation_date, recorded_at_utc);",

    # Pipeline runs
    """
CREATE TABLE IF NOT EXISTS runs (
  run_id TEXT PRIMARY KEY,
  trigger_key TEXT,
  started_at_utc TEXT NOT NULL,
  finished_at_utc TEXT,
  status TEXT NOT NULL,   -- 'running'|'succeeded'|'degraded'|'failed'|'skipped'
  error_message TEXT,
  rate_as_of_date TEXT,
  summary_json TEXT
);
""",
    "CREATE UNIQUE INDEX IF NOT EXISTS ux_runs_trigger_key ON runs(trigger_key) WHERE trigger_key IS NOT NULL;",

    # Read-only mirrors of the CRM / account-settings collaborators
    """
CREATE TABLE IF NOT EXISTS profiles (
  user_id TEXT PRIMARY KEY,
  full_name TEXT,
  email TEXT NOT NULL,
  phone TEXT
);
""",
    """
CREATE TABLE IF NOT EXISTS clients (
  client_id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL,
  first_name TEXT,
  last_name TEXT,
  email TEXT,
  loan_type TEXT,
  target_rate TEXT,
  current_rate TEXT,   -- rate on the existing loan, optional
  loan_amount REAL
);
""",
    "CREATE INDEX IF NOT EXISTS ix_clients_user ON clients(user_id);",
    """
CREATE TABLE IF NOT EXISTS notification_preferences (
  user_id TEXT PRIMARY KEY,
  rate_alerts INTEGER NOT NULL DEFAULT 1,
  send_to_client INTEGER NOT NULL DEFAULT 0,
  weekly_reports INTEGER NOT NULL DEFAULT 0
);
""",
]

def migrate(conn: sqlite3.Connection):
    cur = conn.cursor()
    for stmt in DDL:
        cur.execute(stmt)
    cols = {row[1] for row in cur.execute("PRAGMA table_info(runs)").fetchall()}
    if cols:
        if "trigger_key" not in cols:
            cur.execute("ALTER TABLE runs ADD COLUMN trigger_key TEXT")
        if "summary_json" not in cols:
            cur.execute("ALTER TABLE runs ADD COLUMN summary_json TEXT")
    pref_cols = {row[1] for row in cur.execute("PRAGMA table_info(notification_preferences)").fetchall()}
    client_cols = {row[1] for row in cur.execute("PRAGMA table_info(clients)").fetchall()}
    if client_cols and "current_rate" not in client_cols:
        cur.execute("ALTER TABLE clients ADD COLUMN current_rate TEXT")
    if pref_cols and "weekly_reports" not in pref_cols:
        cur.execute("ALTER TABLE notification_preferences ADD COLUMN weekly_reports INTEGER NOT NULL DEFAULT 0")
    conn.commit()
