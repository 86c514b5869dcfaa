from pathlib import Path
import os
import sys

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from ratewatch.config import settings
from ratewatch.db import get_conn
from ratewatch.logging import setup_logging
from ratewatch.clients import SqliteClientRepository, SqlitePreferenceRepository
from ratewatch.rates.store import RateStore
from ratewatch.services.email import build_email_sink
from ratewatch.alerts.summary import send_weekly_summaries

if __name__ == '__main__':
    setup_logging()
    sink = build_email_sink(settings)
    if sink is None:
        print('RESEND_API_KEY not set; nothing sent.')
        sys.exit(1)
    conn = get_conn(settings.db_path)
    sent = send_weekly_summaries(conn, RateStore(conn), SqliteClientRepository(conn), SqlitePreferenceRepository(conn), sink)
    print('Weekly summaries sent:', sent)
    conn.close()
