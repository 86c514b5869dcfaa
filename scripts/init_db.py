from pathlib import Path
import os
import sys

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from ratewatch.db import get_conn, migrate
from ratewatch.config import settings
from ratewatch.alerts.storage import migrate_alerts
from ratewatch.rates.store import RateStore

if __name__ == '__main__':
    conn = get_conn(settings.db_path)
    migrate(conn)
    migrate_alerts(conn)
    store = RateStore(conn)
    migrated = store.migrate_legacy()
    print('DB ready at', settings.db_path, '| observations:', store.count(), '| legacy rows migrated:', migrated)
    conn.close()
