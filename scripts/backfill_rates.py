#!/usr/bin/env python3
"""
Import FRED mortgage rate history into the rate store.

Usage:
    python scripts/backfill_rates.py                              # all series, full history
    python scripts/backfill_rates.py --since 2024-01-01           # only rows on/after a date
    python scripts/backfill_rates.py --series MORTGAGE30US        # one series
    python scripts/backfill_rates.py --series MORTGAGE30US --csv ./MORTGAGE30US.csv
"""
from pathlib import Path
import argparse
import os
import sys
from datetime import date

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from ratewatch.config import settings
from ratewatch.db import get_conn
from ratewatch.logging import setup_logging
from ratewatch.rates.backfill import FRED_SERIES, backfill_fred
from ratewatch.rates.store import RateStore


def main():
    parser = argparse.ArgumentParser(description="Backfill mortgage rate history from FRED.")
    parser.add_argument("--series", action="append", choices=sorted(FRED_SERIES), help="FRED series id (repeatable).")
    parser.add_argument("--since", help="Earliest observation date, YYYY-MM-DD.")
    parser.add_argument("--csv", help="Local CSV for a single --series instead of downloading.")
    args = parser.parse_args()

    since = date.fromisoformat(args.since) if args.since else None
    sources = None
    if args.csv:
        if not args.series or len(args.series) != 1:
            parser.error("--csv needs exactly one --series")
        sources = {args.series[0]: args.csv}

    setup_logging()
    conn = get_conn(settings.db_path)
    try:
        counts = backfill_fred(RateStore(conn), args.series, since=since, sources=sources)
    finally:
        conn.close()
    for series_id, inserted in counts.items():
        print(f"{series_id}: {inserted} new rows")


if __name__ == '__main__':
    main()
