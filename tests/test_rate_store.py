import os
import tempfile
import unittest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from ratewatch.db import get_conn
from ratewatch.rates.models import CONVENTIONAL_15, CONVENTIONAL_30, FHA_30, LoanType, RateObservation
from ratewatch.rates.store import RateStore

T0 = datetime(2025, 3, 14, 14, 0, tzinfo=timezone.utc)


def _obs(day=date(2025, 3, 14), rate="6.450", key=CONVENTIONAL_30, recorded_at=T0, kind="fixed"):
    return RateObservation(
        observation_date=day,
        term_years=key.term_years,
        loan_type=key.loan_type,
        rate_value=Decimal(rate),
        recorded_at=recorded_at,
        rate_kind=kind,
        source="test",
    )


class RateStoreTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.conn = get_conn(os.path.join(tmp.name, "rates.db"))
        self.addCleanup(self.conn.close)
        self.store = RateStore(self.conn)

    def test_upsert_is_idempotent(self):
        self.assertEqual(self.store.upsert([_obs()]), 1)
        self.assertEqual(self.store.upsert([_obs(recorded_at=T0 + timedelta(minutes=5))]), 0)
        self.assertEqual(self.store.count(), 1)

    def test_changed_value_appends_and_becomes_current(self):
        self.store.upsert([_obs(rate="6.450")])
        self.store.upsert([_obs(rate="6.400", recorded_at=T0 + timedelta(hours=2))])
        self.assertEqual(self.store.count(), 2)
        current = self.store.current_by_key()
        self.assertEqual(current[CONVENTIONAL_30].rate_value, Decimal("6.400"))

    def test_latest_wins_on_recorded_at_not_insertion_order(self):
        self.store.upsert([_obs(rate="6.500", recorded_at=T0)])
        self.store.upsert([_obs(rate="6.400", recorded_at=T0 - timedelta(hours=1))])
        current = self.store.current_by_key()
        self.assertEqual(current[CONVENTIONAL_30].rate_value, Decimal("6.500"))

    def test_newer_date_wins_over_later_recording(self):
        self.store.upsert([
            _obs(day=date(2025, 3, 14), rate="6.450", recorded_at=T0),
            _obs(day=date(2025, 3, 13), rate="6.600", recorded_at=T0 + timedelta(hours=3)),
        ])
        self.assertEqual(self.store.current_by_key()[CONVENTIONAL_30].observation_date, date(2025, 3, 14))

    def test_current_by_key_covers_each_series(self):
        self.store.upsert([
            _obs(rate="6.450", key=CONVENTIONAL_30),
            _obs(rate="5.800", key=CONVENTIONAL_15),
            _obs(rate="6.010", key=FHA_30),
        ])
        current = self.store.current_by_key()
        self.assertEqual(set(current), {CONVENTIONAL_30, CONVENTIONAL_15, FHA_30})
        self.assertEqual(current[FHA_30].loan_type, LoanType.FHA)

    def test_history_resolves_one_row_per_date(self):
        self.store.upsert([_obs(day=date(2025, 3, 12), rate="6.700")])
        self.store.upsert([_obs(day=date(2025, 3, 13), rate="6.600")])
        self.store.upsert([_obs(day=date(2025, 3, 13), rate="6.550", recorded_at=T0 + timedelta(hours=1))])
        self.store.upsert([_obs(day=date(2025, 3, 13), rate="6.500", key=FHA_30)])
        history = self.store.history(30, LoanType.CONVENTIONAL)
        self.assertEqual([h.observation_date for h in history], [date(2025, 3, 12), date(2025, 3, 13)])
        self.assertEqual(history[-1].rate_value, Decimal("6.550"))
        since = self.store.history(30, LoanType.CONVENTIONAL, since=date(2025, 3, 13))
        self.assertEqual(len(since), 1)

    def test_failed_batch_rolls_back(self):
        bad = _obs(day=None)
        with self.assertRaises(AttributeError):
            self.store.upsert([_obs(), bad])
        self.assertEqual(self.store.count(), 0)

    def test_latest_date_and_reset(self):
        self.assertIsNone(self.store.latest_date())
        self.store.upsert([_obs(day=date(2025, 3, 12)), _obs(day=date(2025, 3, 14), key=FHA_30)])
        self.assertEqual(self.store.latest_date(), date(2025, 3, 14))
        self.assertEqual(self.store.reset(), 2)
        self.assertEqual(self.store.count(), 0)

    def test_migrate_legacy_rows(self):
        self.conn.execute(
            "CREATE TABLE rate_history (rate_date TEXT, term_years INTEGER, rate_value REAL, rate_type TEXT, created_at TEXT)"
        )
        self.conn.executemany(
            "INSERT INTO rate_history VALUES (?,?,?,?,?)",
            [
                ("2024-01-02", 30, 6.6, "fixed", "2024-01-02T12:00:00+00:00"),
                ("2024-01-02", 15, 5.9, "fixed", "2024-01-02T12:00:00+00:00"),
            ],
        )
        self.assertEqual(self.store.migrate_legacy(), 2)
        current = self.store.current_by_key()
        self.assertEqual(current[CONVENTIONAL_30].rate_value, Decimal("6.600"))
        self.assertEqual(current[CONVENTIONAL_15].rate_value, Decimal("5.900"))
        self.assertEqual(self.store.migrate_legacy(), 0)

    def test_migrate_legacy_conflicting_row_copied_once(self):
        self.store.upsert([_obs(day=date(2025, 3, 14), rate="6.800")])
        self.conn.execute(
            "CREATE TABLE rate_history (rate_date TEXT, term_years INTEGER, rate_value REAL, rate_type TEXT, created_at TEXT)"
        )
        self.conn.execute(
            "INSERT INTO rate_history VALUES (?,?,?,?,?)",
            ("2025-03-14", 30, 6.9, "fixed", "2025-03-14T09:00:00+00:00"),
        )
        counts = []
        for _ in range(3):
            self.store.migrate_legacy()
            counts.append(self.store.count())
        self.assertEqual(counts, [2, 2, 2])
        # The older legacy reading never displaces the canonical one.
        self.assertEqual(self.store.current_by_key()[CONVENTIONAL_30].rate_value, Decimal("6.800"))

    def test_replayed_older_write_is_not_duplicated(self):
        self.store.upsert([_obs(rate="6.500", recorded_at=T0)])
        late = _obs(rate="6.400", recorded_at=T0 - timedelta(hours=1))
        self.assertEqual(self.store.upsert([late]), 1)
        self.assertEqual(self.store.upsert([late]), 0)
        self.assertEqual(self.store.count(), 2)

    def test_migrate_legacy_without_table(self):
        self.assertEqual(self.store.migrate_legacy(), 0)


if __name__ == "__main__":
    unittest.main()
