import os
import sqlite3
import tempfile
import unittest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

from fastapi import FastAPI
from fastapi.testclient import TestClient

from ratewatch.alerts.storage import mark_notification, migrate_alerts
from ratewatch.api.routes import router
from ratewatch.config import settings
from ratewatch.db import get_conn
from ratewatch.rates.models import CONVENTIONAL_30, FHA_30, RateObservation
from ratewatch.rates.store import RateStore

T0 = datetime(2025, 3, 14, 15, 0, tzinfo=timezone.utc)


class ApiTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.db_path = os.path.join(tmp.name, "api.db")
        db_patch = patch.object(settings, "db_path", self.db_path)
        db_patch.start()
        self.addCleanup(db_patch.stop)
        # Queued runs are not executed against the network.
        run_patch = patch("ratewatch.pipeline.orchestrator.run_pipeline")
        self.run_pipeline = run_patch.start()
        self.addCleanup(run_patch.stop)
        self.conn = get_conn(self.db_path)
        self.addCleanup(self.conn.close)
        self.store = RateStore(self.conn)
        app = FastAPI()
        app.include_router(router)
        self.client = TestClient(app)

    def _seed(self):
        rows = []
        for day, rate in [(date(2025, 3, 13), "6.900"), (date(2025, 3, 14), "6.800")]:
            rows.append(
                RateObservation(
                    observation_date=day,
                    term_years=30,
                    loan_type=CONVENTIONAL_30.loan_type,
                    rate_value=Decimal(rate),
                    recorded_at=T0,
                )
            )
        rows.append(
            RateObservation(
                observation_date=date(2025, 3, 14),
                term_years=30,
                loan_type=FHA_30.loan_type,
                rate_value=Decimal("6.100"),
                recorded_at=T0,
            )
        )
        self.store.upsert(rows)

    def test_health(self):
        r = self.client.get("/health")
        self.assertEqual(r.status_code, 200)
        self.assertTrue(r.json()["ok"])
        self.assertIsNone(r.json()["last_run"])

    def test_current_rates(self):
        self._seed()
        r = self.client.get("/rates/current")
        self.assertEqual(r.status_code, 200)
        by_series = {row["series"]: row for row in r.json()}
        self.assertEqual(by_series["30yr_conventional"]["rate_value"], 6.8)
        self.assertEqual(by_series["30yr_fha"]["rate_value"], 6.1)

    def test_series_summary(self):
        self._seed()
        r = self.client.get("/rates/30yr_conventional/summary")
        self.assertEqual(r.status_code, 200)
        body = r.json()
        self.assertEqual(body["series"], "30yr_conventional")
        self.assertEqual(body["points"], 2)
        self.assertAlmostEqual(body["change_day"], -0.1)
        self.assertEqual(body["trend"], "down")
        self.assertEqual(self.client.get("/rates/30yr_mystery/summary").status_code, 404)
        self.assertEqual(self.client.get("/rates/garbage/summary").status_code, 404)

    def test_empty_series_summary(self):
        r = self.client.get("/rates/30yr_va/summary")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["points"], 0)
        self.assertIsNone(r.json()["latest"])

    def test_trigger_key_returns_same_run(self):
        first = self.client.post("/runs", json={"trigger_key": "manual-1"})
        second = self.client.post("/runs", json={"trigger_key": "manual-1"})
        self.assertEqual(first.status_code, 202)
        self.assertEqual(first.json()["run_id"], second.json()["run_id"])
        self.assertEqual(self.run_pipeline.call_count, 1)
        status = self.client.get(f"/runs/{first.json()['run_id']}")
        self.assertEqual(status.status_code, 200)
        self.assertEqual(status.json()["status"], "running")
        self.assertEqual(status.json()["trigger_key"], "manual-1")

    def test_trigger_without_body(self):
        r = self.client.post("/runs")
        self.assertEqual(r.status_code, 202)
        self.assertEqual(self.run_pipeline.call_count, 1)

    def test_unknown_run(self):
        self.assertEqual(self.client.get("/runs/nope").status_code, 404)

    def test_recent_alerts(self):
        migrate_alerts(self.conn)
        mark_notification(self.conn, "c1", "owner", "email", True, None, "2025-03-14T15:00:00.000000+00:00")
        r = self.client.get("/alerts/recent")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()[0]["client_id"], "c1")
        self.assertTrue(r.json()[0]["success"])
        self.assertEqual(self.client.get("/alerts/recent?limit=0").status_code, 400)

    def test_reset_requires_confirm(self):
        self._seed()
        self.assertEqual(self.client.post("/admin/rates/reset").status_code, 400)
        r = self.client.post("/admin/rates/reset?confirm=true")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["deleted"], 3)
        self.assertEqual(self.store.count(), 0)

    def test_series_summary_reports_year_change(self):
        start = date(2024, 1, 1)
        self.store.upsert([
            RateObservation(
                observation_date=start + timedelta(days=i),
                term_years=30,
                loan_type=CONVENTIONAL_30.loan_type,
                rate_value=Decimal("7.000") - Decimal(i) / 1000,
                recorded_at=T0,
            )
            for i in range(400)
        ])
        body = self.client.get("/rates/30yr_conventional/summary").json()
        self.assertAlmostEqual(body["change_year"], -0.365)
        self.assertEqual(body["points"], 365)
        self.assertAlmostEqual(body["high_52w"], 6.965)

    def test_handlers_close_their_connections(self):
        opened = []

        def tracking_get_conn(path):
            conn = get_conn(path)
            opened.append(conn)
            return conn

        with patch("ratewatch.api.routes.get_conn", tracking_get_conn), patch(
            "ratewatch.pipeline.orchestrator.get_conn", tracking_get_conn
        ):
            for path in ["/health", "/rates/current", "/rates/30yr_conventional/summary", "/alerts/recent", "/runs/nope"]:
                self.client.get(path)
            self.client.post("/runs")
            self.client.post("/admin/rates/reset?confirm=true")
        self.assertEqual(len(opened), 7)
        for conn in opened:
            with self.assertRaises(sqlite3.ProgrammingError):
                conn.execute("SELECT 1")


if __name__ == "__main__":
    unittest.main()
