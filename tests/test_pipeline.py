import os
import sqlite3
import tempfile
import unittest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

import httpx

from ratewatch.alerts.storage import count_cooldowns, list_recent_notifications
from ratewatch.config import settings
from ratewatch.db import get_conn
from ratewatch.pipeline.locking import PIPELINE_LOCK, acquire_lock
from ratewatch.pipeline.orchestrator import run_pipeline
from ratewatch.pipeline.runs import get_run_status
from ratewatch.rates.models import CONVENTIONAL_30, RateObservation
from ratewatch.rates.source import RateSource
from ratewatch.rates.store import RateStore
from ratewatch.utils import RateLimiter

T0 = datetime(2025, 3, 14, 15, 0, tzinfo=timezone.utc)

PAGE = """
<html><body>
<p>Last Updated: 3/14/2025</p>
<table>
  <tr><td>30 Yr. Fixed</td><td>6.80%</td></tr>
  <tr><td>15 Yr. Fixed</td><td>6.10%</td></tr>
</table>
</body></html>
"""


class RecordingSink:
    def __init__(self):
        self.calls = []

    def send(self, role, address, template_data):
        self.calls.append((role, address, template_data))
        return True


class PipelineTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.conn = get_conn(os.path.join(tmp.name, "pipeline.db"))
        self.addCleanup(self.conn.close)
        self.now = T0
        self.sink = RecordingSink()
        self.status_code = 200
        self.requests = 0
        backoff = patch.object(settings, "http_retry_backoff_seconds", 0)
        backoff.start()
        self.addCleanup(backoff.stop)
        # Clients and preferences come from the local mirror tables.
        RateStore(self.conn)
        self.conn.execute("INSERT INTO profiles(user_id, full_name, email, phone) VALUES ('owner-1','Olive Owner','owner@example.com','555-0100')")
        self.conn.execute(
            "INSERT INTO clients(client_id, user_id, first_name, last_name, email, loan_type, target_rate, loan_amount) "
            "VALUES ('c1','owner-1','Jane','Doe','jane@example.com','30yr','6.95',350000)"
        )
        self.conn.execute(
            "INSERT INTO clients(client_id, user_id, first_name, last_name, email, loan_type, target_rate, loan_amount) "
            "VALUES ('c2','owner-1','Sam','Roe',NULL,'15yr','5.50',NULL)"
        )
        self.conn.execute("INSERT INTO notification_preferences(user_id, rate_alerts, send_to_client, weekly_reports) VALUES ('owner-1',1,0,0)")

    def _handler(self, request):
        self.requests += 1
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="unavailable")
        return httpx.Response(200, text=PAGE)

    def _run(self, run_id):
        client = httpx.Client(transport=httpx.MockTransport(self._handler))
        self.addCleanup(client.close)
        source = RateSource("https://rates.example/mnd", client=client, clock=lambda: self.now)
        return run_pipeline(
            run_id,
            conn=self.conn,
            source=source,
            sink=self.sink,
            limiter=RateLimiter(0),
            clock=lambda: self.now,
        )

    def test_target_hit_alerts_once(self):
        summary = self._run("run-1")
        self.assertEqual(summary["status"], "succeeded")
        self.assertEqual(summary["rate_as_of_date"], "2025-03-14")
        self.assertEqual(summary["inserted"], 2)
        self.assertEqual(summary["candidates"], 1)
        self.assertEqual(len(self.sink.calls), 1)
        role, address, data = self.sink.calls[0]
        self.assertEqual((role, address), ("owner", "owner@example.com"))
        self.assertEqual(data["observed_rate"], 6.8)
        self.assertEqual(data["target_rate"], 6.95)
        self.assertEqual(count_cooldowns(self.conn), 1)
        self.assertEqual(get_run_status(self.conn, "run-1")["status"], "succeeded")

        # Ten minutes later: no new rows, no new sends, no new cooldown rows.
        self.now = T0 + timedelta(minutes=10)
        summary = self._run("run-2")
        self.assertEqual(summary["inserted"], 0)
        self.assertEqual(summary["dispatch"][0]["status"], "suppressed")
        self.assertEqual(len(self.sink.calls), 1)
        self.assertEqual(count_cooldowns(self.conn), 1)
        self.assertEqual(len(list_recent_notifications(self.conn)), 1)

    def test_source_failure_degrades_and_uses_last_known_rates(self):
        RateStore(self.conn).upsert([
            RateObservation(
                observation_date=date(2025, 3, 13),
                term_years=CONVENTIONAL_30.term_years,
                loan_type=CONVENTIONAL_30.loan_type,
                rate_value=Decimal("6.900"),
                recorded_at=T0 - timedelta(days=1),
            )
        ])
        self.status_code = 503
        summary = self._run("run-degraded")
        self.assertEqual(summary["status"], "degraded")
        self.assertEqual(self.requests, settings.http_retry_attempts)
        self.assertTrue(summary["fetch_error"].startswith("http_error"))
        self.assertEqual(len(self.sink.calls), 1)
        status = get_run_status(self.conn, "run-degraded")
        self.assertEqual(status["status"], "degraded")
        self.assertEqual(status["summary"]["candidates"], 1)

    def test_store_failure_fails_run(self):
        with patch.object(RateStore, "upsert", side_effect=sqlite3.OperationalError("database is locked")):
            with self.assertRaises(sqlite3.OperationalError):
                self._run("run-failed")
        status = get_run_status(self.conn, "run-failed")
        self.assertEqual(status["status"], "failed")
        self.assertIn("database is locked", status["error_message"])
        self.assertEqual(self.sink.calls, [])
        # Lock released.
        self.assertTrue(acquire_lock(self.conn, PIPELINE_LOCK, "after"))

    def test_concurrent_run_is_skipped(self):
        self.assertTrue(acquire_lock(self.conn, PIPELINE_LOCK, "someone-else"))
        summary = self._run("run-skipped")
        self.assertEqual(summary["status"], "skipped")
        self.assertEqual(self.requests, 0)
        self.assertEqual(get_run_status(self.conn, "run-skipped")["status"], "skipped")

    def test_no_sink_skips_dispatch(self):
        client = httpx.Client(transport=httpx.MockTransport(self._handler))
        self.addCleanup(client.close)
        source = RateSource("https://rates.example/mnd", client=client, clock=lambda: self.now)
        summary = run_pipeline("run-nosink", conn=self.conn, source=source, sink=None)
        self.assertEqual(summary["status"], "succeeded")
        self.assertEqual(summary["candidates"], 1)
        self.assertEqual(summary["dispatch"], [])
        self.assertEqual(count_cooldowns(self.conn), 0)


if __name__ == "__main__":
    unittest.main()
