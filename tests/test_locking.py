import os
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from ratewatch.config import settings
from ratewatch.db import get_conn, migrate
from ratewatch.pipeline.locking import acquire_lock, release_lock
from ratewatch.pipeline.orchestrator import trigger_run
from ratewatch.pipeline.runs import get_run_status, register_run

T0 = datetime(2025, 3, 14, 15, 0, tzinfo=timezone.utc)


class LockTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.conn = get_conn(os.path.join(tmp.name, "lock.db"))
        self.addCleanup(self.conn.close)

    def test_single_flight(self):
        self.assertTrue(acquire_lock(self.conn, "job", "a", ttl_seconds=60, now=T0))
        self.assertFalse(acquire_lock(self.conn, "job", "b", ttl_seconds=60, now=T0 + timedelta(seconds=30)))

    def test_expired_lock_is_taken_over(self):
        self.assertTrue(acquire_lock(self.conn, "job", "a", ttl_seconds=60, now=T0))
        self.assertTrue(acquire_lock(self.conn, "job", "b", ttl_seconds=60, now=T0 + timedelta(seconds=61)))
        owner = self.conn.execute("SELECT owner FROM locks WHERE name='job'").fetchone()[0]
        self.assertEqual(owner, "b")

    def test_release_only_by_owner(self):
        acquire_lock(self.conn, "job", "a", ttl_seconds=60, now=T0)
        release_lock(self.conn, "job", "b")
        self.assertFalse(acquire_lock(self.conn, "job", "b", ttl_seconds=60, now=T0))
        release_lock(self.conn, "job", "a")
        self.assertTrue(acquire_lock(self.conn, "job", "b", ttl_seconds=60, now=T0))


class FakeBackground:
    def __init__(self):
        self.tasks = []

    def add_task(self, fn, *args, **kwargs):
        self.tasks.append((fn, args, kwargs))


class TriggerKeyTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.db_path = os.path.join(tmp.name, "runs.db")
        self.conn = get_conn(self.db_path)
        self.addCleanup(self.conn.close)
        migrate(self.conn)

    def test_register_run_dedupes_on_trigger_key(self):
        self.assertEqual(register_run(self.conn, "r1", "daily-2025-03-14"), "r1")
        self.assertEqual(register_run(self.conn, "r2", "daily-2025-03-14"), "r1")
        self.assertIsNone(get_run_status(self.conn, "r2"))
        self.assertEqual(register_run(self.conn, "r3"), "r3")
        self.assertEqual(register_run(self.conn, "r4"), "r4")

    def test_trigger_run_queues_once_per_key(self):
        background = FakeBackground()
        with patch.object(settings, "db_path", self.db_path):
            first = trigger_run(background, "manual-1")
            second = trigger_run(background, "manual-1")
            third = trigger_run(background)
        self.assertEqual(first, second)
        self.assertNotEqual(first, third)
        self.assertEqual(len(background.tasks), 2)
        self.assertEqual(background.tasks[0][1], (first, "manual-1"))
        self.assertEqual(get_run_status(self.conn, first)["status"], "running")


if __name__ == "__main__":
    unittest.main()
