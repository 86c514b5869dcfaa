from __future__ import annotations
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from zoneinfo import ZoneInfo
import structlog

from ..config import settings
from ..db import get_conn, migrate
from ..clients import SqliteClientRepository, SqlitePreferenceRepository
from ..rates.store import RateStore
from ..services.email import build_email_sink
from ..pipeline.orchestrator import run_pipeline
from .summary import send_weekly_summaries

_log = structlog.get_logger()
_scheduler: AsyncIOScheduler | None = None


def get_scheduler() -> AsyncIOScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone=ZoneInfo(settings.local_tz))
    return _scheduler


def schedule_jobs(sched: AsyncIOScheduler | None = None, start: bool = True) -> AsyncIOScheduler:
    sched = sched or get_scheduler()
    tz = ZoneInfo(settings.local_tz)
    # Plain (sync) callables run in the scheduler's thread pool, off the event loop.
    sched.add_job(run_scheduled_pipeline, CronTrigger.from_crontab(settings.pipeline_cron, timezone=tz), id="rate_pipeline", replace_existing=True, max_instances=1, coalesce=True)
    if settings.weekly_summary_enabled:
        sched.add_job(run_weekly_summary, CronTrigger.from_crontab(settings.weekly_summary_cron, timezone=tz), id="weekly_summary", replace_existing=True, coalesce=True)
    if start:
        sched.start()
        _log.info("rate_scheduler_started", pipeline_cron=settings.pipeline_cron, weekly_enabled=bool(settings.weekly_summary_enabled))
    return sched


def shutdown_scheduler():
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
    _scheduler = None


def run_scheduled_pipeline():
    try:
        run_pipeline()
    except Exception as e:
        # Already recorded on the run row; keep the scheduler alive.
        _log.error("scheduled_pipeline_failed", err=str(e))


def run_weekly_summary():
    sink = build_email_sink(settings)
    if sink is None:
        _log.warning("weekly_summary_skipped", reason="no_sink")
        return
    conn = get_conn(settings.db_path)
    try:
        migrate(conn)
        send_weekly_summaries(conn, RateStore(conn), SqliteClientRepository(conn), SqlitePreferenceRepository(conn), sink)
    finally:
        conn.close()
