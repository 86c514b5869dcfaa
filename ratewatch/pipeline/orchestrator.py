import time
import uuid

import structlog

from ..alerts.matcher import find_hits
from ..alerts.notifier import NotificationDispatcher
from ..alerts.storage import migrate_alerts
from ..clients import SqliteClientRepository, SqlitePreferenceRepository
from ..config import settings
from ..db import get_conn, migrate
from ..logging import run_context
from ..rates.analytics import lookback_start, summarize
from ..rates.models import TRACKED_SERIES
from ..rates.source import FetchResult, RateSource
from ..rates.store import RateStore
from ..services.email import build_email_sink
from ..utils import RateLimiter, retry_call
from .locking import PIPELINE_LOCK, acquire_lock, release_lock
from .runs import (
    RUN_DEGRADED,
    RUN_FAILED,
    RUN_SKIPPED,
    RUN_SUCCEEDED,
    finish_run,
    get_run_status,
    register_run,
    start_run,
)

log = structlog.get_logger()

_USE_SETTINGS = object()


def trigger_run(background, trigger_key: str | None = None) -> str:
    """Queue a pipeline run; a repeated ``trigger_key`` returns the original run id and queues nothing."""
    conn = get_conn(settings.db_path)
    try:
        migrate(conn)
        run_id = str(uuid.uuid4())
        registered = register_run(conn, run_id, trigger_key)
    finally:
        conn.close()
    if registered != run_id:
        log.info("pipeline_trigger_deduplicated", run_id=registered, trigger_key=trigger_key)
        return registered
    background.add_task(run_pipeline, run_id, trigger_key)
    return run_id


def _fetch(source: RateSource, deadline: float) -> FetchResult:
    try:
        return retry_call(
            source.fetch_current_rates,
            attempts=settings.http_retry_attempts,
            base_delay=settings.http_retry_backoff_seconds,
            deadline=deadline,
            retry_on_result=lambda r: not r.ok,
            label="rate_fetch",
        )
    except Exception as e:
        log.error("rate_fetch_failed", err=str(e))
        return FetchResult([], None, error=f"{type(e).__name__}: {e}")


def build_summaries(store: RateStore) -> dict:
    latest = store.latest_date()
    if latest is None:
        return {}
    since = lookback_start(latest)
    out = {}
    for tracked in TRACKED_SERIES:
        history = store.history(tracked.key.term_years, tracked.key.loan_type, since=since)
        out[str(tracked.key)] = summarize(history).to_dict()
    return out


def run_pipeline(
    run_id: str | None = None,
    trigger_key: str | None = None,
    *,
    conn=None,
    source=None,
    clients=None,
    preferences=None,
    sink=_USE_SETTINGS,
    limiter: RateLimiter | None = None,
    clock=None,
) -> dict:
    """One full cycle: fetch, store, summarize, match, notify.

    A source failure degrades the run and alerting continues on the last
    stored rates; a store write failure fails the run and re-raises.
    """
    run_id = run_id or str(uuid.uuid4())
    owned = conn is None
    conn = conn or get_conn(settings.db_path)
    try:
        with run_context(run_id, trigger_key=trigger_key):
            return _run(run_id, trigger_key, conn, source, clients, preferences, sink, limiter, clock)
    finally:
        if owned:
            conn.close()


def _run(run_id, trigger_key, conn, source, clients, preferences, sink, limiter, clock) -> dict:
    migrate(conn)
    migrate_alerts(conn)
    start_run(conn, run_id, trigger_key)
    deadline = time.monotonic() + settings.pipeline_time_budget_seconds
    log.info("pipeline_started")

    if not acquire_lock(conn, PIPELINE_LOCK, run_id, ttl_seconds=settings.pipeline_lock_ttl_seconds):
        log.warning("pipeline_skipped", reason="lock_held")
        finish_run(conn, run_id, RUN_SKIPPED, "lock_held")
        return {"run_id": run_id, "status": RUN_SKIPPED}

    def _step_start(step: str):
        log.info("pipeline_step_start", step=step)
        return time.monotonic()

    def _step_done(step: str, started: float, **fields):
        log.info(
            "pipeline_step_done",
            step=step,
            elapsed_sec=round(time.monotonic() - started, 2),
            **fields,
        )

    try:
        store = RateStore(conn)
        source = source or RateSource()

        started = _step_start("fetch_rates")
        fetched = _fetch(source, deadline)
        _step_done("fetch_rates", started, fetched=len(fetched.observations), error=fetched.error)

        started = _step_start("store_rates")
        inserted = store.upsert(fetched.observations, run_id=run_id) if fetched.ok else 0
        _step_done("store_rates", started, inserted=inserted)

        started = _step_start("summaries")
        summaries = build_summaries(store)
        current = store.current_by_key(settings.current_scan_limit)
        _step_done("summaries", started, series=len(summaries))

        started = _step_start("match_alerts")
        clients = clients or SqliteClientRepository(conn)
        candidates = find_hits(clients.list_clients_with_target_rate(), current)
        _step_done("match_alerts", started, candidates=len(candidates))

        started = _step_start("dispatch_alerts")
        if sink is _USE_SETTINGS:
            sink = build_email_sink(settings)
        results = []
        if sink is None:
            log.warning("alert_dispatch_skipped", reason="no_sink", candidates=len(candidates))
        elif candidates:
            dispatcher = NotificationDispatcher(
                conn,
                preferences or SqlitePreferenceRepository(conn),
                sink,
                cooldown_hours=settings.alert_cooldown_hours,
                limiter=limiter,
                clock=clock,
            )
            results = dispatcher.dispatch(candidates)
        _step_done("dispatch_alerts", started, dispatched=len(results))

        status = RUN_SUCCEEDED if fetched.ok else RUN_DEGRADED
        as_of = fetched.as_of_date.isoformat() if fetched.as_of_date else None
        summary = {
            "run_id": run_id,
            "status": status,
            "rate_as_of_date": as_of,
            "fetched": len(fetched.observations),
            "inserted": inserted,
            "fetch_error": fetched.error,
            "current": {str(k): v.to_dict() for k, v in current.items()},
            "summaries": summaries,
            "candidates": len(candidates),
            "dispatch": [r.to_dict() for r in results],
        }
        finish_run(conn, run_id, status, fetched.error, as_of, summary)
        log.info("pipeline_finished", status=status)
        return summary
    except Exception as e:
        log.error("pipeline_failed", err=str(e))
        finish_run(conn, run_id, RUN_FAILED, str(e))
        raise
    finally:
        release_lock(conn, PIPELINE_LOCK, run_id)


def get_status(run_id: str):
    conn = get_conn(settings.db_path)
    try:
        migrate(conn)
        return get_run_status(conn, run_id)
    finally:
        conn.close()
