from __future__ import annotations

import sqlite3

import structlog

from ..clients import ClientRepository, NotificationPreferenceRepository, NotificationSink
from ..rates.analytics import lookback_start, summarize
from ..rates.models import TRACKED_SERIES
from ..rates.store import RateStore
from ..config import settings
from ..utils import RateLimiter, now_utc_iso
from .constants import CHANNEL_EMAIL
from .matcher import find_hits
from .storage import mark_notification, migrate_alerts
from .templates import KIND_WEEKLY_SUMMARY

log = structlog.get_logger()

ROLE_WEEKLY = "weekly"


def build_series_rows(store: RateStore) -> tuple[str | None, list[dict]]:
    latest = store.latest_date()
    if latest is None:
        return None, []
    since = lookback_start(latest)
    rows = []
    for tracked in TRACKED_SERIES:
        summary = summarize(store.history(tracked.key.term_years, tracked.key.loan_type, since=since))
        if summary.latest is None:
            continue
        rows.append(
            {
                "series": str(tracked.key),
                "name": tracked.display_name,
                "rate": float(summary.latest.rate_value),
                "change_week": float(summary.change_week) if summary.change_week is not None else None,
                "trend": summary.trend,
            }
        )
    return latest.isoformat(), rows


def send_weekly_summaries(
    conn: sqlite3.Connection,
    store: RateStore,
    clients: ClientRepository,
    preferences: NotificationPreferenceRepository,
    sink: NotificationSink,
    limiter: RateLimiter | None = None,
) -> int:
    """Mail the weekly digest to every owner with weekly reports enabled; returns successful sends.

    Sends share the alert path's outbound spacing; a failed send or audit
    write for one owner does not stop the rest.
    """
    migrate_alerts(conn)
    limiter = limiter or RateLimiter(settings.notify_min_interval_seconds)
    as_of, series_rows = build_series_rows(store)
    if not series_rows:
        log.info("weekly_summary_skipped", reason="no_rates")
        return 0
    current = store.current_by_key()
    sent = 0
    for owner in preferences.list_weekly_subscribers():
        hits = find_hits(clients.list_clients_with_target_rate(owner.user_id), current)
        data = {
            "kind": KIND_WEEKLY_SUMMARY,
            "as_of": as_of,
            "owner_name": owner.full_name,
            "series": series_rows,
            "clients_at_target": len(hits),
        }
        error = None
        limiter.wait()
        try:
            ok = bool(sink.send(ROLE_WEEKLY, owner.email, data))
        except Exception as e:
            ok = False
            error = f"{type(e).__name__}: {e}"
            log.warning("weekly_summary_send_error", user_id=owner.user_id, err=str(e))
        if not ok and error is None:
            error = "send_failed"
        try:
            mark_notification(conn, None, ROLE_WEEKLY, CHANNEL_EMAIL, ok, error, now_utc_iso())
        except sqlite3.Error as e:
            log.error("weekly_summary_log_failed", user_id=owner.user_id, err=str(e))
        sent += 1 if ok else 0
    log.info("weekly_summary_done", sent=sent, as_of=as_of)
    return sent
