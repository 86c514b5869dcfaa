from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Iterable

import structlog

from ..clients import NotificationPreferenceRepository, NotificationSink
from ..config import settings
from ..rates.models import SERIES_DISPLAY_NAMES
from ..rates.payments import lifetime_savings, monthly_savings
from ..utils import RateLimiter, now_utc, to_utc_iso
from .constants import ALERT_KIND, CHANNEL_EMAIL, COOLDOWN_HOURS, ROLE_CLIENT, ROLE_OWNER
from .matcher import AlertCandidate
from .storage import has_recent_cooldown, mark_notification, migrate_alerts, record_cooldown
from .templates import KIND_RATE_ALERT, client_link

log = structlog.get_logger()

STATUS_SENT = "sent"
STATUS_SUPPRESSED = "suppressed"
STATUS_DISABLED = "disabled"
STATUS_FAILED = "failed"


@dataclass
class DispatchResult:
    client_id: str
    status: str
    sent_to_owner: bool = False
    sent_to_client: bool = False
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "client_id": self.client_id,
            "status": self.status,
            "sent_to_owner": self.sent_to_owner,
            "sent_to_client": self.sent_to_client,
            "errors": list(self.errors),
        }


def build_template_data(candidate: AlertCandidate, base_url: str, default_loan_amount: float) -> dict:
    client = candidate.client
    loan_amount = client.loan_amount or default_loan_amount
    data = {
        "kind": KIND_RATE_ALERT,
        "client_id": candidate.client_id,
        "client_name": client.client_name,
        "client_email": client.client_email,
        "series": str(candidate.series_key),
        "series_name": SERIES_DISPLAY_NAMES.get(candidate.series_key, str(candidate.series_key)),
        "observed_rate": float(candidate.observed_rate),
        "target_rate": float(candidate.target_rate),
        "loan_amount": loan_amount,
        "owner_name": client.owner_name,
        "owner_email": client.owner_email,
        "owner_phone": client.owner_phone,
        "link": client_link(base_url, candidate.client_id),
    }
    # Without the client's existing loan rate, estimate from the target they set.
    baseline = client.current_rate if client.current_rate is not None else candidate.target_rate
    monthly = monthly_savings(loan_amount, baseline, candidate.observed_rate, candidate.series_key.term_years)
    data["monthly_savings"] = monthly
    data["lifetime_savings"] = lifetime_savings(monthly, candidate.series_key.term_years)
    return data


class NotificationDispatcher:
    """Sends rate alerts for matched candidates, one at a time.

    A candidate is skipped when a cooldown row for it exists inside the window
    or when its owner has not enabled rate alerts. The owner is always mailed
    first; the client only when the owner opted in and the client has an
    address. One cooldown row is written per candidate with at least one
    successful send.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        preferences: NotificationPreferenceRepository,
        sink: NotificationSink,
        *,
        cooldown_hours: int | None = None,
        limiter: RateLimiter | None = None,
        clock=None,
        base_url: str | None = None,
        default_loan_amount: float | None = None,
    ):
        self.conn = conn
        self.preferences = preferences
        self.sink = sink
        self.cooldown = timedelta(hours=cooldown_hours if cooldown_hours is not None else COOLDOWN_HOURS)
        self.limiter = limiter or RateLimiter(settings.notify_min_interval_seconds)
        self.clock = clock or now_utc
        self.base_url = base_url or settings.app_base_url
        self.default_loan_amount = default_loan_amount or settings.default_loan_amount
        migrate_alerts(conn)

    def _send(self, candidate: AlertCandidate, role: str, address: str, data: dict, result: DispatchResult) -> bool:
        self.limiter.wait()
        ok = False
        error = None
        try:
            ok = bool(self.sink.send(role, address, data))
            if not ok:
                error = "send_failed"
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            log.warning("alert_send_error", client_id=candidate.client_id, role=role, err=str(e))
        if error:
            result.errors.append(f"{role}: {error}")
        try:
            mark_notification(self.conn, candidate.client_id, role, CHANNEL_EMAIL, ok, error, to_utc_iso(self.clock()))
        except sqlite3.Error as e:
            log.error("alert_notification_log_failed", client_id=candidate.client_id, role=role, err=str(e))
        log.info("alert_sent", client_id=candidate.client_id, role=role, ok=ok)
        return ok

    def _dispatch_one(self, candidate: AlertCandidate) -> DispatchResult:
        result = DispatchResult(candidate.client_id, STATUS_FAILED)
        now = self.clock()
        since = to_utc_iso(now - self.cooldown)
        if has_recent_cooldown(self.conn, candidate.client_id, ALERT_KIND, since):
            result.status = STATUS_SUPPRESSED
            log.info("alert_suppressed_cooldown", client_id=candidate.client_id)
            return result

        pref = self.preferences.get(candidate.client.owner_user_id)
        if pref is None or not pref.rate_alerts_enabled:
            result.status = STATUS_DISABLED
            log.info("alert_disabled_by_preference", client_id=candidate.client_id, owner=candidate.client.owner_user_id)
            return result

        data = build_template_data(candidate, self.base_url, self.default_loan_amount)
        if candidate.client.owner_email:
            result.sent_to_owner = self._send(candidate, ROLE_OWNER, candidate.client.owner_email, data, result)
        else:
            result.errors.append(f"{ROLE_OWNER}: missing_address")
            log.warning("alert_owner_email_missing", client_id=candidate.client_id)

        if pref.send_to_client_enabled and candidate.client.client_email:
            result.sent_to_client = self._send(candidate, ROLE_CLIENT, candidate.client.client_email, data, result)

        if not (result.sent_to_owner or result.sent_to_client):
            return result

        result.status = STATUS_SENT
        try:
            record_cooldown(self.conn, candidate.client_id, ALERT_KIND, to_utc_iso(self.clock()))
        except sqlite3.Error as e:
            # Sends already happened; report the gap instead of undoing them.
            result.errors.append(f"cooldown: {e}")
            log.error("alert_cooldown_write_failed", client_id=candidate.client_id, err=str(e))
        return result

    def dispatch(self, candidates: Iterable[AlertCandidate]) -> list[DispatchResult]:
        results = []
        for candidate in candidates:
            try:
                results.append(self._dispatch_one(candidate))
            except Exception as e:
                log.exception("alert_dispatch_failed", client_id=candidate.client_id, err=str(e))
                results.append(DispatchResult(candidate.client_id, STATUS_FAILED, errors=[f"{type(e).__name__}: {e}"]))
        counts: dict[str, int] = {}
        for r in results:
            counts[r.status] = counts.get(r.status, 0) + 1
        log.info("alert_dispatch_done", candidates=len(results), **counts)
        return results
