import time as time_module
from datetime import datetime, date, timedelta, timezone
from decimal import Decimal, InvalidOperation

import structlog
from dateutil import tz

log = structlog.get_logger()

RATE_QUANT = Decimal("0.001")

def now_utc() -> datetime:
    return datetime.now(timezone.utc)

def now_utc_iso() -> str:
    return to_utc_iso(now_utc())

def to_utc_iso(dt: datetime) -> str:
    # Fixed width so stored timestamps sort lexicographically.
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")

def parse_utc(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt

def to_local_date(dt_utc: datetime, local_tz: str, cutover_hhmm: str = "00:00") -> date:
    """Local calendar date of ``dt_utc``; instants before the cutover belong to the previous day."""
    local = dt_utc.astimezone(tz.gettz(local_tz))
    hh, mm = (int(part) for part in cutover_hhmm.split(":"))
    if (local.hour, local.minute) < (hh, mm):
        local -= timedelta(days=1)
    return local.date()

def to_rate(value) -> Decimal | None:
    """Coerce a rate reading (str/float/int/Decimal) to a 3dp Decimal."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        dec = value
    else:
        try:
            dec = Decimal(str(value).strip().rstrip("%"))
        except (InvalidOperation, ValueError):
            return None
    if not dec.is_finite():
        return None
    return dec.quantize(RATE_QUANT)

def _backoff(base_delay: float, attempt: int, max_delay: float, deadline: float | None) -> float:
    delay = min(max_delay, base_delay * (2 ** (attempt - 1)))
    if deadline is None:
        return delay
    remaining = deadline - time_module.monotonic()
    if remaining <= 0:
        raise TimeoutError("time_budget_exceeded")
    return min(delay, remaining)

def retry_call(
    fn,
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    deadline: float | None = None,
    retry_on_result=None,
    retry_on: tuple = (Exception,),
    label: str | None = None,
):
    """Call ``fn`` until it succeeds or ``attempts`` run out.

    Exceptions in ``retry_on`` and results for which ``retry_on_result`` is true
    are retried with doubling backoff capped at ``max_delay``. ``deadline`` is a
    ``time.monotonic()`` value; no attempt starts and no sleep runs past it.
    After the last attempt an exception is re-raised but an unwanted result is
    returned as is.
    """
    attempts = max(1, int(attempts))
    for attempt in range(1, attempts + 1):
        if deadline is not None and time_module.monotonic() >= deadline:
            raise TimeoutError("time_budget_exceeded")
        final = attempt == attempts
        try:
            result = fn()
        except retry_on as exc:
            if final:
                raise
            log.warning("retry_after_error", op=label, attempt=attempt, err=str(exc))
        else:
            if final or not (retry_on_result and retry_on_result(result)):
                return result
            log.info("retry_after_result", op=label, attempt=attempt)
        pause = _backoff(base_delay, attempt, max_delay, deadline)
        if pause > 0:
            time_module.sleep(pause)


class RateLimiter:
    """Keeps consecutive ``wait()`` returns at least ``min_interval_seconds`` apart."""

    def __init__(self, min_interval_seconds: float, clock=None, sleep=None):
        self.min_interval_seconds = max(0.0, float(min_interval_seconds or 0.0))
        self._clock = clock or time_module.monotonic
        self._sleep = sleep or time_module.sleep
        self._next_allowed = None

    def wait(self, deadline: float | None = None):
        now = self._clock()
        if self._next_allowed is not None and now < self._next_allowed:
            if deadline is not None and self._next_allowed > deadline:
                raise TimeoutError("time_budget_exceeded")
            self._sleep(self._next_allowed - now)
            now = self._next_allowed
        self._next_allowed = now + self.min_interval_seconds
