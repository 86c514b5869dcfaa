from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Sequence

from ..utils import RATE_QUANT
from .models import RateObservation

# Mean of the last N consecutive deltas must clear this to count as a move.
TREND_DELTA_COUNT = 3
TREND_THRESHOLD = Decimal("0.05")

WINDOW_52W = timedelta(weeks=52)

# period -> (offset, how far before the target date an observation may sit)
CHANGE_PERIODS = {
    "day": (timedelta(days=1), timedelta(days=3)),
    "week": (timedelta(days=7), timedelta(days=3)),
    "month": (timedelta(days=30), timedelta(days=5)),
    "year": (timedelta(days=365), timedelta(days=7)),
}

# Oldest point any period change can reach; reaches past the 52-week window.
LOOKBACK = max(offset + tolerance for offset, tolerance in CHANGE_PERIODS.values())

TREND_UP = "up"
TREND_DOWN = "down"
TREND_STABLE = "stable"


@dataclass(frozen=True)
class RateSummary:
    latest: RateObservation | None
    low_52w: Decimal | None
    high_52w: Decimal | None
    avg_52w: Decimal | None
    change_day: Decimal | None
    change_week: Decimal | None
    change_month: Decimal | None
    change_year: Decimal | None
    trend: str
    points: int

    def to_dict(self) -> dict:
        def _f(v):
            return float(v) if v is not None else None

        return {
            "latest": self.latest.to_dict() if self.latest else None,
            "low_52w": _f(self.low_52w),
            "high_52w": _f(self.high_52w),
            "avg_52w": _f(self.avg_52w),
            "change_day": _f(self.change_day),
            "change_week": _f(self.change_week),
            "change_month": _f(self.change_month),
            "change_year": _f(self.change_year),
            "trend": self.trend,
            "points": self.points,
        }


def window_start(latest_date: date) -> date:
    return latest_date - WINDOW_52W


def lookback_start(latest_date: date) -> date:
    """Earliest date ``summarize`` needs to see to compute every period change."""
    return latest_date - LOOKBACK


def observation_at(history: Sequence[RateObservation], target: date, tolerance: timedelta) -> RateObservation | None:
    """Latest observation on or before ``target`` and no older than ``target - tolerance``."""
    best = None
    for obs in history:
        if obs.observation_date > target:
            continue
        if obs.observation_date < target - tolerance:
            continue
        if best is None or obs.observation_date > best.observation_date:
            best = obs
    return best


def classify_trend(history: Sequence[RateObservation]) -> str:
    values = [obs.rate_value for obs in history]
    deltas = [b - a for a, b in zip(values, values[1:])][-TREND_DELTA_COUNT:]
    if not deltas:
        return TREND_STABLE
    avg = sum(deltas, Decimal("0")) / len(deltas)
    if avg > TREND_THRESHOLD:
        return TREND_UP
    if avg < -TREND_THRESHOLD:
        return TREND_DOWN
    return TREND_STABLE


def summarize(history: Sequence[RateObservation]) -> RateSummary:
    """Range stats, period changes and trend for one series.

    ``history`` should reach back to ``lookback_start(latest)`` so the year
    change can be found; low/high/avg and ``points`` only cover the 52 weeks
    ending at the latest observation. Changes with no observation near the
    historical point are None, not zero.
    """
    history = sorted(history, key=lambda o: (o.observation_date, o.recorded_at))
    if not history:
        return RateSummary(None, None, None, None, None, None, None, None, TREND_STABLE, 0)

    latest = history[-1]
    since = window_start(latest.observation_date)
    values = [obs.rate_value for obs in history if obs.observation_date >= since]
    avg = (sum(values, Decimal("0")) / len(values)).quantize(RATE_QUANT)

    changes = {}
    for name, (offset, tolerance) in CHANGE_PERIODS.items():
        past = observation_at(history[:-1], latest.observation_date - offset, tolerance)
        changes[name] = (latest.rate_value - past.rate_value) if past is not None else None

    return RateSummary(
        latest=latest,
        low_52w=min(values),
        high_52w=max(values),
        avg_52w=avg,
        change_day=changes["day"],
        change_week=changes["week"],
        change_month=changes["month"],
        change_year=changes["year"],
        trend=classify_trend(history),
        points=len(values),
    )
