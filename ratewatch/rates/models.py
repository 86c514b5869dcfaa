from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import NamedTuple


class LoanType(str, Enum):
    CONVENTIONAL = "conventional"
    FHA = "fha"
    VA = "va"
    JUMBO = "jumbo"


class SeriesKey(NamedTuple):
    """Composite key for one tracked rate series, e.g. ``(30, LoanType.FHA)``."""

    term_years: int
    loan_type: LoanType

    def __str__(self) -> str:
        return f"{self.term_years}yr_{self.loan_type.value}"

    @classmethod
    def parse(cls, value: str) -> "SeriesKey":
        term, sep, loan_type = value.strip().lower().partition("yr_")
        if not sep or not term.isdigit():
            raise ValueError(f"invalid series key: {value!r}")
        return cls(int(term), LoanType(loan_type))


@dataclass(frozen=True)
class RateObservation:
    observation_date: date
    term_years: int
    loan_type: LoanType
    rate_value: Decimal
    recorded_at: datetime
    rate_kind: str = "fixed"
    source: str = "mortgage_news_daily"
    id: int | None = field(default=None, compare=False)

    @property
    def series_key(self) -> SeriesKey:
        return SeriesKey(self.term_years, self.loan_type)

    @property
    def natural_key(self) -> tuple[date, int, LoanType]:
        return (self.observation_date, self.term_years, self.loan_type)

    def to_dict(self) -> dict:
        return {
            "series": str(self.series_key),
            "observation_date": self.observation_date.isoformat(),
            "term_years": self.term_years,
            "loan_type": self.loan_type.value,
            "rate_value": float(self.rate_value),
            "rate_kind": self.rate_kind,
            "recorded_at_utc": self.recorded_at.isoformat(),
            "source": self.source,
        }


@dataclass(frozen=True)
class TrackedSeries:
    label: str
    key: SeriesKey
    display_name: str


CONVENTIONAL_30 = SeriesKey(30, LoanType.CONVENTIONAL)
CONVENTIONAL_15 = SeriesKey(15, LoanType.CONVENTIONAL)
FHA_30 = SeriesKey(30, LoanType.FHA)
VA_30 = SeriesKey(30, LoanType.VA)
JUMBO_30 = SeriesKey(30, LoanType.JUMBO)

# Publisher row labels, in the order they appear in the MND index table.
TRACKED_SERIES = [
    TrackedSeries("30 Yr. Fixed", CONVENTIONAL_30, "30-Year Conventional"),
    TrackedSeries("15 Yr. Fixed", CONVENTIONAL_15, "15-Year Conventional"),
    TrackedSeries("30 Yr. FHA", FHA_30, "30-Year FHA"),
    TrackedSeries("30 Yr. Jumbo", JUMBO_30, "30-Year Jumbo"),
    TrackedSeries("30 Yr. VA", VA_30, "30-Year VA"),
]

SERIES_DISPLAY_NAMES = {s.key: s.display_name for s in TRACKED_SERIES}
