"""Scrape the published mortgage rate index into ``RateObservation`` rows.

The publisher exposes a plain HTML page with no stable schema, so parsing is
structural and runs in two stages:

1. row scan: find a row-like element whose text contains a tracked label and
   take the first ``N.NN%`` figure in it;
2. cell scan (only when stage 1 finds nothing): walk the page's text cells in
   document order and read the percentage from the cell right after a label.

Missing series are omitted, never filled in. Fetching is not retried here;
the orchestrator owns the retry policy.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

import httpx
import structlog
from bs4 import BeautifulSoup, Tag

from ..config import settings
from ..utils import now_utc, to_local_date, to_rate
from .models import TRACKED_SERIES, RateObservation, TrackedSeries

log = structlog.get_logger()

LAST_UPDATED_RE = re.compile(
    r"last\s+updated\s*:?\s*(\d{1,2})/(\d{1,2})/(\d{4}|\d{2})(?!\d)",
    re.IGNORECASE,
)
PERCENT_RE = re.compile(r"(\d+\.\d+)\s*%")
_ROW_CLASS_RE = re.compile(r"(?:^|[-_])rows?(?:$|[-_])", re.IGNORECASE)
_WS_RE = re.compile(r"\s+")

YEAR_PIVOT = 50
RATE_MIN = Decimal("0")
RATE_MAX = Decimal("20")


@dataclass
class FetchResult:
    observations: list[RateObservation] = field(default_factory=list)
    as_of_date: date | None = None
    error: str | None = None
    stage: str | None = None  # 'rows'|'cells'

    @property
    def ok(self) -> bool:
        return bool(self.observations) and self.error is None


def _norm(text: str) -> str:
    return _WS_RE.sub(" ", text or "").strip().lower()


def normalize_year(year: int) -> int:
    if year >= 100:
        return year
    return 2000 + year if year < YEAR_PIVOT else 1900 + year


def parse_last_updated(text: str) -> date | None:
    """Return the publisher's "Last Updated" date, or None when absent/invalid."""
    match = LAST_UPDATED_RE.search(text or "")
    if not match:
        return None
    month, day, year = (int(part) for part in match.groups())
    try:
        return date(normalize_year(year), month, day)
    except ValueError:
        return None


def extract_percentage(text: str) -> Decimal | None:
    """First ``N.NN%`` figure in ``text`` if it falls inside the sanity range."""
    match = PERCENT_RE.search(text or "")
    if not match:
        return None
    value = to_rate(match.group(1))
    if value is None or not (RATE_MIN < value < RATE_MAX):
        return None
    return value


def _is_row_like(tag: Tag) -> bool:
    if tag.name == "tr":
        return True
    if tag.get("role") == "row":
        return True
    return any(_ROW_CLASS_RE.search(cls) for cls in (tag.get("class") or []))


def _scan_rows(soup: BeautifulSoup, series: list[TrackedSeries]) -> dict[TrackedSeries, Decimal]:
    # Only innermost rows; a wrapper classed "rows" would otherwise match every label.
    rows = [tag for tag in soup.find_all(_is_row_like) if tag.find(_is_row_like) is None]
    row_texts = [_norm(row.get_text(" ")) for row in rows]
    found: dict[TrackedSeries, Decimal] = {}
    for tracked in series:
        label = _norm(tracked.label)
        for text in row_texts:
            if label not in text:
                continue
            value = extract_percentage(text)
            if value is not None:
                found[tracked] = value
                break
    return found


def _scan_cells(soup: BeautifulSoup, series: list[TrackedSeries]) -> dict[TrackedSeries, Decimal]:
    cells = [_norm(text) for text in soup.stripped_strings]
    found: dict[TrackedSeries, Decimal] = {}
    for tracked in series:
        label = _norm(tracked.label)
        for cell_a, cell_b in zip(cells, cells[1:]):
            if label not in cell_a:
                continue
            value = extract_percentage(cell_b)
            if value is not None:
                found[tracked] = value
                break
    return found


def parse_rate_page(
    html: str,
    *,
    today: date,
    recorded_at: datetime,
    source: str,
    series: list[TrackedSeries] | None = None,
) -> FetchResult:
    series = list(series or TRACKED_SERIES)
    soup = BeautifulSoup(html or "", "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()

    as_of = parse_last_updated(soup.get_text(" ")) or today

    stage = "rows"
    found = _scan_rows(soup, series)
    if not found:
        stage = "cells"
        found = _scan_cells(soup, series)
    if not found:
        return FetchResult([], as_of, error="no_rates_matched", stage=None)

    observations = [
        RateObservation(
            observation_date=as_of,
            term_years=tracked.key.term_years,
            loan_type=tracked.key.loan_type,
            rate_value=found[tracked],
            recorded_at=recorded_at,
            rate_kind="fixed",
            source=source,
        )
        for tracked in series
        if tracked in found
    ]
    return FetchResult(observations, as_of, error=None, stage=stage)


class RateSource:
    def __init__(
        self,
        url: str | None = None,
        *,
        client: httpx.Client | None = None,
        timeout: float | None = None,
        source_name: str | None = None,
        clock=None,
    ):
        self.url = url or settings.rate_source_url
        self.client = client
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self.source_name = source_name or settings.rate_source_name
        self.clock = clock or now_utc

    def _get_page(self) -> str:
        headers = {"User-Agent": settings.http_user_agent, "Accept": "text/html,application/xhtml+xml"}
        if self.client is not None:
            r = self.client.get(self.url, headers=headers, timeout=self.timeout)
            r.raise_for_status()
            return r.text
        with httpx.Client(timeout=self.timeout, follow_redirects=True) as client:
            r = client.get(self.url, headers=headers)
            r.raise_for_status()
            return r.text

    def fetch_current_rates(self) -> FetchResult:
        recorded_at = self.clock()
        today = to_local_date(recorded_at, settings.local_tz, settings.daily_cutover)
        try:
            html = self._get_page()
        except httpx.HTTPError as e:
            log.warning("rate_fetch_failed", url=self.url, err=str(e))
            return FetchResult([], None, error=f"http_error: {e}")

        result = parse_rate_page(html, today=today, recorded_at=recorded_at, source=self.source_name)
        if result.error:
            log.warning("rate_parse_failed", url=self.url, err=result.error, as_of=result.as_of_date.isoformat())
            result.observations = []
            return result
        log.info(
            "rate_fetch_done",
            url=self.url,
            as_of=result.as_of_date.isoformat(),
            stage=result.stage,
            series=[str(o.series_key) for o in result.observations],
        )
        return result
