from __future__ import annotations

import urllib.parse
from datetime import date

import pandas as pd
import structlog

from ..utils import now_utc, to_rate
from .models import CONVENTIONAL_15, CONVENTIONAL_30, FHA_30, JUMBO_30, VA_30, RateObservation, SeriesKey
from .store import RateStore

log = structlog.get_logger()

FREDGRAPH_CSV_URL = "https://fred.stlouisfed.org/graph/fredgraph.csv?id={series_id}"

# Freddie Mac PMMS (weekly) and Optimal Blue (daily) mortgage indices on FRED.
FRED_SERIES: dict[str, SeriesKey] = {
    "MORTGAGE30US": CONVENTIONAL_30,
    "MORTGAGE15US": CONVENTIONAL_15,
    "OBMMIFHA30YF": FHA_30,
    "OBMMIVA30YF": VA_30,
    "OBMMIJUMBO30YF": JUMBO_30,
}


def read_fred_csv(series_id: str, source=None) -> pd.DataFrame | None:
    """Load a FRED series as a ``date``/``value`` frame.

    ``source`` may be a path or buffer; by default the keyless fredgraph CSV
    endpoint is used.
    """
    if source is None:
        source = FREDGRAPH_CSV_URL.format(series_id=urllib.parse.quote(series_id))
    df = pd.read_csv(source)
    if df.empty:
        return None
    for col in ("DATE", "observation_date"):
        if col in df.columns:
            df = df.rename(columns={col: "date"})
    if series_id in df.columns:
        df = df.rename(columns={series_id: "value"})
    if "date" not in df.columns or "value" not in df.columns:
        return None
    df["date"] = pd.to_datetime(df["date"], errors="coerce").dt.date
    # FRED marks missing weeks with "."
    df["value"] = pd.to_numeric(df["value"], errors="coerce")
    df = df.dropna(subset=["date", "value"])
    return df[["date", "value"]].sort_values("date").reset_index(drop=True)


def frame_to_observations(df: pd.DataFrame, key: SeriesKey, since: date | None = None) -> list[RateObservation]:
    recorded_at = now_utc()
    out = []
    for row in df.itertuples(index=False):
        if since is not None and row.date < since:
            continue
        value = to_rate(row.value)
        if value is None:
            continue
        out.append(
            RateObservation(
                observation_date=row.date,
                term_years=key.term_years,
                loan_type=key.loan_type,
                rate_value=value,
                recorded_at=recorded_at,
                rate_kind="market",
                source="fred",
            )
        )
    return out


def backfill_fred(store: RateStore, series_ids=None, since: date | None = None, sources: dict | None = None) -> dict:
    """Upsert FRED history into the store; returns inserted counts per series id."""
    counts = {}
    for series_id in series_ids or list(FRED_SERIES):
        key = FRED_SERIES.get(series_id)
        if key is None:
            log.warning("fred_series_unknown", series_id=series_id)
            continue
        df = read_fred_csv(series_id, (sources or {}).get(series_id))
        if df is None:
            log.warning("fred_series_empty", series_id=series_id)
            counts[series_id] = 0
            continue
        observations = frame_to_observations(df, key, since=since)
        counts[series_id] = store.upsert(observations)
        log.info("fred_backfill_series_done", series_id=series_id, series=str(key), rows=len(observations), inserted=counts[series_id])
    return counts
