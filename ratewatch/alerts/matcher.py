from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping

import structlog

from ..clients import ClientTarget
from ..rates.models import RateObservation, SeriesKey
from .constants import DEFAULT_SERIES, LOAN_TYPE_LABELS

log = structlog.get_logger()


@dataclass(frozen=True)
class AlertCandidate:
    client_id: str
    series_key: SeriesKey
    observed_rate: Decimal
    target_rate: Decimal
    client: ClientTarget


def _label_key(label: str | None) -> str:
    return "_".join((label or "").strip().lower().replace("-", " ").split())


def map_loan_type(label: str | None) -> SeriesKey:
    """Series tracked for a client's loan-type label; unknown labels fall back to 30yr conventional."""
    key = LOAN_TYPE_LABELS.get(_label_key(label))
    if key is None:
        log.info("loan_type_fallback", label=label, series=str(DEFAULT_SERIES))
        return DEFAULT_SERIES
    return key


def find_hits(clients: Iterable[ClientTarget], current: Mapping[SeriesKey, RateObservation]) -> list[AlertCandidate]:
    hits = []
    for client in clients:
        if client.target_rate is None:
            continue
        series_key = map_loan_type(client.loan_type_label)
        obs = current.get(series_key)
        if obs is None:
            continue
        if obs.rate_value <= client.target_rate:
            hits.append(
                AlertCandidate(
                    client_id=client.client_id,
                    series_key=series_key,
                    observed_rate=obs.rate_value,
                    target_rate=client.target_rate,
                    client=client,
                )
            )
    hits.sort(key=lambda c: c.client_id)
    return hits
