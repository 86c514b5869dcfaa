from __future__ import annotations

import sqlite3
from datetime import date
from typing import Iterable

import structlog

from ..db import migrate
from ..utils import now_utc_iso, parse_utc, to_rate, to_utc_iso
from .models import LoanType, RateObservation, SeriesKey

log = structlog.get_logger()

DEFAULT_CURRENT_SCAN_LIMIT = 50

_SELECT_COLS = "id, observation_date, term_years, loan_type, rate_value, rate_kind, recorded_at_utc, source"


def _row_to_observation(row) -> RateObservation:
    return RateObservation(
        id=row[0],
        observation_date=date.fromisoformat(row[1]),
        term_years=int(row[2]),
        loan_type=LoanType(row[3]),
        rate_value=to_rate(row[4]),
        rate_kind=row[5],
        recorded_at=parse_utc(row[6]),
        source=row[7],
    )


def _is_newer(candidate: RateObservation, current: RateObservation) -> bool:
    # Same observation_date: an intraday correction wins on recorded_at, never on insertion order.
    return (candidate.observation_date, candidate.recorded_at) > (current.observation_date, current.recorded_at)


class RateStore:
    """Versioned rate history keyed by ``(observation_date, term_years, loan_type)``.

    Rows are appended, never updated in place; the current value for a key is
    the row with the greatest ``(observation_date, recorded_at)``.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        migrate(conn)

    def _latest_for_key(self, cur, obs: RateObservation):
        return cur.execute(
            f"""
            SELECT {_SELECT_COLS} FROM rate_observations
            WHERE observation_date=? AND term_years=? AND loan_type=?
            ORDER BY recorded_at_utc DESC, id DESC LIMIT 1
            """,
            (obs.observation_date.isoformat(), obs.term_years, obs.loan_type.value),
        ).fetchone()

    def _has_version(self, cur, obs: RateObservation, recorded_at_utc: str) -> bool:
        row = cur.execute(
            """
            SELECT 1 FROM rate_observations
            WHERE observation_date=? AND term_years=? AND loan_type=?
              AND rate_value=? AND rate_kind=? AND recorded_at_utc=?
            LIMIT 1
            """,
            (
                obs.observation_date.isoformat(),
                obs.term_years,
                obs.loan_type.value,
                str(to_rate(obs.rate_value)),
                obs.rate_kind,
                recorded_at_utc,
            ),
        ).fetchone()
        return row is not None

    def upsert(self, observations: Iterable[RateObservation], run_id: str | None = None) -> int:
        """Write observations; returns the number of new rows.

        A value-equal write for an existing key is a no-op, as is a row that
        already exists with the same value, kind and ``recorded_at`` (replayed
        legacy or late writes). Anything else appends a new row; it becomes
        authoritative when its ``recorded_at`` is the newest for the key. The
        batch is one transaction: on any error nothing from it is kept.
        """
        cur = self.conn.cursor()
        inserted = 0
        cur.execute("BEGIN")
        try:
            for obs in observations:
                existing = self._latest_for_key(cur, obs)
                if existing is not None:
                    prev = _row_to_observation(existing)
                    if prev.rate_value == obs.rate_value and prev.rate_kind == obs.rate_kind:
                        continue
                recorded_at_utc = to_utc_iso(obs.recorded_at) if obs.recorded_at else now_utc_iso()
                if existing is not None and self._has_version(cur, obs, recorded_at_utc):
                    continue
                cur.execute(
                    """
                    INSERT INTO rate_observations
                      (observation_date, term_years, loan_type, rate_value, rate_kind, recorded_at_utc, source, run_id)
                    VALUES (?,?,?,?,?,?,?,?)
                    """,
                    (
                        obs.observation_date.isoformat(),
                        int(obs.term_years),
                        obs.loan_type.value,
                        str(to_rate(obs.rate_value)),
                        obs.rate_kind,
                        recorded_at_utc,
                        obs.source,
                        run_id,
                    ),
                )
                inserted += 1
            cur.execute("COMMIT")
        except Exception:
            cur.execute("ROLLBACK")
            raise
        log.info("rate_upsert_done", inserted=inserted, run_id=run_id)
        return inserted

    def current_by_key(self, limit: int = DEFAULT_CURRENT_SCAN_LIMIT) -> dict[SeriesKey, RateObservation]:
        """Latest observation per series from a bounded scan of recent rows."""
        cur = self.conn.cursor()
        rows = cur.execute(
            f"""
            SELECT {_SELECT_COLS} FROM rate_observations
            ORDER BY observation_date DESC, recorded_at_utc DESC, id DESC
            LIMIT ?
            """,
            (int(limit),),
        ).fetchall()
        current: dict[SeriesKey, RateObservation] = {}
        for row in rows:
            obs = _row_to_observation(row)
            held = current.get(obs.series_key)
            if held is None or _is_newer(obs, held):
                current[obs.series_key] = obs
        return current

    def history(self, term_years: int, loan_type: LoanType, since: date | None = None) -> list[RateObservation]:
        """Ascending by date, one resolved observation per date."""
        cur = self.conn.cursor()
        params: list = [int(term_years), LoanType(loan_type).value]
        where = "term_years=? AND loan_type=?"
        if since is not None:
            where += " AND observation_date>=?"
            params.append(since.isoformat())
        rows = cur.execute(
            f"""
            SELECT {_SELECT_COLS} FROM rate_observations
            WHERE {where}
            ORDER BY observation_date ASC, recorded_at_utc ASC, id ASC
            """,
            params,
        ).fetchall()
        by_date: dict[date, RateObservation] = {}
        for row in rows:
            obs = _row_to_observation(row)
            held = by_date.get(obs.observation_date)
            if held is None or not _is_newer(held, obs):
                by_date[obs.observation_date] = obs
        return [by_date[d] for d in sorted(by_date)]

    def latest_date(self) -> date | None:
        row = self.conn.execute("SELECT MAX(observation_date) FROM rate_observations").fetchone()
        return date.fromisoformat(row[0]) if row and row[0] else None

    def count(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) FROM rate_observations").fetchone()
        return int(row[0]) if row else 0

    def reset(self) -> int:
        """Administrative reset: delete every stored observation."""
        cur = self.conn.cursor()
        cur.execute("DELETE FROM rate_observations")
        self.conn.commit()
        log.warning("rate_store_reset", deleted=cur.rowcount)
        return cur.rowcount

    def migrate_legacy(self) -> int:
        """Copy rows from the legacy ``rate_history`` table keyed only by (date, term).

        Legacy rows have no reliable loan type: 15-year rows and rows without a
        recognised type land under conventional. Rows already present under the
        canonical key with the same value, or copied by an earlier run, are
        skipped by ``upsert``, so running this again inserts nothing.
        """
        cur = self.conn.cursor()
        legacy = cur.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='rate_history'"
        ).fetchone()
        if not legacy:
            return 0
        cols = {r[1] for r in cur.execute("PRAGMA table_info(rate_history)").fetchall()}
        loan_col = "loan_type" if "loan_type" in cols else "NULL"
        kind_col = "rate_type" if "rate_type" in cols else "NULL"
        created_col = "created_at" if "created_at" in cols else "NULL"
        rows = cur.execute(
            f"""
            SELECT rate_date, term_years, {loan_col}, rate_value, {kind_col}, {created_col}
            FROM rate_history ORDER BY rate_date ASC
            """
        ).fetchall()
        observations = []
        for rate_date, term_years, loan_type, rate_value, rate_kind, created_at in rows:
            value = to_rate(rate_value)
            if value is None or not rate_date:
                continue
            observations.append(
                RateObservation(
                    observation_date=date.fromisoformat(str(rate_date)[:10]),
                    term_years=int(term_years),
                    loan_type=_legacy_loan_type(loan_type),
                    rate_value=value,
                    rate_kind=(rate_kind or "fixed").lower(),
                    recorded_at=parse_utc(created_at) or parse_utc(f"{str(rate_date)[:10]}T00:00:00+00:00"),
                    source="legacy_rate_history",
                )
            )
        inserted = self.upsert(observations)
        log.info("rate_legacy_migrated", legacy_rows=len(rows), inserted=inserted)
        return inserted


def _legacy_loan_type(raw: str | None) -> LoanType:
    value = (raw or "").strip().lower()
    for loan_type in LoanType:
        if value == loan_type.value or value.endswith(f"_{loan_type.value}"):
            return loan_type
    return LoanType.CONVENTIONAL
