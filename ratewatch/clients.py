from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

import structlog

from .db import migrate
from .utils import to_rate

log = structlog.get_logger()


@dataclass(frozen=True)
class ClientTarget:
    client_id: str
    owner_user_id: str
    loan_type_label: str | None
    target_rate: Decimal
    client_name: str
    client_email: str | None = None
    loan_amount: float | None = None
    owner_name: str | None = None
    owner_email: str | None = None
    owner_phone: str | None = None
    current_rate: Decimal | None = None


@dataclass(frozen=True)
class NotificationPreference:
    user_id: str
    rate_alerts_enabled: bool = False
    send_to_client_enabled: bool = False
    weekly_reports_enabled: bool = False


@dataclass(frozen=True)
class OwnerProfile:
    user_id: str
    full_name: str | None
    email: str
    phone: str | None = None


class ClientRepository(Protocol):
    def list_clients_with_target_rate(self, owner_user_id: str | None = None) -> list[ClientTarget]: ...


class NotificationPreferenceRepository(Protocol):
    def get(self, user_id: str) -> NotificationPreference | None: ...

    def list_weekly_subscribers(self) -> list[OwnerProfile]: ...


class NotificationSink(Protocol):
    def send(self, role: str, address: str, template_data: dict) -> bool: ...


def _full_name(first: str | None, last: str | None) -> str:
    return " ".join(part for part in (first, last) if part) or "Client"


class SqliteClientRepository:
    """Clients with a target rate, joined with their owner's profile."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        migrate(conn)

    def list_clients_with_target_rate(self, owner_user_id: str | None = None) -> list[ClientTarget]:
        params: list = []
        where = "c.target_rate IS NOT NULL AND TRIM(c.target_rate) != ''"
        if owner_user_id is not None:
            where += " AND c.user_id=?"
            params.append(owner_user_id)
        rows = self.conn.execute(
            f"""
            SELECT c.client_id, c.user_id, c.loan_type, c.target_rate, c.first_name, c.last_name,
                   c.email, c.loan_amount, p.full_name, p.email, p.phone, c.current_rate
            FROM clients c
            LEFT JOIN profiles p ON p.user_id = c.user_id
            WHERE {where}
            ORDER BY c.client_id
            """,
            params,
        ).fetchall()
        out = []
        for r in rows:
            target = to_rate(r[3])
            if target is None:
                log.warning("client_target_rate_invalid", client_id=r[0], raw=r[3])
                continue
            out.append(
                ClientTarget(
                    client_id=str(r[0]),
                    owner_user_id=str(r[1]),
                    loan_type_label=r[2],
                    target_rate=target,
                    client_name=_full_name(r[4], r[5]),
                    client_email=r[6] or None,
                    loan_amount=float(r[7]) if r[7] is not None else None,
                    owner_name=r[8],
                    owner_email=r[9],
                    owner_phone=r[10],
                    current_rate=to_rate(r[11]),
                )
            )
        return out


class SqlitePreferenceRepository:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        migrate(conn)

    def get(self, user_id: str) -> NotificationPreference | None:
        row = self.conn.execute(
            "SELECT user_id, rate_alerts, send_to_client, weekly_reports FROM notification_preferences WHERE user_id=?",
            (user_id,),
        ).fetchone()
        if not row:
            return None
        return NotificationPreference(
            user_id=row[0],
            rate_alerts_enabled=bool(row[1]),
            send_to_client_enabled=bool(row[2]),
            weekly_reports_enabled=bool(row[3]),
        )

    def list_weekly_subscribers(self) -> list[OwnerProfile]:
        rows = self.conn.execute(
            """
            SELECT p.user_id, p.full_name, p.email, p.phone
            FROM notification_preferences n
            JOIN profiles p ON p.user_id = n.user_id
            WHERE n.weekly_reports = 1 AND p.email IS NOT NULL AND p.email != ''
            ORDER BY p.user_id
            """
        ).fetchall()
        return [OwnerProfile(user_id=r[0], full_name=r[1], email=r[2], phone=r[3]) for r in rows]
