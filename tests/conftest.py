"""Shared fixtures: an in-memory ReservationBackend and wired-up services."""

from __future__ import annotations

import itertools
from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from reservations.auth import AuthSessionManager, FastPathAuthCache
from reservations.backends.base import AuthSession, BackendError, ReservationBackend
from reservations.store import ReservationStore

ADMIN_EMAIL = "admin@restaurant.test"
ADMIN_PASSWORD = "correct-horse"
ADMIN_TOKEN = "admin-access-token"


def make_row(id=1, name="Alice", phone="0612345678", date="01/06/2025",
             time_slot="11h00-14h00", status="Pending", **extra) -> dict[str, Any]:
    row = {
        "id": id,
        "name": name,
        "phone": phone,
        "date": date,
        "time_slot": time_slot,
        "status": status,
        "created_at": "2025-05-20T10:00:00+00:00",
    }
    row.update(extra)
    return row


class FakeBackend(ReservationBackend):
    """Rows in a dict, one admin account, callbacks captured for tests to drive."""

    def __init__(self, rows: list[dict[str, Any]] | None = None, signed_in: bool = False) -> None:
        self.rows: dict[str, dict[str, Any]] = {}
        self._ids = itertools.count(100)
        for row in rows or []:
            self.rows[str(row["id"])] = dict(row)

        self.session: Optional[AuthSession] = (
            AuthSession(access_token=ADMIN_TOKEN, user_email=ADMIN_EMAIL) if signed_in else None
        )

        # Call recording
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.select_calls = 0
        self.subscribe_calls = 0
        self.removed_channels: list[Any] = []

        # Failure injection
        self.fail_insert: Optional[str] = None
        self.fail_select: Optional[str] = None
        self.fail_update: Optional[str] = None
        self.fail_delete: Optional[str] = None
        self.fail_session: Optional[str] = None
        self.fail_subscribe: Optional[str] = None
        self.fail_sign_out: Optional[str] = None
        self.stale_reads = 0  # select_reservation returns the pre-update row this many times
        self._before_update: dict[str, dict[str, Any]] = {}

        # Realtime hooks captured from the last subscribe
        self.on_change = None
        self.on_status = None

    # ── Rows ──────────────────────────────────────────────────

    async def insert_reservation(self, record):
        if self.fail_insert:
            raise BackendError(self.fail_insert)
        new_id = str(next(self._ids))
        row = {**record, "id": int(new_id), "created_at": datetime.now(timezone.utc).isoformat()}
        self.rows[new_id] = row
        return dict(row)

    async def select_reservations(self):
        self.select_calls += 1
        if self.fail_select:
            raise BackendError(self.fail_select)
        return sorted(
            (dict(r) for r in self.rows.values()),
            key=lambda r: r.get("created_at") or "",
            reverse=True,
        )

    async def select_reservation(self, reservation_id):
        if self.stale_reads and reservation_id in self._before_update:
            self.stale_reads -= 1
            return dict(self._before_update[reservation_id])
        row = self.rows.get(str(reservation_id))
        return dict(row) if row else None

    async def update_reservation(self, reservation_id, fields):
        self.updates.append((reservation_id, dict(fields)))
        if self.fail_update:
            raise BackendError(self.fail_update)
        row = self.rows.get(str(reservation_id))
        if row is None:
            return []
        self._before_update.setdefault(str(reservation_id), dict(row))
        row.update(fields)
        return [dict(row)]

    async def delete_reservation(self, reservation_id):
        if self.fail_delete:
            raise BackendError(self.fail_delete)
        self.rows.pop(str(reservation_id), None)

    # ── Auth ──────────────────────────────────────────────────

    async def sign_in(self, email, password):
        if email != ADMIN_EMAIL or password != ADMIN_PASSWORD:
            raise BackendError("Invalid login credentials")
        self.session = AuthSession(access_token=ADMIN_TOKEN, user_email=email)
        return self.session

    async def sign_out(self):
        if self.fail_sign_out:
            raise BackendError(self.fail_sign_out)
        self.session = None

    async def get_session(self):
        if self.fail_session:
            raise BackendError(self.fail_session)
        return self.session

    # ── Realtime ──────────────────────────────────────────────

    async def subscribe_changes(self, events, on_change, on_status):
        self.subscribe_calls += 1
        if self.fail_subscribe:
            raise BackendError(self.fail_subscribe)
        self.events = list(events)
        self.on_change = on_change
        self.on_status = on_status
        return f"channel-{self.subscribe_calls}"

    async def remove_channel(self, channel):
        self.removed_channels.append(channel)


@pytest.fixture
def backend():
    return FakeBackend(rows=[make_row()], signed_in=True)


@pytest.fixture
def store(backend):
    return ReservationStore(backend)


@pytest.fixture
def auth(backend):
    cache = FastPathAuthCache(ttl=3600)
    cache.mark_authenticated()
    return AuthSessionManager(backend, cache)
