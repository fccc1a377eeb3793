"""Supabase backend implementation.

Uses the async ``supabase`` client: PostgREST for rows, GoTrue for the
admin session and the realtime channel for row change events.  The
project URL and key are read from ``SUPABASE_URL`` / ``SUPABASE_ANON_KEY``
when not passed in.  The webhook relay builds a second instance with the
service-role key.
"""

from __future__ import annotations

import asyncio
import logging
import os
from functools import partial
from typing import Any, Optional

from supabase import AsyncClient, acreate_client

from .base import (
    AuthSession,
    BackendError,
    ChangeCallback,
    ReservationBackend,
    StatusCallback,
)

logger = logging.getLogger("reservations.backends.supabase")

CHANNEL_NAME = "schema-db-changes"


def _error_text(exc: Exception) -> str:
    # postgrest APIError and gotrue errors carry .message
    return getattr(exc, "message", None) or str(exc) or exc.__class__.__name__


def _status_name(state: Any) -> str:
    return str(getattr(state, "value", state))


def _extract_new_row(payload: Any) -> Any:
    """Pull the new row out of a realtime postgres_changes payload."""
    if not isinstance(payload, dict):
        return payload
    if "new" in payload:
        return payload["new"]
    data = payload.get("data")
    if isinstance(data, dict):
        return data.get("record")
    return None


def _to_session(session: Any) -> Optional[AuthSession]:
    if session is None or not getattr(session, "access_token", None):
        return None
    user = getattr(session, "user", None)
    return AuthSession(
        access_token=session.access_token,
        refresh_token=getattr(session, "refresh_token", "") or "",
        expires_at=getattr(session, "expires_at", None),
        user_email=getattr(user, "email", "") or "",
    )


class SupabaseBackend(ReservationBackend):
    """ReservationBackend backed by a Supabase project."""

    def __init__(
        self,
        url: str | None = None,
        key: str | None = None,
        table: str = "reservations",
        client: AsyncClient | None = None,
    ) -> None:
        self._url = url or os.environ.get("SUPABASE_URL", "")
        self._key = key or os.environ.get("SUPABASE_ANON_KEY", "")
        if client is None and not (self._url and self._key):
            # Not fatal here: every call fails with BackendError until configured
            logger.warning("Supabase URL or key not configured")
        self._table = table
        self._client = client
        self._client_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _get_client(self) -> AsyncClient:
        """Create the async client on first use (creation needs a running loop)."""
        if self._client is None:
            if not (self._url and self._key):
                raise BackendError(
                    "Supabase URL and key must be provided via constructor "
                    "arguments or SUPABASE_URL / SUPABASE_ANON_KEY env vars."
                )
            async with self._client_lock:
                if self._client is None:
                    try:
                        self._client = await acreate_client(self._url, self._key)
                    except Exception as e:
                        raise BackendError(f"Could not connect to Supabase: {_error_text(e)}") from e
        return self._client

    async def _rows(self, action: str, build) -> list[dict[str, Any]]:
        """Build a PostgREST query against the table, execute it, return ``data``."""
        client = await self._get_client()
        try:
            response = await build(client.table(self._table)).execute()
        except Exception as e:
            raise BackendError(f"{action} failed: {_error_text(e)}") from e
        return list(response.data or [])

    # ------------------------------------------------------------------
    # ReservationBackend interface
    # ------------------------------------------------------------------

    async def insert_reservation(self, record: dict[str, Any]) -> dict[str, Any]:
        rows = await self._rows("Insert", lambda t: t.insert(record))
        if not rows:
            raise BackendError("Insert returned no row")
        return rows[0]

    async def select_reservations(self) -> list[dict[str, Any]]:
        return await self._rows(
            "Select", lambda t: t.select("*").order("created_at", desc=True)
        )

    async def select_reservation(self, reservation_id: str) -> Optional[dict[str, Any]]:
        rows = await self._rows(
            "Select", lambda t: t.select("*").eq("id", reservation_id).limit(1)
        )
        return rows[0] if rows else None

    async def update_reservation(
        self, reservation_id: str, fields: dict[str, Any]
    ) -> list[dict[str, Any]]:
        return await self._rows(
            "Update", lambda t: t.update(fields).eq("id", reservation_id)
        )

    async def delete_reservation(self, reservation_id: str) -> None:
        await self._rows("Delete", lambda t: t.delete().eq("id", reservation_id))

    async def sign_in(self, email: str, password: str) -> Optional[AuthSession]:
        client = await self._get_client()
        try:
            response = await client.auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except Exception as e:
            raise BackendError(_error_text(e)) from e
        return _to_session(getattr(response, "session", None))

    async def sign_out(self) -> None:
        client = await self._get_client()
        try:
            await client.auth.sign_out()
        except Exception as e:
            raise BackendError(_error_text(e)) from e

    async def get_session(self) -> Optional[AuthSession]:
        client = await self._get_client()
        try:
            session = await client.auth.get_session()
        except Exception as e:
            raise BackendError(_error_text(e)) from e
        return _to_session(session)

    async def subscribe_changes(
        self,
        events: list[str],
        on_change: ChangeCallback,
        on_status: StatusCallback,
    ) -> Any:
        client = await self._get_client()

        def _on_row(event: str, payload: Any) -> None:
            on_change(event, _extract_new_row(payload))

        def _on_state(state: Any, error: Optional[Exception] = None) -> None:
            on_status(_status_name(state), error)

        try:
            channel = client.channel(CHANNEL_NAME)
            for event in events:
                channel.on_postgres_changes(
                    event=event,
                    schema="public",
                    table=self._table,
                    callback=partial(_on_row, event),
                )
            await channel.subscribe(_on_state)
        except Exception as e:
            raise BackendError(f"Realtime subscribe failed: {_error_text(e)}") from e
        return channel

    async def remove_channel(self, channel: Any) -> None:
        client = await self._get_client()
        try:
            await client.remove_channel(channel)
        except Exception as e:
            raise BackendError(f"Realtime unsubscribe failed: {_error_text(e)}") from e
