"""Abstract base class for the hosted reservation backend.

Defines the contract the rest of the service uses to reach the hosted
database (row CRUD), the auth provider (admin session) and the realtime
change feed.  Any backend-as-a-service (Supabase, a self-hosted
PostgREST + GoTrue, an in-memory fake for tests) implements this ABC.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional


class BackendError(Exception):
    """Transport failure or backend-reported error (auth, constraint, not-found)."""


@dataclass
class AuthSession:
    """An admin session held by the backend's auth provider."""

    access_token: str
    refresh_token: str = ""
    expires_at: Optional[float] = None  # unix seconds
    user_email: str = ""


# (event_type, raw new-row payload); payload is undecoded and may be malformed
ChangeCallback = Callable[[str, Any], None]
# (status name, error or None): SUBSCRIBED | TIMED_OUT | CLOSED | CHANNEL_ERROR
StatusCallback = Callable[[str, Optional[Exception]], None]


class ReservationBackend(ABC):
    """Abstract reservation backend.

    Every method raises ``BackendError`` on failure; callers own the
    conversion into user-facing results.
    """

    # ── Rows ──────────────────────────────────────────────────

    @abstractmethod
    async def insert_reservation(self, record: dict[str, Any]) -> dict[str, Any]:
        """Insert one row and return it as stored (with ``id`` and ``created_at``)."""

    @abstractmethod
    async def select_reservations(self) -> list[dict[str, Any]]:
        """Return every row, newest ``created_at`` first."""

    @abstractmethod
    async def select_reservation(self, reservation_id: str) -> Optional[dict[str, Any]]:
        """Return one row, or None when no row has that id."""

    @abstractmethod
    async def update_reservation(
        self, reservation_id: str, fields: dict[str, Any]
    ) -> list[dict[str, Any]]:
        """Apply a partial column update.

        Returns:
            The rows that matched (empty when the id does not exist).
        """

    @abstractmethod
    async def delete_reservation(self, reservation_id: str) -> None:
        """Delete one row."""

    # ── Auth ──────────────────────────────────────────────────

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> Optional[AuthSession]:
        """Password sign-in. Returns None when the provider issues no session."""

    @abstractmethod
    async def sign_out(self) -> None:
        """Invalidate the current session at the provider."""

    @abstractmethod
    async def get_session(self) -> Optional[AuthSession]:
        """Return the current session, or None when signed out or expired."""

    # ── Realtime ──────────────────────────────────────────────

    @abstractmethod
    async def subscribe_changes(
        self,
        events: list[str],
        on_change: ChangeCallback,
        on_status: StatusCallback,
    ) -> Any:
        """Open one channel on the reservations table.

        Args:
            events: Row events to listen for, e.g. ``["INSERT", "UPDATE"]``.
            on_change: Called with the event type and the new-row payload.
            on_status: Called on every channel status transition.

        Returns:
            An opaque channel handle for ``remove_channel``.
        """

    @abstractmethod
    async def remove_channel(self, channel: Any) -> None:
        """Tear down a channel returned by ``subscribe_changes``."""
