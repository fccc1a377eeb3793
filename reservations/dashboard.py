"""Admin dashboard — owns the live list of reservations.

One Dashboard per signed-in admin.  It merges three delivery paths into a
single in-memory list:

  1. full fetches (first load, backstop refresh every 2 min, manual refresh)
  2. realtime INSERT / UPDATE events
  3. the admin's own edits, patched in optimistically once the store
     confirms the write

Typical lifecycle::

    dashboard = Dashboard(store, auth, backend)
    await dashboard.mount()        # auth check → fetch → realtime
    ...
    await dashboard.change_status(reservation_id, ReservationStatus.CONFIRMED)
    ...
    await dashboard.unmount()

Everything an admin should see (toasts, state changes, rows arriving) is
emitted on ``dashboard.events``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from reservations.auth import AuthResult, AuthSessionManager
from reservations.backends.base import ReservationBackend
from reservations.config import Settings, settings
from reservations.events import EventBroadcaster
from reservations.models.reservation import (
    Reservation,
    ReservationStatus,
    ReservationUpdate,
)
from reservations.models.results import UNAUTHENTICATED, StoreResult
from reservations.notifications import PushNotifier
from reservations.realtime import CHANNEL_ERROR, CLOSED, SUBSCRIBED, TIMED_OUT, RealtimeListener
from reservations.store import ReservationStore

log = logging.getLogger("reservations.dashboard")

LOADING_TIMEOUT_MESSAGE = "Loading timed out. Please try refreshing the page."
INITIAL_LOAD_MESSAGE = "Failed to load reservations. Please try refreshing the page."
LOGIN_PATH = "/admin"

_REALTIME_TOASTS = {
    SUBSCRIBED: ("success", "Real-time updates activated"),
    TIMED_OUT: ("error", "Real-time updates timed out"),
    CLOSED: ("error", "Real-time connection closed"),
    CHANNEL_ERROR: ("error", "Connection error with real-time service"),
}


class DashboardState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"
    UNAUTHENTICATED = "unauthenticated"


def _is_stale(incoming: Reservation, current: Reservation) -> bool:
    """True when both carry updated_at and the incoming copy is older."""
    if incoming.updated_at is None or current.updated_at is None:
        return False
    try:
        return incoming.updated_at < current.updated_at
    except TypeError:
        # naive vs aware timestamps
        return False


class Dashboard:
    """Reconciliation loop behind the admin dashboard."""

    def __init__(
        self,
        store: ReservationStore,
        auth: AuthSessionManager,
        backend: ReservationBackend,
        events: EventBroadcaster | None = None,
        notifier: PushNotifier | None = None,
        *,
        auth_check_interval: float = 5 * 60,
        refresh_interval: float = 120.0,
        loading_timeout: float = 10.0,
        resubscribe_delay: float = 5.0,
        fetch_retry_limit: int = 3,
        fetch_retry_delay: float = 3.0,
    ) -> None:
        self._store = store
        self._auth = auth
        self.events = events or EventBroadcaster()
        self._notifier = notifier

        self._auth_check_interval = auth_check_interval
        self._refresh_interval = refresh_interval
        self._loading_timeout = loading_timeout
        self._fetch_retry_limit = fetch_retry_limit
        self._fetch_retry_delay = fetch_retry_delay

        self._listener = RealtimeListener(
            backend,
            on_insert=self.handle_insert,
            on_update=self.handle_update,
            on_status=self._on_realtime_status,
            resubscribe_delay=resubscribe_delay,
        )

        self._reservations: list[Reservation] = []
        self._state = DashboardState.LOADING
        self._error: Optional[str] = None
        self._last_refreshed: Optional[datetime] = None

        self._mounted = False
        self._auth_checked = False  # first successful check loads data once
        self._retry_count = 0

        self._watchdog: asyncio.Task | None = None
        self._retry_task: asyncio.Task | None = None
        self._timers: list[asyncio.Task] = []
        self._background: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        store: ReservationStore,
        auth: AuthSessionManager,
        backend: ReservationBackend,
        events: EventBroadcaster | None = None,
        notifier: PushNotifier | None = None,
        config: Settings = settings,
    ) -> "Dashboard":
        return cls(
            store,
            auth,
            backend,
            events=events,
            notifier=notifier,
            auth_check_interval=config.auth_check_interval,
            refresh_interval=config.refresh_interval,
            loading_timeout=config.loading_timeout,
            resubscribe_delay=config.resubscribe_delay,
            fetch_retry_limit=config.fetch_retry_limit,
            fetch_retry_delay=config.fetch_retry_delay,
        )

    # ── Public state ──────────────────────────────────────────

    @property
    def state(self) -> DashboardState:
        return self._state

    @property
    def loading(self) -> bool:
        return self._state is DashboardState.LOADING

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def is_mounted(self) -> bool:
        return self._mounted

    @property
    def reservations(self) -> list[Reservation]:
        return list(self._reservations)

    @property
    def last_refreshed(self) -> Optional[datetime]:
        return self._last_refreshed

    @property
    def listener(self) -> RealtimeListener:
        return self._listener

    def filtered(self, query: str | None = None) -> list[Reservation]:
        """Name (case-insensitive) or phone substring match."""
        if not query:
            return list(self._reservations)
        lowered = query.lower()
        return [
            r for r in self._reservations
            if lowered in r.name.lower() or query in r.phone
        ]

    def snapshot(self, query: str | None = None) -> dict[str, Any]:
        rows = self.filtered(query)
        return {
            "state": self._state.value,
            "loading": self.loading,
            "error": self._error,
            "lastRefreshed": self._last_refreshed.isoformat() if self._last_refreshed else None,
            "count": len(rows),
            "reservations": [r.to_api() for r in rows],
        }

    # ── Lifecycle ─────────────────────────────────────────────

    async def mount(self) -> None:
        """Start the dashboard: watchdog, timers, then the first auth check."""
        if self._mounted:
            return
        self._mounted = True
        log.info("===== Dashboard MOUNTED =====")
        self._set_state(DashboardState.LOADING)

        loop = asyncio.get_running_loop()
        self._timers = [
            loop.create_task(self._every(self._auth_check_interval, self.check_auth, "auth check")),
            loop.create_task(self._every(self._refresh_interval, self.refresh, "periodic data refresh")),
        ]
        await self.check_auth()

    async def unmount(self) -> None:
        """Stop timers and realtime. In-flight requests are left to finish."""
        if self._mounted:
            log.info("===== Dashboard UNMOUNTED =====")
        await self._teardown()

    async def check_auth(self) -> bool:
        """Fast-path flag, then the backend. The first success loads data."""
        if not self._auth.cache.is_authenticated():
            log.info("AUTH CHECK: Not authenticated based on local flag")
            await self._redirect_to_login("Session expired. Please login again.")
            return False

        try:
            session = await self._auth.get_session()
        except Exception as e:
            log.error("AUTH CHECK: Session error: %s", e)
            await self._redirect_to_login("Authentication error. Please login again.")
            return False

        if session is None:
            log.info("AUTH CHECK: No active session found")
            await self._redirect_to_login("Session expired. Please login again.")
            return False

        self._auth.cache.mark_authenticated()

        if not self._auth_checked:
            self._auth_checked = True
            log.info("AUTH CHECK: First successful auth check, proceeding to fetch data")
            try:
                await self.fetch()
                if self._mounted:
                    await self._listener.subscribe()
            except Exception:
                log.exception("AUTH CHECK: Error in initial data fetch")
                self._set_state(DashboardState.ERROR, INITIAL_LOAD_MESSAGE)
        return True

    # ── Fetching ──────────────────────────────────────────────

    async def fetch(self) -> bool:
        """Full list() refetch; replaces the in-memory list on success."""
        log.info("FETCH: Starting reservation data fetch...")
        self._set_state(DashboardState.LOADING)

        result = await self._store.list()
        if result.success:
            self._reservations = list(result.data or [])
            self._last_refreshed = datetime.now(timezone.utc)
            self._retry_count = 0
            self._set_state(DashboardState.READY)
            self.events.emit("reservations_loaded", {"count": len(self._reservations)})
            log.info("FETCH: Loaded %d reservations", len(self._reservations))
            return True

        if result.error == UNAUTHENTICATED:
            await self._redirect_to_login("Your session has expired. Please login again.")
            return False

        message = result.message or "Failed to fetch reservations"
        log.error("FETCH: API reported error: %s", message)
        self._set_state(DashboardState.ERROR, message)
        self.events.toast("error", "Failed to load reservations. Will retry automatically.")
        self._schedule_fetch_retry()
        return False

    async def refresh(self) -> bool:
        if not self._mounted:
            return False
        return await self.fetch()

    def _schedule_fetch_retry(self) -> None:
        if not self._mounted or self._retry_count >= self._fetch_retry_limit:
            return
        if self._retry_task is not None and not self._retry_task.done():
            return
        self._retry_count += 1
        delay = self._fetch_retry_delay * self._retry_count
        self._retry_task = asyncio.get_running_loop().create_task(
            self._retry_fetch_later(delay, self._retry_count)
        )

    async def _retry_fetch_later(self, delay: float, attempt: int) -> None:
        await asyncio.sleep(delay)
        self._retry_task = None
        if not self._mounted:
            return
        log.info("Retrying fetch (attempt %d)...", attempt)
        await self.fetch()

    # ── Realtime events ───────────────────────────────────────

    def handle_insert(self, reservation: Reservation) -> None:
        if any(r.id == reservation.id for r in self._reservations):
            log.info("Reservation %s already in list, not adding duplicate", reservation.id)
            return

        self._reservations.insert(0, reservation)
        self.events.emit("reservation_inserted", {"reservation": reservation.to_api()})
        self._notify_new_reservation(reservation)
        self.events.toast(
            "success",
            "New reservation received",
            f"{reservation.name} has booked for {reservation.date}",
        )

    def handle_update(self, reservation: Reservation) -> None:
        for index, current in enumerate(self._reservations):
            if current.id == reservation.id:
                break
        else:
            log.info("Update for unknown reservation %s dropped", reservation.id)
            return

        if _is_stale(reservation, current):
            log.info("Stale update for reservation %s dropped", reservation.id)
            return

        self._reservations[index] = reservation
        self.events.emit("reservation_updated", {"reservation": reservation.to_api()})
        self.events.toast(
            "info",
            "Reservation updated",
            f"{reservation.name}'s reservation has been updated",
        )

    def _on_realtime_status(self, status: str) -> None:
        self.events.emit("realtime_status", {"status": status})
        toast = _REALTIME_TOASTS.get(status)
        if toast:
            self.events.toast(*toast)

    def _notify_new_reservation(self, reservation: Reservation) -> None:
        self.events.emit("notification", {
            "name": reservation.name,
            "phone": reservation.phone,
            "date": reservation.date,
            "timeSlot": reservation.time_slot,
        })
        if self._notifier is None:
            return
        try:
            task = asyncio.get_running_loop().create_task(self._send_push(reservation))
        except RuntimeError as e:
            log.error("Failed to send push notification: %s", e)
            return
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send_push(self, reservation: Reservation) -> None:
        try:
            await self._notifier.send(reservation)
        except Exception as e:
            log.error("Failed to send push notification: %s", e)

    # ── Admin actions ─────────────────────────────────────────

    async def change_status(
        self, reservation_id: str, status: ReservationStatus | str
    ) -> StoreResult:
        return await self._apply_edit(
            reservation_id,
            {"status": status},
            "Reservation status updated successfully",
            "Failed to update reservation status",
        )

    async def update_reservation(self, reservation_id: str, fields: dict[str, Any]) -> StoreResult:
        return await self._apply_edit(
            reservation_id,
            fields,
            "Reservation updated successfully",
            "Failed to update reservation",
        )

    async def _apply_edit(
        self, reservation_id: str, fields: dict[str, Any], ok_message: str, fail_message: str
    ) -> StoreResult:
        result = await self._store.update(reservation_id, fields)
        if not result.success:
            self.events.toast("error", result.message or fail_message)
            return result

        changes = ReservationUpdate.model_validate(fields).changes()
        for index, current in enumerate(self._reservations):
            if current.id == reservation_id:
                patched = current.model_copy(update=changes)
                self._reservations[index] = patched
                self.events.emit("reservation_updated", {"reservation": patched.to_api()})
                break
        self.events.toast("success", ok_message)
        return result

    async def delete_reservation(self, reservation_id: str) -> bool:
        log.info("Attempting to delete reservation %s", reservation_id)
        if not await self._store.delete(reservation_id):
            self.events.toast("error", "Failed to delete reservation")
            return False

        self._reservations = [r for r in self._reservations if r.id != reservation_id]
        self.events.emit("reservation_deleted", {"id": reservation_id})
        self.events.toast("success", "Reservation deleted successfully")
        return True

    async def logout(self) -> AuthResult:
        """Close realtime, sign out, clear local flags, go to the login page."""
        log.info("LOGOUT: Initiating logout process...")
        await self._listener.close()
        result = await self._auth.logout()
        if result.success:
            self.events.toast("success", "Logged out successfully")
        else:
            self.events.toast("error", f"{result.message or 'Logout failed'}, but local session cleared")
        self._set_state(DashboardState.UNAUTHENTICATED)
        self.events.emit("redirect", {"to": LOGIN_PATH})
        await self._teardown()
        return result

    # ── Internals ─────────────────────────────────────────────

    def _set_state(self, state: DashboardState, error: Optional[str] = None) -> None:
        self._state = state
        self._error = error
        if state is DashboardState.LOADING:
            self._arm_watchdog()
        else:
            self._disarm_watchdog()
        self.events.emit("state", {"state": state.value, "error": error})

    def _arm_watchdog(self) -> None:
        # Measured from the first entry into loading, not re-armed while loading
        if self._watchdog is not None and not self._watchdog.done():
            return
        self._watchdog = asyncio.get_running_loop().create_task(self._loading_watchdog())

    def _disarm_watchdog(self) -> None:
        task, self._watchdog = self._watchdog, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _loading_watchdog(self) -> None:
        await asyncio.sleep(self._loading_timeout)
        if self._state is DashboardState.LOADING:
            log.warning("TIMEOUT: Loading state has been active for too long, forcing reset")
            self._watchdog = None
            self._set_state(DashboardState.ERROR, LOADING_TIMEOUT_MESSAGE)
            self.events.toast("error", LOADING_TIMEOUT_MESSAGE)

    async def _redirect_to_login(self, message: str) -> None:
        self.events.toast("error", message)
        self._auth.cache.clear()
        self._set_state(DashboardState.UNAUTHENTICATED)
        self.events.emit("redirect", {"to": LOGIN_PATH})
        await self._teardown()

    async def _teardown(self) -> None:
        self._mounted = False
        current = asyncio.current_task()
        for task in [*self._timers, self._retry_task]:
            if task is not None and task is not current:
                task.cancel()
        self._timers = []
        self._retry_task = None
        self._disarm_watchdog()
        await self._listener.close()

    async def _every(
        self, interval: float, action: Callable[[], Awaitable[Any]], label: str
    ) -> None:
        while self._mounted:
            await asyncio.sleep(interval)
            if not self._mounted:
                break
            log.info("Performing %s...", label)
            try:
                await action()
            except Exception:
                log.exception("%s failed", label)
