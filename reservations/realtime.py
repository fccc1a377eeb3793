"""Realtime change listener for the reservations table.

Opens one channel filtered to INSERT and UPDATE, decodes each new-row
payload into a ``Reservation`` and hands it to the registered callback.
A ``CHANNEL_ERROR`` schedules a full resubscribe after a fixed delay.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from pydantic import ValidationError

from reservations.backends.base import ReservationBackend
from reservations.models.reservation import Reservation

log = logging.getLogger("reservations.realtime")

SUBSCRIBED = "SUBSCRIBED"
TIMED_OUT = "TIMED_OUT"
CLOSED = "CLOSED"
CHANNEL_ERROR = "CHANNEL_ERROR"

EVENTS = ["INSERT", "UPDATE"]

ReservationCallback = Callable[[Reservation], None]
StatusHook = Callable[[str], None]


def decode_reservation(payload: Any) -> Optional[Reservation]:
    """Map a raw realtime row into a Reservation; None (logged) when malformed."""
    if not isinstance(payload, dict):
        log.error("Invalid payload received: %r", payload)
        return None
    try:
        return Reservation.from_record(payload)
    except ValidationError as e:
        log.error("Error transforming reservation record %r: %s", payload, e)
        return None


class RealtimeListener:
    """Single-channel subscription with delayed resubscribe on channel errors."""

    def __init__(
        self,
        backend: ReservationBackend,
        on_insert: ReservationCallback,
        on_update: ReservationCallback,
        on_status: StatusHook | None = None,
        resubscribe_delay: float = 5.0,
    ) -> None:
        self._backend = backend
        self._on_insert = on_insert
        self._on_update = on_update
        self._on_status = on_status
        self._resubscribe_delay = resubscribe_delay

        self._channel: Any = None
        self._resubscribe_task: asyncio.Task | None = None
        self._closed = False

    @property
    def is_subscribed(self) -> bool:
        return self._channel is not None

    async def subscribe(self) -> bool:
        """(Re)open the channel. Any existing channel is torn down first."""
        self._closed = False
        await self.unsubscribe()
        log.info("Setting up real-time subscription to reservations...")
        try:
            self._channel = await self._backend.subscribe_changes(
                EVENTS, self._handle_change, self._handle_status
            )
        except Exception as e:
            log.error("Error setting up real-time subscription: %s", e)
            self._notify_status(CHANNEL_ERROR)
            return False
        log.info("Real-time subscription setup complete")
        return True

    async def unsubscribe(self) -> None:
        """Best-effort channel teardown."""
        channel, self._channel = self._channel, None
        if channel is None:
            return
        log.info("Removing real-time subscription...")
        try:
            await self._backend.remove_channel(channel)
        except Exception as e:
            log.error("Error removing real-time subscription: %s", e)
        else:
            log.info("Real-time subscription removed")

    async def close(self) -> None:
        """Cancel any pending resubscribe and tear down the channel."""
        self._closed = True
        task, self._resubscribe_task = self._resubscribe_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        await self.unsubscribe()

    # ── Callbacks from the backend ─────────────────────────────

    def _handle_change(self, event_type: str, payload: Any) -> None:
        reservation = decode_reservation(payload)
        if reservation is None:
            return
        log.info("%s received via real-time for reservation %s", event_type, reservation.id)
        try:
            if event_type == "INSERT":
                self._on_insert(reservation)
            elif event_type == "UPDATE":
                self._on_update(reservation)
            else:
                log.debug("Ignoring %s event", event_type)
        except Exception:
            log.exception("Error handling %s event for %s", event_type, reservation.id)

    def _handle_status(self, status: str, error: Optional[Exception] = None) -> None:
        if status == SUBSCRIBED:
            log.info("Successfully subscribed to real-time updates for reservations")
        elif status == TIMED_OUT:
            log.error("Subscription timed out")
        elif status == CLOSED:
            log.error("Subscription closed")
        elif status == CHANNEL_ERROR:
            log.error("Channel error occurred: %s", error)
            self._schedule_resubscribe()
        else:
            log.info("Real-time subscription status: %s", status)
        self._notify_status(status)

    def _notify_status(self, status: str) -> None:
        if self._on_status is None:
            return
        try:
            self._on_status(status)
        except Exception:
            log.exception("Realtime status hook failed")

    # ── Resubscribe ───────────────────────────────────────────

    def _schedule_resubscribe(self) -> None:
        if self._closed:
            return
        if self._resubscribe_task is not None and not self._resubscribe_task.done():
            log.info("Resubscribe already pending")
            return
        log.info("Resubscribing in %.1fs", self._resubscribe_delay)
        self._resubscribe_task = asyncio.get_running_loop().create_task(self._resubscribe_later())

    async def _resubscribe_later(self) -> None:
        await asyncio.sleep(self._resubscribe_delay)
        if self._closed:
            return
        # Cleared first so a CHANNEL_ERROR during subscribe can schedule again
        self._resubscribe_task = None
        await self.subscribe()
