"""Dashboard event broadcaster for live admin clients.

The dashboard emits an event for everything an admin would see change:
toasts, state transitions, rows arriving over realtime, redirects to the
login page.  Each connected client (a WebSocket) subscribes and gets its
own asyncio.Queue.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, TypedDict

log = logging.getLogger("reservations.events")

EVENT_LOG_SIZE = 500


class DashboardEvent(TypedDict):
    type: str          # state | toast | reservations_loaded | reservation_inserted | reservation_updated | reservation_deleted | notification | redirect | realtime_status
    timestamp: float
    data: dict[str, Any]


class EventBroadcaster:
    """Event broadcaster using asyncio.Queue per subscriber."""

    def __init__(self, queue_size: int = 200) -> None:
        self._queue_size = queue_size
        self._subscribers: list[asyncio.Queue[DashboardEvent]] = []
        self._event_log: deque[DashboardEvent] = deque(maxlen=EVENT_LOG_SIZE)

    def subscribe(self) -> asyncio.Queue[DashboardEvent]:
        """Create a new subscriber queue and return it."""
        q: asyncio.Queue[DashboardEvent] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.append(q)
        log.info("Dashboard subscriber added (total: %d)", len(self._subscribers))
        return q

    def unsubscribe(self, q: asyncio.Queue[DashboardEvent]) -> None:
        """Remove a subscriber queue."""
        try:
            self._subscribers.remove(q)
        except ValueError:
            pass
        log.info("Dashboard subscriber removed (total: %d)", len(self._subscribers))

    def emit(self, event_type: str, data: dict[str, Any] | None = None) -> None:
        """Broadcast an event to all subscribers and append to the event log."""
        event: DashboardEvent = {
            "type": event_type,
            "timestamp": time.time(),
            "data": data or {},
        }
        self._event_log.append(event)

        for q in self._subscribers:
            try:
                q.put_nowait(event)
            except asyncio.QueueFull:
                # Drop oldest event to make room
                try:
                    q.get_nowait()
                    q.put_nowait(event)
                except (asyncio.QueueEmpty, asyncio.QueueFull):
                    pass

    def toast(self, level: str, message: str, description: str = "") -> None:
        """Transient user-facing notice (success | error | info)."""
        data = {"level": level, "message": message}
        if description:
            data["description"] = description
        self.emit("toast", data)

    @property
    def event_log(self) -> list[DashboardEvent]:
        return list(self._event_log)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
