"""Push notification for new bookings.

Posts a small JSON message to a push gateway (ntfy, a web-push relay,
etc.).  Delivery is out of our hands; callers treat every failure as
non-fatal.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from reservations.models.reservation import Reservation

log = logging.getLogger("reservations.notifications")


class PushNotifier:
    """Best-effort push sender. An empty URL disables it."""

    def __init__(
        self,
        url: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self._url)

    @staticmethod
    def build_message(reservation: Reservation) -> dict[str, Any]:
        return {
            "title": "New reservation",
            "body": f"{reservation.name} booked {reservation.date} ({reservation.time_slot})",
            "reservation": {
                "name": reservation.name,
                "phone": reservation.phone,
                "date": reservation.date,
                "timeSlot": reservation.time_slot,
            },
        }

    async def send(self, reservation: Reservation) -> bool:
        """POST the notification. Raises httpx errors on failure."""
        if not self.enabled:
            log.debug("Push notifications disabled, skipping %s", reservation.id)
            return False

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            resp = await client.post(self._url, json=self.build_message(reservation))
            resp.raise_for_status()

        log.info("Push notification sent for reservation %s", reservation.id)
        return True
