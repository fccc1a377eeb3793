"""Webhook relay — forwards reservation change events to the automation URL.

The database trigger calls us once per row-level INSERT / UPDATE with::

    {"type": "INSERT" | "UPDATE", "record": {...new row...}, "old": {...}?}

Suppression rule for dashboard edits:
  1. A status edit from the dashboard sets ``manual_update`` on the row.
  2. The relay sees that UPDATE, clears the marker (service-role write)
     and forwards the event with ``manualUpdate: true``.
  3. The clearing write fires the trigger again.  That UPDATE changes
     nothing but the marker, so it is not forwarded.

Every other event is forwarded.  There is no retry here: redelivery, if
any, belongs to the trigger infrastructure.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from reservations.backends.base import ReservationBackend
from reservations.store import MANUAL_UPDATE_COLUMN

log = logging.getLogger("reservations.webhook")

# Columns whose change makes an UPDATE worth forwarding
FORWARDED_COLUMNS = ("name", "phone", "date", "time_slot", "status")


class RelayError(Exception):
    """The automation endpoint rejected the event or the marker could not be cleared."""


def build_payload(record: dict[str, Any], event_type: str, manual_update: bool) -> dict[str, Any]:
    """Normalized event sent to the automation endpoint."""
    return {
        "id": record.get("id"),
        "name": record.get("name"),
        "phone": record.get("phone"),
        "date": record.get("date"),
        "timeSlot": record.get("time_slot"),
        "status": record.get("status"),
        "createdAt": record.get("created_at"),
        "eventType": event_type,
        "manualUpdate": manual_update,
    }


def is_marker_echo(event_type: str, record: dict[str, Any], old: Optional[dict[str, Any]]) -> bool:
    """True for the UPDATE caused by the relay clearing its own marker."""
    if event_type != "UPDATE" or not isinstance(old, dict):
        return False
    if not old.get(MANUAL_UPDATE_COLUMN) or record.get(MANUAL_UPDATE_COLUMN):
        return False
    return all(old.get(col) == record.get(col) for col in FORWARDED_COLUMNS)


class WebhookRelay:
    """Stateless relay; one ``handle`` call per trigger invocation.

    Args:
        backend: Service-role backend used to clear the marker.  None
            disables clearing (marked updates then fail the invocation).
        webhook_url: Automation endpoint.
        timeout: Seconds for the outbound POST.
        transport: Optional httpx transport (tests use MockTransport).
    """

    def __init__(
        self,
        backend: ReservationBackend | None,
        webhook_url: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._backend = backend
        self._webhook_url = webhook_url
        self._timeout = timeout
        self._transport = transport

    async def handle(self, body: Any) -> tuple[int, dict[str, Any]]:
        """Process one invocation. Returns (HTTP status, JSON body)."""
        try:
            if not isinstance(body, dict):
                raise RelayError("Malformed webhook body: expected a JSON object")

            record = body.get("record")
            event_type = str(body.get("type") or "")
            old = body.get("old") or body.get("old_record")

            log.info("Webhook received %s event", event_type or "<untyped>")
            if not record:
                return 200, {"success": True, "message": "Nothing to process"}
            if not isinstance(record, dict):
                raise RelayError("Malformed webhook record: expected a JSON object")

            reservation_id = record.get("id")
            log.info("Processing %s event for reservation ID: %s", event_type, reservation_id)

            if event_type == "UPDATE" and isinstance(old, dict) and old.get("status") != record.get("status"):
                log.info("Status changed from %s to %s", old.get("status"), record.get("status"))

            if is_marker_echo(event_type, record, old):
                log.info("Marker-clear echo for %s, not forwarding", reservation_id)
                return 200, {"success": True, "message": "Manual update marker cleared"}

            manual = event_type == "UPDATE" and bool(record.get(MANUAL_UPDATE_COLUMN))
            if manual:
                await self._clear_marker(reservation_id)

            await self._forward(build_payload(record, event_type, manual))
            return 200, {"success": True}

        except Exception as e:
            log.error("Error processing webhook: %s", e)
            return 500, {"success": False, "error": str(e) or e.__class__.__name__}

    async def _clear_marker(self, reservation_id: Any) -> None:
        if self._backend is None:
            raise RelayError("Cannot clear manual_update: no service-role backend configured")
        log.info("Clearing manual_update flag for reservation %s", reservation_id)
        await self._backend.update_reservation(str(reservation_id), {MANUAL_UPDATE_COLUMN: None})

    async def _forward(self, payload: dict[str, Any]) -> None:
        log.info("Sending booking data to webhook: %s", self._webhook_url)
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            resp = await client.post(self._webhook_url, json=payload)
        if not resp.is_success:
            raise RelayError(f"Webhook error: {resp.status_code} {resp.text}")
        log.info("Successfully sent booking to webhook (%d)", resp.status_code)
