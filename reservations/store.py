"""Reservation store client — create / list / update / delete against the backend.

Every operation catches failures at this boundary and returns a
``StoreResult``; nothing raises to the caller.  The update path is the
single write path for both the dashboard and the legacy HTTP endpoint.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from reservations.backends.base import ReservationBackend
from reservations.models.reservation import (
    Reservation,
    ReservationCreate,
    ReservationUpdate,
    validation_message,
)
from reservations.models.results import (
    INVALID,
    NOT_FOUND,
    UNAUTHENTICATED,
    StoreResult,
)

log = logging.getLogger("reservations.store")

NETWORK_ERROR = "Network error. Please try again."
MANUAL_UPDATE_COLUMN = "manual_update"


def redact_phone(value: str) -> str:
    """Mask a phone number for logging — keep the last 2 digits only."""
    if not value or len(value) <= 4:
        return "***"
    return "***" + value[-2:]


class ReservationStore:
    """CRUD over the reservations table.

    Args:
        backend: The hosted backend.
        require_session: When true, ``list``/``get``/``update``/``delete``
            refuse to run without a backend session (admin operations).
    """

    def __init__(self, backend: ReservationBackend, require_session: bool = True) -> None:
        self._backend = backend
        self._require_session = require_session

    async def _has_session(self) -> bool:
        if not self._require_session:
            return True
        try:
            return await self._backend.get_session() is not None
        except Exception as e:
            log.warning("Session check failed: %s", e)
            return False

    # ── Create ────────────────────────────────────────────────

    async def create(self, data: dict[str, Any]) -> StoreResult:
        """Insert a booking. Status is always Pending whatever the caller sent."""
        try:
            booking = ReservationCreate.model_validate(data)
        except ValidationError as e:
            return StoreResult.failed(validation_message(e), INVALID)

        log.info(
            "Creating reservation: name=%s phone=%s date=%s slot=%s",
            booking.name, redact_phone(booking.phone), booking.date, booking.time_slot,
        )
        try:
            row = await self._backend.insert_reservation(booking.to_record())
        except Exception as e:
            log.error("Error creating reservation: %s", e)
            return StoreResult.failed(f"Error: {e}")

        new_id = row.get("id")
        log.info("Reservation created: %s", new_id)
        return StoreResult(
            success=True,
            message="Reservation created successfully",
            id=None if new_id is None else str(new_id),
        )

    # ── Read ──────────────────────────────────────────────────

    async def list(self) -> StoreResult:
        """All reservations, newest first. Malformed rows are skipped."""
        if not await self._has_session():
            return StoreResult.failed("Not authenticated", UNAUTHENTICATED)

        try:
            rows = await self._backend.select_reservations()
        except Exception as e:
            log.error("Error fetching reservations: %s", e)
            return StoreResult.failed(str(e) or NETWORK_ERROR)

        reservations: list[Reservation] = []
        for row in rows:
            try:
                reservations.append(Reservation.from_record(row))
            except (ValidationError, AttributeError) as e:
                log.error("Skipping malformed reservation row %r: %s", row, e)

        log.info("Fetched %d reservations", len(reservations))
        return StoreResult(success=True, data=reservations)

    async def get(self, reservation_id: str) -> StoreResult:
        if not await self._has_session():
            return StoreResult.failed("Not authenticated", UNAUTHENTICATED)
        try:
            row = await self._backend.select_reservation(reservation_id)
        except Exception as e:
            log.error("Error fetching reservation %s: %s", reservation_id, e)
            return StoreResult.failed(str(e) or NETWORK_ERROR)
        if row is None:
            return StoreResult.failed("Reservation not found", NOT_FOUND)
        try:
            reservation = Reservation.from_record(row)
        except ValidationError as e:
            return StoreResult.failed(validation_message(e))
        return StoreResult(success=True, id=reservation.id, data=[reservation])

    # ── Update ────────────────────────────────────────────────

    async def update(self, reservation_id: str, fields: dict[str, Any]) -> StoreResult:
        """Partial update with read-back verification.

        A status change also sets the manual-update marker in the same
        write so the webhook relay knows the edit came from the dashboard.
        If the read-back shows a different status, the write is retried
        once; the retry's outcome is only logged.
        """
        try:
            update = ReservationUpdate.model_validate(fields)
        except ValidationError as e:
            message = validation_message(e)
            log.info("Rejected update for %s: %s", reservation_id, message)
            return StoreResult.failed(message, INVALID)
        if update.is_empty:
            return StoreResult.failed("No updates provided", INVALID)

        if not await self._has_session():
            return StoreResult.failed("Not authenticated", UNAUTHENTICATED)

        record = update.to_record()
        if update.status is not None:
            record[MANUAL_UPDATE_COLUMN] = True
            log.info(
                "Setting manual_update flag for reservation %s with status %s",
                reservation_id, update.status.value,
            )

        try:
            matched = await self._backend.update_reservation(reservation_id, record)
        except Exception as e:
            log.error("Error updating reservation %s: %s", reservation_id, e)
            return StoreResult.failed(str(e) or NETWORK_ERROR)

        if not matched:
            return StoreResult.failed("Reservation not found", NOT_FOUND)

        log.info("Reservation %s updated in the database", reservation_id)

        if update.status is not None:
            await self._verify_status(reservation_id, update.status.value, record)

        return StoreResult(success=True, message="Reservation updated successfully")

    async def _verify_status(
        self, reservation_id: str, expected: str, record: dict[str, Any]
    ) -> None:
        try:
            current = await self._backend.select_reservation(reservation_id)
        except Exception as e:
            log.warning("Error verifying update for %s: %s", reservation_id, e)
            return

        observed = current.get("status") if current else None
        if observed == expected:
            return

        log.warning(
            "Status verification failed for %s: expected %s, got %s. Retrying once.",
            reservation_id, expected, observed,
        )
        try:
            await self._backend.update_reservation(
                reservation_id, {**record, MANUAL_UPDATE_COLUMN: True}
            )
        except Exception as e:
            log.error("Retry update for %s failed: %s", reservation_id, e)
        else:
            log.info("Retry update for %s sent", reservation_id)

    # ── Delete ────────────────────────────────────────────────

    async def delete(self, reservation_id: str) -> bool:
        if not await self._has_session():
            log.warning("Refusing delete of %s without a session", reservation_id)
            return False
        try:
            await self._backend.delete_reservation(reservation_id)
        except Exception as e:
            log.error("Error deleting reservation %s: %s", reservation_id, e)
            return False
        log.info("Deleted reservation %s", reservation_id)
        return True
