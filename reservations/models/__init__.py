"""Data models for the reservations service."""

from .reservation import (
    Reservation,
    ReservationCreate,
    ReservationStatus,
    ReservationUpdate,
    TIME_SLOTS,
)
from .results import StoreResult

__all__ = [
    "Reservation",
    "ReservationCreate",
    "ReservationStatus",
    "ReservationUpdate",
    "StoreResult",
    "TIME_SLOTS",
]
