"""Backend abstractions and implementations."""

from .base import AuthSession, BackendError, ReservationBackend

__all__ = ["AuthSession", "BackendError", "ReservationBackend"]
