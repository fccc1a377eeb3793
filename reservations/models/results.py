"""Uniform result shapes returned across the store and auth boundaries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from .reservation import Reservation

# Error categories carried by failed results
INVALID = "invalid"
NOT_FOUND = "not_found"
UNAUTHENTICATED = "unauthenticated"
BACKEND = "backend"


@dataclass
class StoreResult:
    """Outcome of a store operation. Never raised, always returned."""

    success: bool
    message: str = ""
    id: Optional[str] = None
    data: Optional[list[Reservation]] = None
    error: Optional[str] = None

    @classmethod
    def failed(cls, message: str, error: str = BACKEND) -> "StoreResult":
        return cls(success=False, message=message, error=error)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"success": self.success}
        if self.message:
            d["message"] = self.message
        if self.id is not None:
            d["id"] = self.id
        if self.data is not None:
            d["data"] = [r.to_api() for r in self.data]
        return d
