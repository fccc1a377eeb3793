"""Pydantic models for reservations and the edits an admin can make.

Rows in the hosted database use snake_case columns (``time_slot``,
``created_at``).  The JSON API and the dashboard use camelCase
(``timeSlot``, ``createdAt``).  Both spellings are accepted on input;
``to_api()`` emits camelCase and ``to_record()`` emits columns.
"""

from __future__ import annotations

import re
from datetime import date as date_type
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class ReservationStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    CANCELED = "Canceled"
    NOT_RESPONDING = "Not Responding"


STATUS_VALUES = frozenset(s.value for s in ReservationStatus)
TIME_SLOTS = ("8h00-11h00", "11h00-14h00", "14h00-16h00")

PHONE_PATTERN = re.compile(r"^\d{9,10}$", re.ASCII)
DATE_PATTERN = re.compile(r"^\d{2}/\d{2}/\d{4}$", re.ASCII)


def is_valid_status(value: Any) -> bool:
    value = getattr(value, "value", value)
    return isinstance(value, str) and value in STATUS_VALUES


def is_valid_phone(value: Any) -> bool:
    return isinstance(value, str) and bool(PHONE_PATTERN.match(value))


def is_valid_date(value: Any) -> bool:
    return isinstance(value, str) and bool(DATE_PATTERN.match(value))


def is_valid_time_slot(value: Any) -> bool:
    return value in TIME_SLOTS


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def validation_message(exc: ValidationError) -> str:
    """First human-readable message out of a pydantic ValidationError."""
    errors = exc.errors()
    if not errors:
        return "Invalid data"
    msg = errors[0].get("msg", "Invalid data")
    return msg.removeprefix("Value error, ")


class Reservation(BaseModel):
    """A booking as held by the dashboard."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    phone: str = ""
    date: str = ""  # DD/MM/YYYY
    time_slot: str = Field(default="", alias="timeSlot")
    status: ReservationStatus
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        # Legacy rows use integer ids
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("name", "phone", "date", "time_slot", mode="before")
    @classmethod
    def _null_text(cls, value: Any) -> Any:
        return "" if value is None else value

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Reservation":
        """Build from a database row. Raises ValidationError on a bad row."""
        return cls.model_validate({
            "id": record.get("id"),
            "name": record.get("name"),
            "phone": record.get("phone"),
            "date": record.get("date"),
            "time_slot": record.get("time_slot"),
            "status": record.get("status"),
            "created_at": record.get("created_at"),
            "updated_at": record.get("updated_at"),
        })

    def to_api(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ReservationCreate(BaseModel):
    """What the public booking form submits. Status is never accepted."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    phone: str
    date: str
    time_slot: str = Field(alias="timeSlot")

    def to_record(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "phone": self.phone,
            "date": self.date,
            "time_slot": self.time_slot,
            "status": ReservationStatus.PENDING.value,
        }


class ReservationUpdate(BaseModel):
    """Partial edit from the dashboard or the legacy endpoint.

    Blank values count as "not provided".  Fields are validated in
    declaration order so the first reported error matches what an admin
    would fix first.
    """

    model_config = ConfigDict(populate_by_name=True)

    status: Optional[ReservationStatus] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    date: Optional[str] = None
    time_slot: Optional[str] = Field(default=None, alias="timeSlot")

    @field_validator("status", mode="before")
    @classmethod
    def _check_status(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        if value is not None and not is_valid_status(value):
            raise ValueError("Invalid status value")
        return value

    @field_validator("name", mode="before")
    @classmethod
    def _check_name(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("phone", mode="before")
    @classmethod
    def _check_phone(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        if value is not None and not is_valid_phone(value):
            raise ValueError("Invalid phone number format")
        return value

    @field_validator("date", mode="before")
    @classmethod
    def _check_date(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        if value is not None and not is_valid_date(value):
            raise ValueError("Invalid date format. Use DD/MM/YYYY")
        return value

    @field_validator("time_slot", mode="before")
    @classmethod
    def _check_time_slot(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        if value is not None and not is_valid_time_slot(value):
            raise ValueError("Invalid time slot")
        return value

    @property
    def is_empty(self) -> bool:
        return not self.changes()

    def changes(self) -> dict[str, Any]:
        """Provided fields keyed by model attribute name."""
        return self.model_dump(exclude_none=True)

    def to_record(self) -> dict[str, Any]:
        """Provided fields keyed by database column."""
        return self.model_dump(mode="json", exclude_none=True)


# ── Confirmation page date ─────────────────────────────────────────

_FR_WEEKDAYS = ("lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi", "dimanche")
_FR_MONTHS = (
    "janvier", "février", "mars", "avril", "mai", "juin",
    "juillet", "août", "septembre", "octobre", "novembre", "décembre",
)


def format_display_date(value: str) -> str:
    """``01/06/2025`` → ``dimanche 1 juin 2025``. Unparseable input is returned as-is."""
    if not value:
        return ""
    try:
        day, month, year = (int(part) for part in value.split("/"))
        d = date_type(year, month, day)
    except ValueError:
        return value
    return f"{_FR_WEEKDAYS[d.weekday()]} {d.day} {_FR_MONTHS[d.month - 1]} {d.year}"
