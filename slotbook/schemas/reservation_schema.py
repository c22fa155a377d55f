"""Reservation records read from the backend."""

import datetime as dt
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from slotbook.utils import first_present, to_date


class ReservationStatus(str, Enum):
    BOOKED = "Booked"
    CANCELLED = "Cancelled"
    COMPLETED = "Completed"
    NO_SHOW = "NoShow"
    RESCHEDULED = "Rescheduled"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "ReservationStatus":
        """Case-insensitive status parsing. Unrecognized values map to UNKNOWN."""
        normalized = (raw or "").strip().lower().replace("_", "").replace("-", "").replace(" ", "")
        return _STATUS_ALIASES.get(normalized, cls.UNKNOWN)


_STATUS_ALIASES: dict[str, ReservationStatus] = {
    "booked": ReservationStatus.BOOKED,
    "confirmed": ReservationStatus.BOOKED,
    "active": ReservationStatus.BOOKED,
    "cancelled": ReservationStatus.CANCELLED,
    "canceled": ReservationStatus.CANCELLED,
    "completed": ReservationStatus.COMPLETED,
    "noshow": ReservationStatus.NO_SHOW,
    "rescheduled": ReservationStatus.RESCHEDULED,
}

TEMPLATE_ID_FIELDS = ("branchSlotId", "templateId", "branchSlot.id")
ROOM_ID_FIELDS = ("roomId", "room.id")


class Reservation(BaseModel):
    """A student's reservation of one slot occurrence."""

    model_config = ConfigDict(frozen=True)

    id: str
    template_id: str
    student_id: str
    date: dt.date
    status: ReservationStatus
    room_id: Optional[str] = None
    parent_note: Optional[str] = None

    @property
    def is_active(self) -> bool:
        """Anything but Cancelled holds the occurrence, including NoShow and Rescheduled."""
        return self.status != ReservationStatus.CANCELLED

    @classmethod
    def from_row(cls, row: Mapping[str, Any], student_id: Optional[str] = None) -> "Reservation":
        """Parse a reservation-source row.

        Raises:
            ValueError: If id, slot id, or date is missing.
        """
        reservation_id = row.get("id")
        template_id = first_present(row, TEMPLATE_ID_FIELDS)
        on = to_date(row.get("date"))
        if not reservation_id or not template_id or on is None:
            raise ValueError(f"Reservation row is incomplete: {dict(row)!r}")
        return cls(
            id=str(reservation_id),
            template_id=str(template_id),
            student_id=str(row.get("studentId") or student_id or ""),
            date=on,
            status=ReservationStatus.parse(row.get("status")),
            room_id=first_present(row, ROOM_ID_FIELDS),
            parent_note=row.get("parentNote"),
        )
