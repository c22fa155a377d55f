"""Booking request, receipt, and outcome data models."""

import datetime as dt
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, model_validator

from slotbook.schemas.slot_schema import Weekday


class BookingItem(BaseModel):
    """One slot to reserve. ``date`` is absent when the server expands a range."""

    template_id: str = Field(serialization_alias="branchSlotId")
    room_id: Optional[str] = Field(default=None, serialization_alias="roomId")
    date: Optional[dt.date] = None
    parent_note: Optional[str] = Field(default=None, serialization_alias="parentNote")


class BookingRequest(BaseModel):
    """Commit payload for a single occurrence."""

    student_id: str = Field(serialization_alias="studentId")
    subscription_id: str = Field(serialization_alias="packageSubscriptionId")
    template_id: str = Field(serialization_alias="branchSlotId")
    room_id: str = Field(serialization_alias="roomId")
    date: dt.date
    parent_note: Optional[str] = Field(default=None, serialization_alias="parentNote")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class BulkBookingRequest(BaseModel):
    """Commit payload for many occurrences sharing one subscription.

    Two forms: enumerated (every item carries its own date) or recurring
    (items are undated and ``start_date``/``end_date``/``weekdays`` describe
    the range the server expands).
    """

    student_id: str = Field(serialization_alias="studentId")
    subscription_id: str = Field(serialization_alias="packageSubscriptionId")
    items: list[BookingItem] = Field(min_length=1)
    start_date: Optional[dt.date] = Field(default=None, serialization_alias="startDate")
    end_date: Optional[dt.date] = Field(default=None, serialization_alias="endDate")
    weekdays: Optional[list[Weekday]] = Field(default=None, serialization_alias="weekDates")
    parent_note: Optional[str] = Field(default=None, serialization_alias="parentNote")

    @model_validator(mode="after")
    def _check_form(self) -> "BulkBookingRequest":
        dated = [item.date is not None for item in self.items]
        if self.is_recurring:
            if self.start_date is None or self.end_date is None or not self.weekdays:
                raise ValueError("Recurring requests need start_date, end_date and weekdays")
            if any(dated):
                raise ValueError("Recurring requests must not enumerate item dates")
        elif not all(dated):
            raise ValueError("Enumerated requests need a date on every item")
        return self

    @property
    def is_recurring(self) -> bool:
        return self.start_date is not None or self.end_date is not None or bool(self.weekdays)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class FailedSlot(BaseModel):
    """A date the server could not book, with its reason verbatim.

    ``date`` is None when the server's date could not be read; the text it
    sent is kept in ``raw_date`` and the failure still counts.
    """

    date: Optional[dt.date] = None
    raw_date: Optional[str] = None
    error: str

    @property
    def when(self) -> Union[dt.date, str]:
        return self.date if self.date is not None else (self.raw_date or "unknown date")


class BookingReceipt(BaseModel):
    """What the booking sink reported back for a commit."""

    message: Optional[str] = None
    success_count: Optional[int] = None
    failed_slots: list[FailedSlot] = Field(default_factory=list)


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class BookingOutcome(BaseModel):
    """Result of a commit. Partial success is an expected, first-class result."""

    success_count: int
    failed_slots: list[FailedSlot] = Field(default_factory=list)
    message: Optional[str] = None

    @property
    def kind(self) -> OutcomeKind:
        if not self.failed_slots:
            return OutcomeKind.SUCCESS
        if self.success_count > 0:
            return OutcomeKind.PARTIAL
        return OutcomeKind.FAILED

    @property
    def failed_dates(self) -> set[dt.date]:
        return {f.date for f in self.failed_slots if f.date is not None}

    @property
    def has_undated_failures(self) -> bool:
        return any(f.date is None for f in self.failed_slots)
