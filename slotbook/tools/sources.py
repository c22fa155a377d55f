"""
Interfaces of the remote collaborators the booking core depends on.

The backend owns the wire format; the core relies only on the semantics
below. ``SlotbookApiClient`` implements all four against the center's
REST API and ``tools.memory`` provides in-process versions for the demo
and tests.

Fetch methods return raw row mappings; parsing into schema models is
done by the consuming component so malformed rows can be skipped
individually. Every method raises ``RemoteServiceError`` on failure.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional, Protocol

from slotbook.schemas.booking_schema import BookingReceipt, BookingRequest, BulkBookingRequest

Row = dict[str, Any]


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar date range."""

    start: date
    end: date


@dataclass
class SlotPage:
    """One page of slot-source rows."""

    items: list[Row] = field(default_factory=list)
    has_next_page: bool = False


class SlotSource(Protocol):
    async def list_available_slots(
        self,
        student_id: str,
        page: int,
        page_size: int,
        date_range: Optional[DateRange] = None,
    ) -> SlotPage: ...

    async def list_rooms(self, template_id: str) -> list[Row]: ...


class ReservationSource(Protocol):
    async def list_reservations(self, student_id: str, upcoming_only: bool = False) -> list[Row]: ...


class SubscriptionSource(Protocol):
    async def list_subscriptions(self, student_id: str) -> list[Row]: ...

    async def list_package_totals(self, student_id: str) -> dict[str, int]: ...


class BookingSink(Protocol):
    async def book_one(self, request: BookingRequest) -> BookingReceipt: ...

    async def book_many(self, request: BulkBookingRequest) -> BookingReceipt: ...
