"""
In-process backend for the console demo and tests.

Implements every source and sink interface over plain row dicts shaped
like the REST API's responses. Commits create Booked reservation rows,
so a refresh after booking sees the new state exactly as the real
backend would report it.
"""

import asyncio
import logging
import uuid
from collections import Counter
from datetime import date, timedelta
from typing import Any, Optional

from slotbook.errors import RemoteServiceError
from slotbook.schemas.booking_schema import (
    BookingItem,
    BookingReceipt,
    BookingRequest,
    BulkBookingRequest,
    FailedSlot,
)
from slotbook.schemas.slot_schema import Weekday
from slotbook.tools.sources import DateRange, Row, SlotPage
from slotbook.utils import format_ymd, to_date

logger = logging.getLogger(__name__)


def room_row(room_id: str, name: str = "", staff_name: Optional[str] = None) -> Row:
    row: Row = {"roomId": room_id, "roomName": name or f"Room {room_id}"}
    if staff_name:
        row["staff"] = {"staffName": staff_name, "staffRole": "Instructor"}
    return row


def slot_row(
    slot_id: str,
    weekday: int,
    start_time: str = "08:00:00",
    end_time: str = "09:30:00",
    rooms: Optional[list[Row]] = None,
    branch_id: str = "B1",
    timeframe_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
    status: str = "Available",
) -> Row:
    row: Row = {
        "id": slot_id,
        "weekDate": weekday,
        "status": status,
        "branch": {"id": branch_id, "branchName": f"Branch {branch_id}"},
        "timeframe": {
            "id": timeframe_id or f"TF-{start_time[:5]}",
            "name": f"{start_time[:5]}-{end_time[:5]}",
            "startTime": start_time,
            "endTime": end_time,
        },
        "slotType": {"id": "ST1", "name": "Activity"},
        "rooms": rooms if rooms is not None else [],
    }
    if subscription_id:
        row["packageSubscriptionId"] = subscription_id
    return row


def reservation_row(
    template_id: str,
    on: date,
    student_id: str,
    status: str = "Booked",
    room_id: Optional[str] = None,
) -> Row:
    return {
        "id": f"RS-{uuid.uuid4().hex[:8]}",
        "branchSlotId": template_id,
        "studentId": student_id,
        "date": format_ymd(on),
        "status": status,
        "roomId": room_id,
    }


def subscription_row(
    subscription_id: str,
    package_name: str = "Weekday 20 sessions",
    status: str = "Active",
    used: int = 0,
    **extra: Any,
) -> Row:
    row: Row = {
        "id": subscription_id,
        "packageName": package_name,
        "status": status,
        "usedSlot": used,
    }
    row.update(extra)
    return row


class InMemoryBackend:
    """Slot, reservation and subscription source plus booking sink in one object.

    ``failing`` names operations that raise ``RemoteServiceError``;
    ``failed_dates`` maps dates to the reason a commit reports for them, and
    ``failed_occurrences`` does the same for single (template id, date) pairs;
    ``gate``, when set, holds every fetch response in flight. The response
    is computed before the wait, so a released response shows the data as
    it stood when the call was made.
    """

    def __init__(self) -> None:
        self.slots: list[Row] = []
        self.rooms: dict[str, list[Row]] = {}
        self.reservations: list[Row] = []
        self.subscriptions: dict[str, list[Row]] = {}
        self.package_totals: dict[str, dict[str, int]] = {}
        self.failing: set[str] = set()
        self.failing_pages: set[int] = set()
        self.failed_dates: dict[date, str] = {}
        self.failed_occurrences: dict[tuple[str, date], str] = {}
        self.gate: Optional[asyncio.Event] = None
        self.calls: Counter[str] = Counter()
        self.requests: list[Any] = []

    def reset(self) -> None:
        """Clear all data, failures and counters."""
        self.__init__()

    def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        if operation in self.failing:
            raise RemoteServiceError(f"{operation} is unavailable", status_code=503)

    async def _deliver(self, response: Any) -> Any:
        if self.gate is not None:
            await self.gate.wait()
        return response

    # Slot source

    async def list_available_slots(
        self,
        student_id: str,
        page: int,
        page_size: int,
        date_range: Optional[DateRange] = None,
    ) -> SlotPage:
        self._enter("list_available_slots")
        if page in self.failing_pages:
            raise RemoteServiceError(f"page {page} failed", status_code=500)
        start = (page - 1) * page_size
        items = self.slots[start:start + page_size]
        return await self._deliver(
            SlotPage(items=list(items), has_next_page=start + page_size < len(self.slots))
        )

    async def list_rooms(self, template_id: str) -> list[Row]:
        self._enter("list_rooms")
        return await self._deliver(list(self.rooms.get(template_id, [])))

    # Reservation source

    async def list_reservations(self, student_id: str, upcoming_only: bool = False) -> list[Row]:
        self._enter("list_reservations")
        rows = [dict(r) for r in self.reservations if r.get("studentId") == student_id]
        if upcoming_only:
            today = date.today()
            rows = [r for r in rows if (to_date(r.get("date")) or today) >= today]
        return await self._deliver(rows)

    # Subscription source

    async def list_subscriptions(self, student_id: str) -> list[Row]:
        self._enter("list_subscriptions")
        return await self._deliver(list(self.subscriptions.get(student_id, [])))

    async def list_package_totals(self, student_id: str) -> dict[str, int]:
        self._enter("list_package_totals")
        return await self._deliver(dict(self.package_totals.get(student_id, {})))

    # Booking sink

    def _is_taken(self, template_id: str, on: date, student_id: str) -> bool:
        return any(
            r["branchSlotId"] == template_id
            and r["studentId"] == student_id
            and to_date(r["date"]) == on
            and str(r.get("status", "")).lower() != "cancelled"
            for r in self.reservations
        )

    def _commit(self, student_id: str, item: BookingItem, on: date) -> Optional[str]:
        """Create one reservation; returns the failure reason instead when it cannot."""
        if on in self.failed_dates:
            return self.failed_dates[on]
        if (item.template_id, on) in self.failed_occurrences:
            return self.failed_occurrences[(item.template_id, on)]
        if self._is_taken(item.template_id, on, student_id):
            return "Slot already booked"
        room_id = item.room_id
        if room_id is None:
            slot = next((s for s in self.slots if s["id"] == item.template_id), None)
            rooms = slot.get("rooms") if slot else None
            room_id = rooms[0]["roomId"] if rooms else None
        self.reservations.append(reservation_row(item.template_id, on, student_id, room_id=room_id))
        return None

    async def book_one(self, request: BookingRequest) -> BookingReceipt:
        self._enter("book_one")
        self.requests.append(request)
        item = BookingItem(template_id=request.template_id, room_id=request.room_id)
        reason = self._commit(request.student_id, item, request.date)
        if reason is not None:
            raise RemoteServiceError(reason, status_code=409)
        return BookingReceipt(message="Booked", success_count=1)

    def _expand(self, request: BulkBookingRequest) -> list[tuple[BookingItem, date]]:
        """Range x weekdays, each day booked on the sibling slot of the same branch and timeframe."""
        weekdays = set(request.weekdays or [])
        planned: dict[tuple[str, date], BookingItem] = {}
        day = request.start_date
        while day <= request.end_date:
            weekday = Weekday.of(day)
            if weekday in weekdays:
                for item in request.items:
                    slot = self._sibling(item.template_id, weekday)
                    if slot is not None:
                        planned.setdefault(
                            (slot["id"], day),
                            BookingItem(template_id=slot["id"], room_id=item.room_id),
                        )
            day += timedelta(days=1)
        return [(item, on) for (_, on), item in planned.items()]

    def _sibling(self, template_id: str, weekday: Weekday) -> Optional[Row]:
        slot = next((s for s in self.slots if s["id"] == template_id), None)
        if slot is None:
            return None
        if int(slot["weekDate"]) == weekday:
            return slot
        return next(
            (
                s for s in self.slots
                if int(s["weekDate"]) == weekday
                and s["branch"]["id"] == slot["branch"]["id"]
                and s["timeframe"]["id"] == slot["timeframe"]["id"]
            ),
            None,
        )

    async def book_many(self, request: BulkBookingRequest) -> BookingReceipt:
        self._enter("book_many")
        self.requests.append(request)
        if request.is_recurring:
            planned = self._expand(request)
        else:
            planned = [(item, item.date) for item in request.items]

        success = 0
        failed: list[FailedSlot] = []
        for item, on in planned:
            reason = self._commit(request.student_id, item, on)
            if reason is None:
                success += 1
            else:
                failed.append(FailedSlot(date=on, error=reason))
        logger.info("In-memory bulk booking: %d booked, %d failed", success, len(failed))
        return BookingReceipt(success_count=success, failed_slots=failed)
