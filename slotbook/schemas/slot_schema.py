"""Slot catalog data models: weekdays, rooms, recurring templates and occurrences.

Remote rows carry optional nested fields under several possible names.
Each fallback is written down as an ordered list of field paths and
resolved with ``first_present``, so the policy is explicit and testable.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import IntEnum
from typing import Any, Mapping, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict

from slotbook.utils import first_present, parse_clock


class Weekday(IntEnum):
    """Sunday-first weekday key, matching the backend's ``weekDate`` integer."""

    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @classmethod
    def of(cls, value: date) -> "Weekday":
        return cls(value.isoweekday() % 7)

    @property
    def short_label(self) -> str:
        return WEEKDAY_SHORT_LABELS[self]


# Mon..Sun, the order weekday chips are shown in.
DISPLAY_ORDER: tuple[Weekday, ...] = (
    Weekday.MONDAY,
    Weekday.TUESDAY,
    Weekday.WEDNESDAY,
    Weekday.THURSDAY,
    Weekday.FRIDAY,
    Weekday.SATURDAY,
    Weekday.SUNDAY,
)

WEEKDAY_SHORT_LABELS: dict[int, str] = {
    0: "Sun", 1: "Mon", 2: "Tue", 3: "Wed", 4: "Thu", 5: "Fri", 6: "Sat",
}

ROOM_ID_FIELDS = ("roomId", "id")
ROOM_NAME_FIELDS = ("roomName", "name", "room.roomName")
FACILITY_NAME_FIELDS = ("facilityName", "facility.facilityName", "facility.name")
STAFF_NAME_FIELDS = ("staff.staffName", "staff.fullName", "staffName")
STAFF_ROLE_FIELDS = ("staff.staffRole", "staff.role", "staffRole")

TEMPLATE_SUBSCRIPTION_FIELDS = (
    "packageSubscriptionId",
    "studentPackageSubscriptionId",
    "packageSubscription.id",
)
BRANCH_ID_FIELDS = ("branch.id", "branchId")
BRANCH_NAME_FIELDS = ("branch.branchName", "branch.name", "branchName")
TIMEFRAME_ID_FIELDS = ("timeframe.id", "timeframeId")
TIMEFRAME_NAME_FIELDS = ("timeframe.name", "timeframeName")
START_TIME_FIELDS = ("timeframe.startTime", "startTime")
END_TIME_FIELDS = ("timeframe.endTime", "endTime")
SLOT_TYPE_ID_FIELDS = ("slotType.id", "slotTypeId")
SLOT_TYPE_NAME_FIELDS = ("slotType.name", "slotTypeName")
WEEKDAY_FIELDS = ("weekDate", "weekday")


class StaffInfo(BaseModel):
    """Staff member assigned to a room for a slot."""

    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    role: Optional[str] = None


class RoomOption(BaseModel):
    """A bookable room within a slot."""

    model_config = ConfigDict(frozen=True)

    room_id: str
    room_name: Optional[str] = None
    facility_name: Optional[str] = None
    staff: Optional[StaffInfo] = None

    @property
    def display_name(self) -> str:
        return self.room_name or "Room"

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Optional["RoomOption"]:
        """Build a room from a remote row; ``None`` when the row has no usable id."""
        room_id = first_present(row, ROOM_ID_FIELDS)
        if room_id is None:
            return None
        staff_name = first_present(row, STAFF_NAME_FIELDS)
        staff_role = first_present(row, STAFF_ROLE_FIELDS)
        staff = StaffInfo(name=staff_name, role=staff_role) if staff_name or staff_role else None
        return cls(
            room_id=str(room_id),
            room_name=first_present(row, ROOM_NAME_FIELDS),
            facility_name=first_present(row, FACILITY_NAME_FIELDS),
            staff=staff,
        )


class SlotTemplate(BaseModel):
    """A recurring weekly slot: one branch, one timeframe, one weekday."""

    model_config = ConfigDict(frozen=True)

    id: str
    branch_id: Optional[str] = None
    branch_name: str = ""
    timeframe_id: Optional[str] = None
    timeframe_name: str = ""
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    slot_type_id: Optional[str] = None
    slot_type_name: str = ""
    weekday: Weekday
    rooms: tuple[RoomOption, ...] = ()
    subscription_id: Optional[str] = None
    status: str = "available"

    @property
    def is_available(self) -> bool:
        return self.status.strip().lower() == "available"

    @property
    def start_minutes(self) -> Optional[int]:
        return parse_clock(self.start_time)

    @property
    def has_rooms(self) -> bool:
        return len(self.rooms) > 0

    def room(self, room_id: Optional[str]) -> Optional[RoomOption]:
        if room_id is None:
            return None
        return next((r for r in self.rooms if r.room_id == room_id), None)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SlotTemplate":
        """Parse a slot-source row.

        Raises:
            ValueError: If the row has no id or its weekday is not 0-6.
        """
        template_id = row.get("id")
        if not template_id:
            raise ValueError("Slot row has no id")
        raw_weekday = first_present(row, WEEKDAY_FIELDS)
        try:
            weekday = Weekday(int(raw_weekday))
        except (TypeError, ValueError):
            raise ValueError(f"Slot {template_id} has invalid weekday {raw_weekday!r}") from None

        rooms = []
        for room_row in row.get("rooms") or []:
            room = RoomOption.from_row(room_row)
            if room is not None:
                rooms.append(room)

        subscription_id = first_present(row, TEMPLATE_SUBSCRIPTION_FIELDS)
        return cls(
            id=str(template_id),
            branch_id=first_present(row, BRANCH_ID_FIELDS),
            branch_name=first_present(row, BRANCH_NAME_FIELDS) or "",
            timeframe_id=first_present(row, TIMEFRAME_ID_FIELDS),
            timeframe_name=first_present(row, TIMEFRAME_NAME_FIELDS) or "",
            start_time=first_present(row, START_TIME_FIELDS),
            end_time=first_present(row, END_TIME_FIELDS),
            slot_type_id=first_present(row, SLOT_TYPE_ID_FIELDS),
            slot_type_name=first_present(row, SLOT_TYPE_NAME_FIELDS) or "",
            weekday=weekday,
            rooms=tuple(rooms),
            subscription_id=str(subscription_id) if subscription_id else None,
            status=str(row.get("status") or "available"),
        )


class OccurrenceKey(NamedTuple):
    """Identity of one reservable unit."""

    template_id: str
    on: date


@dataclass(frozen=True)
class SlotOccurrence:
    """A template projected onto a concrete calendar date."""

    template: SlotTemplate = field(compare=False, hash=False)
    on: date
    template_id: str = field(init=False)

    def __post_init__(self) -> None:
        if Weekday.of(self.on) != self.template.weekday:
            raise ValueError(
                f"{self.on.isoformat()} is a {Weekday.of(self.on).name.title()}, "
                f"but slot {self.template.id} recurs on {self.template.weekday.name.title()}"
            )
        object.__setattr__(self, "template_id", self.template.id)

    @property
    def key(self) -> OccurrenceKey:
        return OccurrenceKey(self.template_id, self.on)


@dataclass
class GroupedSlot:
    """One branch+timeframe offered on several weekdays.

    Built by collapsing per-weekday templates for the recurring workflow;
    metadata comes from the first template seen.
    """

    branch_id: Optional[str]
    branch_name: str
    timeframe_id: Optional[str]
    timeframe_name: str
    start_time: Optional[str]
    end_time: Optional[str]
    slot_type_id: Optional[str]
    slot_type_name: str
    rooms: tuple[RoomOption, ...]
    weekdays: set[Weekday] = field(default_factory=set)
    templates: list[SlotTemplate] = field(default_factory=list)

    @property
    def start_minutes(self) -> Optional[int]:
        return parse_clock(self.start_time)

    def templates_for(self, weekdays: set[Weekday]) -> list[SlotTemplate]:
        """Templates of this group that recur on any of the given weekdays."""
        return [t for t in self.templates if t.weekday in weekdays]
