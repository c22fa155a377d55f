"""Shared test fixtures and helpers."""

from datetime import date
from typing import Optional

import pytest

from slotbook.schemas.slot_schema import SlotOccurrence, SlotTemplate, Weekday
from slotbook.scheduling.calendar import WeekdayCalendar
from slotbook.scheduling.catalog import SlotCatalog
from slotbook.scheduling.eligibility import EligibilityResolver
from slotbook.scheduling.ledger import ReservationLedger
from slotbook.scheduling.orchestrator import BookingOrchestrator
from slotbook.tools.memory import (
    InMemoryBackend,
    reservation_row,
    room_row,
    slot_row,
    subscription_row,
)

STUDENT_ID = "ST-1"
TODAY = date(2024, 6, 5)  # a Wednesday; its week is 2024-06-03..2024-06-09
MONDAY = date(2024, 6, 3)


def make_template(
    template_id: str = "T1",
    weekday: Weekday = Weekday.MONDAY,
    rooms: tuple[str, ...] = ("R1",),
    start_time: str = "08:00:00",
    branch_id: str = "B1",
    timeframe_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
) -> SlotTemplate:
    """Helper to create a SlotTemplate through the same parser the catalog uses."""
    return SlotTemplate.from_row(
        slot_row(
            template_id,
            int(weekday),
            start_time=start_time,
            rooms=[room_row(r) for r in rooms],
            branch_id=branch_id,
            timeframe_id=timeframe_id,
            subscription_id=subscription_id,
        )
    )


def make_occurrence(template: SlotTemplate, on: date = MONDAY) -> SlotOccurrence:
    return SlotOccurrence(template=template, on=on)


def book(backend: InMemoryBackend, template_id: str, on: date, status: str = "Booked") -> None:
    """Helper to seed an existing reservation for the default student."""
    backend.reservations.append(reservation_row(template_id, on, STUDENT_ID, status=status))


@pytest.fixture
def backend():
    """Backend with one active subscription and four Monday slots (T4 has no rooms)."""
    memory = InMemoryBackend()
    memory.subscriptions[STUDENT_ID] = [subscription_row("S1")]
    memory.slots = [
        slot_row("T1", 1, start_time="08:00:00", rooms=[room_row("R1", staff_name="Lan")]),
        slot_row("T2", 1, start_time="10:00:00", rooms=[room_row("R2"), room_row("R3")]),
        slot_row("T3", 1, start_time="14:00:00", rooms=[room_row("R4")]),
        slot_row("T4", 1, start_time="16:00:00", rooms=[]),
        slot_row("T5", 3, start_time="08:00:00", rooms=[room_row("R1")]),
    ]
    return memory


@pytest.fixture
def calendar():
    return WeekdayCalendar(TODAY)


@pytest.fixture
def catalog(backend):
    return SlotCatalog(backend, page_size=2)


@pytest.fixture
def ledger(backend):
    return ReservationLedger(backend)


@pytest.fixture
def eligibility(backend):
    return EligibilityResolver(backend)


@pytest.fixture
def orchestrator(backend, calendar, catalog, ledger, eligibility):
    return BookingOrchestrator(STUDENT_ID, calendar, catalog, ledger, eligibility, backend)
