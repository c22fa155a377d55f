"""
Offline console demo: walks through the booking workflows without a backend.

Uses the real calendar, catalog, ledger, eligibility and orchestrator
over the in-memory backend. No network calls. Designed for live demo
walkthroughs.

Usage:
    python console_demo.py
    python console_demo.py --scenario bulk
    python console_demo.py --scenario partial
"""

import argparse
import asyncio
import uuid
from datetime import date, timedelta

from slotbook.config import settings
from slotbook.errors import BookingError
from slotbook.logging_context import set_session_id
from slotbook.schemas.booking_schema import BookingOutcome, OutcomeKind
from slotbook.schemas.slot_schema import SlotOccurrence, Weekday
from slotbook.scheduling import (
    BookingOrchestrator,
    BulkPlan,
    EligibilityResolver,
    ReservationLedger,
    SlotCatalog,
    WeekdayCalendar,
)
from slotbook.tools.memory import (
    InMemoryBackend,
    reservation_row,
    room_row,
    slot_row,
    subscription_row,
)
from slotbook.utils import format_clock, format_display

BLUE = "\033[94m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"

STUDENT_ID = "ST-DEMO"
SCENARIOS = ("alacarte", "bulk", "partial")


def seed_backend(today: date) -> InMemoryBackend:
    """Three weekly timeframes at one branch, one subscription, one cancelled booking."""
    backend = InMemoryBackend()
    for weekday in (Weekday.MONDAY, Weekday.WEDNESDAY, Weekday.FRIDAY):
        backend.slots.append(slot_row(
            f"MORNING-{weekday.short_label}", int(weekday), "08:00:00", "09:30:00",
            rooms=[room_row("R-ART", "Art room", staff_name="Ms. Lan"),
                   room_row("R-MUSIC", "Music room", staff_name="Mr. Duc")],
        ))
        backend.slots.append(slot_row(
            f"AFTERNOON-{weekday.short_label}", int(weekday), "15:00:00", "16:30:00",
            rooms=[room_row("R-GYM", "Gym", staff_name="Coach Minh")],
        ))
    backend.slots.append(slot_row("EVENING-Mon", 1, "18:00:00", "19:00:00", rooms=[]))
    backend.subscriptions[STUDENT_ID] = [
        subscription_row("SUB-1", "Term package 24 sessions", used=5),
    ]
    next_monday = WeekdayCalendar(today).date_for_weekday(1, Weekday.MONDAY)
    backend.reservations.append(
        reservation_row("AFTERNOON-Mon", next_monday, STUDENT_ID, status="Cancelled")
    )
    return backend


class ConsoleSession:
    """Runs one scripted booking session in the terminal."""

    def __init__(self, today: date) -> None:
        self.backend = seed_backend(today)
        self.calendar = WeekdayCalendar(today)
        self.orchestrator = BookingOrchestrator(
            STUDENT_ID,
            self.calendar,
            SlotCatalog(self.backend),
            ReservationLedger(self.backend),
            EligibilityResolver(self.backend),
            self.backend,
        )

    def say(self, text: str) -> None:
        print(f"{GREEN}{text}{RESET}")

    def system_log(self, text: str) -> None:
        print(f"{DIM}  >> {text}{RESET}")

    def show_outcome(self, outcome: BookingOutcome) -> None:
        colour = {OutcomeKind.SUCCESS: GREEN, OutcomeKind.PARTIAL: YELLOW}.get(outcome.kind, RED)
        print(f"{colour}{BOLD}[{outcome.kind.value}]{RESET} {colour}{outcome.message}{RESET}")

    def show_week(self, offset: int) -> None:
        week = self.calendar.week_of_offset(offset)
        print(f"\n{BOLD}Week {week.display_text}{RESET}")
        for weekday, templates in SlotCatalog.group_by_weekday(self.orchestrator.catalog.templates).items():
            if not templates:
                continue
            on = self.calendar.date_for_weekday(offset, weekday)
            print(f"  {BLUE}{weekday.short_label} {format_display(on)}{RESET}")
            for template in templates:
                check = self.orchestrator.classify(SlotOccurrence(template=template, on=on))
                rooms = ", ".join(r.display_name for r in template.rooms) or "no rooms"
                print(
                    f"    {format_clock(template.start_time)}-{format_clock(template.end_time)} "
                    f"{template.id:<16} {check.state.value:<20} {DIM}{rooms}{RESET}"
                )

    async def run(self, scenario: str) -> None:
        set_session_id(f"BS-{uuid.uuid4().hex[:6]}")
        print()
        print(f"{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  SLOTBOOK - Scenario: {scenario}{RESET}")
        print(f"{BOLD}  Client: {settings.client_name}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")

        await self.orchestrator.refresh()
        subscription = self.orchestrator.eligibility.default_subscription
        if subscription is not None:
            remaining = self.orchestrator.eligibility.remaining_entitlement(subscription)
            self.system_log(f"Package {subscription.package_name}: {remaining} sessions left")

        try:
            if scenario == "alacarte":
                await self._alacarte()
            elif scenario == "bulk":
                await self._bulk()
            else:
                await self._partial()
        except BookingError as exc:
            print(f"{RED}{BOLD}[{exc.kind}]{RESET} {RED}{exc.message}{RESET}")

        print(f"\n{BOLD}{'=' * 60}{RESET}")
        print(f"{BOLD}  Scenario '{scenario}' complete.{RESET}")
        print(f"{DIM}  Reservations on file: {len(self.orchestrator.ledger.reservations)}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")

    async def _alacarte(self) -> None:
        self.show_week(1)
        monday = self.calendar.date_for_weekday(1, Weekday.MONDAY)
        catalog = self.orchestrator.catalog

        self.say("\nChoosing rooms, then selecting every bookable Monday slot...")
        self.orchestrator.choose_room(SlotOccurrence(catalog.find("MORNING-Mon"), monday), "R-ART")
        self.orchestrator.choose_room(SlotOccurrence(catalog.find("AFTERNOON-Mon"), monday), "R-GYM")
        self.orchestrator.toggle_all(monday)
        for key in self.orchestrator.selection.keys():
            self.system_log(f"selected {key.template_id} on {format_display(key.on)}")

        self.say("Trying the evening slot, which has no rooms yet...")
        try:
            self.orchestrator.toggle(SlotOccurrence(catalog.find("EVENING-Mon"), monday))
        except BookingError as exc:
            self.system_log(f"refused: {exc.message}")

        outcome = await self.orchestrator.submit(parent_note="Please send photos")
        self.show_outcome(outcome)
        self.show_week(1)

    async def _bulk(self) -> None:
        groups = SlotCatalog.dedupe_by_branch_timeframe(self.orchestrator.catalog.templates)
        morning = groups[0]
        start = self.calendar.date_for_weekday(1, Weekday.MONDAY)
        plan = BulkPlan(
            slot=morning,
            start=start,
            end=start + timedelta(days=27),
            weekdays={Weekday.MONDAY, Weekday.WEDNESDAY},
            parent_note="Recurring mornings for the term",
        )
        self.say(
            f"\nRecurring {format_clock(morning.start_time)} slot, "
            f"{format_display(plan.start)} - {format_display(plan.end)}, Mon + Wed"
        )
        self.system_log(self.orchestrator.estimate_message(plan))
        outcome = await self.orchestrator.submit_bulk(plan)
        self.show_outcome(outcome)

    async def _partial(self) -> None:
        template = self.orchestrator.catalog.find("MORNING-Fri")
        dates = [self.calendar.date_for_weekday(offset, Weekday.FRIDAY) for offset in range(1, 5)]
        self.backend.failed_dates[dates[1]] = "Room is full on this date"
        self.say(f"\nSelecting {template.id} for the next four Fridays...")
        for on in dates:
            self.orchestrator.toggle(SlotOccurrence(template, on), room_id="R-MUSIC")
        outcome = await self.orchestrator.submit()
        self.show_outcome(outcome)
        for key in self.orchestrator.selection.keys():
            self.system_log(f"kept for retry: {key.template_id} on {format_display(key.on)}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Offline booking demo")
    parser.add_argument(
        "--scenario",
        choices=SCENARIOS,
        default="alacarte",
        help="Which booking workflow to play",
    )
    args = parser.parse_args()

    session = ConsoleSession(date.today())
    asyncio.run(session.run(args.scenario))


if __name__ == "__main__":
    main()
