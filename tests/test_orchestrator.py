"""Tests for the booking session: selection, commits, refreshes and recurring bookings."""

import asyncio
from datetime import date, timedelta

import pytest

from slotbook.errors import (
    BookingConflictError,
    ConflictReason,
    RemoteServiceError,
    SelectionValidationError,
    ValidationReason,
)
from slotbook.schemas.booking_schema import (
    BookingReceipt,
    BulkBookingRequest,
    FailedSlot,
    OutcomeKind,
)
from slotbook.schemas.slot_schema import SlotOccurrence, Weekday
from slotbook.scheduling.catalog import SlotCatalog
from slotbook.scheduling.conflicts import SlotState
from slotbook.scheduling.orchestrator import BookingOrchestrator, BulkPlan, SessionGuard
from slotbook.tools.memory import room_row, slot_row
from tests.conftest import MONDAY, STUDENT_ID, book


def occurrence_of(orchestrator: BookingOrchestrator, template_id: str, on: date = MONDAY):
    return SlotOccurrence(template=orchestrator.catalog.find(template_id), on=on)


def mondays(count: int) -> list[date]:
    return [MONDAY + timedelta(weeks=i) for i in range(count)]


async def until(condition) -> None:
    """Yield to the event loop until ``condition()`` holds."""
    for _ in range(100):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never held")


class TestSessionGuard:
    def test_newer_token_invalidates_older(self):
        guard = SessionGuard()
        first = guard.begin()
        second = guard.begin()
        assert not guard.is_current(first)
        assert guard.is_current(second)

    def test_abandon_invalidates_everything(self):
        guard = SessionGuard()
        token = guard.begin()
        guard.abandon()
        assert not guard.is_current(token)
        assert not guard.is_current(guard.begin())


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_loads_all_three_and_settles(self, backend, orchestrator):
        assert await orchestrator.refresh() is True
        assert orchestrator.settled
        assert len(orchestrator.catalog.templates) == 5
        assert orchestrator.eligibility.default_subscription_id == "S1"
        assert backend.calls["list_reservations"] == 1

    @pytest.mark.asyncio
    async def test_late_results_after_abandon_are_discarded(self, backend, orchestrator):
        book(backend, "T1", MONDAY)
        backend.gate = asyncio.Event()
        task = asyncio.create_task(orchestrator.refresh())
        await until(lambda: backend.calls["list_reservations"] == 1)
        orchestrator.abandon()
        backend.gate.set()
        assert await task is False
        assert not orchestrator.settled
        assert orchestrator.catalog.templates == []
        assert orchestrator.ledger.reservations == []
        assert orchestrator.eligibility.subscriptions == []

    @pytest.mark.asyncio
    async def test_superseded_refresh_is_discarded(self, backend, orchestrator):
        backend.gate = asyncio.Event()
        first = asyncio.create_task(orchestrator.refresh())
        await asyncio.sleep(0)
        second = asyncio.create_task(orchestrator.refresh())
        await asyncio.sleep(0)
        backend.gate.set()
        assert await first is False
        assert await second is True
        assert orchestrator.settled

    @pytest.mark.asyncio
    async def test_older_response_never_overwrites_newer_state(self, backend, orchestrator):
        held = asyncio.Event()
        backend.gate = held
        first = asyncio.create_task(orchestrator.refresh())
        await until(lambda: all(
            backend.calls[name] == 1
            for name in ("list_available_slots", "list_reservations", "list_subscriptions")
        ))

        backend.gate = None
        book(backend, "T1", MONDAY)
        assert await orchestrator.refresh() is True

        held.set()
        assert await first is False
        assert orchestrator.settled
        assert len(orchestrator.ledger.reservations) == 1
        occurrence = occurrence_of(orchestrator, "T1")
        assert orchestrator.classify(occurrence).state == SlotState.ALREADY_BOOKED
        with pytest.raises(BookingConflictError) as exc_info:
            orchestrator.toggle(occurrence, room_id="R1")
        assert exc_info.value.reason == ConflictReason.ALREADY_BOOKED

    @pytest.mark.asyncio
    async def test_unknown_history_holds_bookings(self, backend, orchestrator):
        book(backend, "T1", MONDAY)
        backend.failing.add("list_reservations")
        assert await orchestrator.refresh() is True
        assert not orchestrator.settled
        assert orchestrator.ledger.last_error == "list_reservations is unavailable"

        occurrence = occurrence_of(orchestrator, "T1")
        with pytest.raises(RemoteServiceError, match="list_reservations is unavailable"):
            orchestrator.toggle(occurrence, room_id="R1")
        with pytest.raises(RemoteServiceError):
            orchestrator.toggle_all(MONDAY)
        with pytest.raises(RemoteServiceError):
            await orchestrator.book_occurrence(occurrence, room_id="R1")
        assert len(orchestrator.selection) == 0
        assert backend.calls["book_one"] == 0

        backend.failing.clear()
        assert await orchestrator.refresh() is True
        assert orchestrator.settled
        with pytest.raises(BookingConflictError) as exc_info:
            orchestrator.toggle(occurrence, room_id="R1")
        assert exc_info.value.reason == ConflictReason.ALREADY_BOOKED

    @pytest.mark.asyncio
    async def test_missing_student(self, calendar, catalog, ledger, eligibility, backend):
        orchestrator = BookingOrchestrator(None, calendar, catalog, ledger, eligibility, backend)
        with pytest.raises(SelectionValidationError) as exc_info:
            await orchestrator.refresh()
        assert exc_info.value.reason == ValidationReason.MISSING_STUDENT


class TestSelection:
    @pytest.mark.asyncio
    async def test_toggle_selects_and_deselects(self, orchestrator):
        await orchestrator.refresh()
        occurrence = occurrence_of(orchestrator, "T1")
        assert orchestrator.toggle(occurrence, room_id="R1") is True
        assert orchestrator.selection.get(occurrence.key).room_id == "R1"
        assert orchestrator.toggle(occurrence) is False
        assert len(orchestrator.selection) == 0

    @pytest.mark.asyncio
    async def test_toggle_without_room_is_refused(self, orchestrator):
        await orchestrator.refresh()
        with pytest.raises(BookingConflictError) as exc_info:
            orchestrator.toggle(occurrence_of(orchestrator, "T2"))
        assert exc_info.value.reason == ConflictReason.NO_ROOM_CHOSEN
        with pytest.raises(BookingConflictError) as exc_info:
            orchestrator.toggle(occurrence_of(orchestrator, "T4"))
        assert exc_info.value.reason == ConflictReason.NO_ROOMS_AVAILABLE

    @pytest.mark.asyncio
    async def test_choose_room_rejects_unknown_room(self, orchestrator):
        await orchestrator.refresh()
        with pytest.raises(SelectionValidationError) as exc_info:
            orchestrator.choose_room(occurrence_of(orchestrator, "T2"), "R1")
        assert exc_info.value.reason == ValidationReason.EMPTY_ROOM_SELECTION

    @pytest.mark.asyncio
    async def test_booked_occurrence_cannot_be_selected(self, backend, orchestrator):
        book(backend, "T1", MONDAY)
        await orchestrator.refresh()
        with pytest.raises(BookingConflictError) as exc_info:
            orchestrator.toggle(occurrence_of(orchestrator, "T1"), room_id="R1")
        assert exc_info.value.reason == ConflictReason.ALREADY_BOOKED

    @pytest.mark.asyncio
    async def test_reopened_occurrence_can_be_selected(self, backend, orchestrator):
        book(backend, "T2", MONDAY, status="Cancelled")
        await orchestrator.refresh()
        occurrence = occurrence_of(orchestrator, "T2")
        assert orchestrator.classify(occurrence).state == SlotState.REOPENED
        assert orchestrator.toggle(occurrence, room_id="R3") is True

    @pytest.mark.asyncio
    async def test_toggle_all_selects_then_clears(self, backend, orchestrator):
        book(backend, "T3", MONDAY)
        await orchestrator.refresh()
        for template_id, room_id in [("T1", "R1"), ("T2", "R2"), ("T3", "R4")]:
            orchestrator.choose_room(occurrence_of(orchestrator, template_id), room_id)

        assert orchestrator.toggle_all(MONDAY) is True
        assert [k.template_id for k in orchestrator.selection.keys()] == ["T1", "T2"]

        assert orchestrator.toggle_all(MONDAY) is False
        assert len(orchestrator.selection) == 0

    @pytest.mark.asyncio
    async def test_toggle_all_completes_a_partial_selection(self, orchestrator):
        await orchestrator.refresh()
        orchestrator.toggle(occurrence_of(orchestrator, "T2"), room_id="R2")
        orchestrator.choose_room(occurrence_of(orchestrator, "T1"), "R1")
        assert orchestrator.toggle_all(MONDAY) is True
        assert {k.template_id for k in orchestrator.selection.keys()} == {"T1", "T2"}

    @pytest.mark.asyncio
    async def test_toggle_all_with_nothing_selectable(self, orchestrator):
        await orchestrator.refresh()
        assert orchestrator.toggle_all(MONDAY + timedelta(days=1)) is False


class TestSubmit:
    @pytest.mark.asyncio
    async def test_empty_selection(self, orchestrator):
        await orchestrator.refresh()
        with pytest.raises(SelectionValidationError) as exc_info:
            await orchestrator.submit()
        assert exc_info.value.reason == ValidationReason.EMPTY_SELECTION

    @pytest.mark.asyncio
    async def test_single_booking_commits_and_refreshes(self, backend, orchestrator):
        await orchestrator.refresh()
        occurrence = occurrence_of(orchestrator, "T1")
        orchestrator.toggle(occurrence, room_id="R1")

        outcome = await orchestrator.submit(parent_note="  Allergic to peanuts  ")

        assert outcome.kind == OutcomeKind.SUCCESS
        assert backend.calls["book_one"] == 1
        request = backend.requests[0]
        assert request.to_payload() == {
            "studentId": STUDENT_ID,
            "packageSubscriptionId": "S1",
            "branchSlotId": "T1",
            "roomId": "R1",
            "date": "2024-06-03",
            "parentNote": "Allergic to peanuts",
        }
        assert len(orchestrator.selection) == 0
        assert orchestrator.settled
        assert orchestrator.classify(occurrence).state == SlotState.ALREADY_BOOKED

    @pytest.mark.asyncio
    async def test_partial_success_keeps_failed_entry(self, backend, orchestrator):
        await orchestrator.refresh()
        for on in mondays(4):
            orchestrator.toggle(occurrence_of(orchestrator, "T1", on), room_id="R1")
        backend.failed_dates[date(2024, 6, 10)] = "Room full"

        outcome = await orchestrator.submit()

        assert outcome.kind == OutcomeKind.PARTIAL
        assert outcome.success_count == 3
        assert [(f.date, f.error) for f in outcome.failed_slots] == [(date(2024, 6, 10), "Room full")]
        assert "10/06/2024: Room full" in outcome.message
        assert orchestrator.selection.keys() == [("T1", date(2024, 6, 10))]
        assert isinstance(backend.requests[0], BulkBookingRequest)
        assert not backend.requests[0].is_recurring

    @pytest.mark.asyncio
    async def test_all_failed(self, backend, orchestrator):
        await orchestrator.refresh()
        for on in mondays(2):
            orchestrator.toggle(occurrence_of(orchestrator, "T1", on), room_id="R1")
            backend.failed_dates[on] = "Closed"
        outcome = await orchestrator.submit()
        assert outcome.kind == OutcomeKind.FAILED
        assert len(orchestrator.selection) == 2

    @pytest.mark.asyncio
    async def test_same_date_partial_keeps_only_the_failed_entry(self, backend, orchestrator):
        await orchestrator.refresh()
        orchestrator.toggle(occurrence_of(orchestrator, "T1"), room_id="R1")
        orchestrator.toggle(occurrence_of(orchestrator, "T3"), room_id="R4")
        backend.failed_occurrences[("T3", MONDAY)] = "Room full"

        outcome = await orchestrator.submit()

        assert outcome.kind == OutcomeKind.PARTIAL
        assert outcome.success_count == 1
        assert orchestrator.selection.keys() == [("T3", MONDAY)]

        backend.failed_occurrences.clear()
        retry = await orchestrator.submit()
        assert retry.kind == OutcomeKind.SUCCESS
        assert backend.requests[-1].template_id == "T3"
        assert len(orchestrator.selection) == 0

    @pytest.mark.asyncio
    async def test_undated_failure_keeps_entries_until_the_ledger_confirms(
        self, backend, orchestrator, monkeypatch
    ):
        await orchestrator.refresh()
        orchestrator.toggle(occurrence_of(orchestrator, "T1"), room_id="R1")
        orchestrator.toggle(occurrence_of(orchestrator, "T3"), room_id="R4")

        async def book_many(request):
            book(backend, "T1", MONDAY)
            return BookingReceipt(
                success_count=1,
                failed_slots=[FailedSlot(raw_date="Mon 3rd", error="Room full")],
            )

        monkeypatch.setattr(backend, "book_many", book_many)
        outcome = await orchestrator.submit()

        assert outcome.kind == OutcomeKind.PARTIAL
        assert "Mon 3rd: Room full" in outcome.message
        assert orchestrator.selection.keys() == [("T3", MONDAY)]

    @pytest.mark.asyncio
    async def test_mixed_subscriptions_make_no_commit(self, backend, orchestrator):
        backend.slots.append(slot_row("T6", 1, rooms=[room_row("R1")], subscription_id="S1"))
        backend.slots.append(slot_row("T7", 1, rooms=[room_row("R1")], subscription_id="S2"))
        await orchestrator.refresh()
        orchestrator.toggle(occurrence_of(orchestrator, "T6"), room_id="R1")
        orchestrator.toggle(occurrence_of(orchestrator, "T7"), room_id="R1")

        with pytest.raises(BookingConflictError) as exc_info:
            await orchestrator.submit()
        assert exc_info.value.reason == ConflictReason.MIXED_SUBSCRIPTIONS
        assert backend.calls["book_one"] == 0
        assert backend.calls["book_many"] == 0
        assert len(orchestrator.selection) == 2

    @pytest.mark.asyncio
    async def test_submit_rechecks_the_ledger(self, backend, orchestrator):
        await orchestrator.refresh()
        orchestrator.toggle(occurrence_of(orchestrator, "T1"), room_id="R1")
        book(backend, "T1", MONDAY)
        await orchestrator.ledger.load(STUDENT_ID)

        with pytest.raises(BookingConflictError) as exc_info:
            await orchestrator.submit()
        assert exc_info.value.reason == ConflictReason.ALREADY_BOOKED
        assert backend.calls["book_one"] == 0

    @pytest.mark.asyncio
    async def test_remote_failure_keeps_selection(self, backend, orchestrator):
        await orchestrator.refresh()
        orchestrator.toggle(occurrence_of(orchestrator, "T1"), room_id="R1")
        backend.failing.add("book_one")
        with pytest.raises(RemoteServiceError):
            await orchestrator.submit()
        assert len(orchestrator.selection) == 1

    @pytest.mark.asyncio
    async def test_note_too_long(self, orchestrator):
        await orchestrator.refresh()
        orchestrator.toggle(occurrence_of(orchestrator, "T1"), room_id="R1")
        with pytest.raises(SelectionValidationError) as exc_info:
            await orchestrator.submit(parent_note="x" * 1001)
        assert exc_info.value.reason == ValidationReason.NOTE_TOO_LONG

    @pytest.mark.asyncio
    async def test_book_occurrence_directly(self, backend, orchestrator):
        await orchestrator.refresh()
        outcome = await orchestrator.book_occurrence(
            occurrence_of(orchestrator, "T2"), room_id="R3", parent_note="   "
        )
        assert outcome.success_count == 1
        assert "parentNote" not in backend.requests[0].to_payload()
        assert backend.reservations[0]["roomId"] == "R3"


class TestRecurring:
    async def grouped(self, orchestrator):
        await orchestrator.refresh()
        groups = SlotCatalog.dedupe_by_branch_timeframe(orchestrator.catalog.templates)
        return next(g for g in groups if g.weekdays == {Weekday.MONDAY, Weekday.WEDNESDAY})

    @pytest.mark.asyncio
    async def test_estimate_two_mondays(self, orchestrator):
        await orchestrator.refresh()
        plan = BulkPlan(
            slot=orchestrator.catalog.find("T1"),
            start=date(2024, 6, 3),
            end=date(2024, 6, 16),
            weekdays={Weekday.MONDAY},
        )
        assert orchestrator.estimate(plan) == 2
        assert orchestrator.estimate_message(plan) == "This will create 2 slots."

    @pytest.mark.asyncio
    async def test_submit_sends_range_not_dates(self, backend, orchestrator):
        group = await self.grouped(orchestrator)
        plan = BulkPlan(
            slot=group,
            start=date(2024, 6, 3),
            end=date(2024, 6, 16),
            weekdays={Weekday.WEDNESDAY, Weekday.MONDAY},
            parent_note="Pick up at 5",
        )
        outcome = await orchestrator.submit_bulk(plan)

        payload = backend.requests[0].to_payload()
        assert payload["startDate"] == "2024-06-03"
        assert payload["endDate"] == "2024-06-16"
        assert payload["weekDates"] == [1, 3]
        assert all("date" not in item for item in payload["items"])
        assert all("roomId" not in item for item in payload["items"])
        assert outcome.kind == OutcomeKind.SUCCESS
        assert outcome.success_count == orchestrator.estimate(plan) == 4
        assert len(orchestrator.ledger.reservations) == 4

    @pytest.mark.asyncio
    async def test_partial_recurring_outcome(self, backend, orchestrator):
        group = await self.grouped(orchestrator)
        backend.failed_dates[date(2024, 6, 12)] = "Instructor on leave"
        plan = BulkPlan(
            slot=group, start=date(2024, 6, 3), end=date(2024, 6, 16),
            weekdays={Weekday.MONDAY, Weekday.WEDNESDAY}, room_id="R1",
        )
        outcome = await orchestrator.submit_bulk(plan)
        assert outcome.kind == OutcomeKind.PARTIAL
        assert outcome.failed_dates == {date(2024, 6, 12)}
        assert "12/06/2024: Instructor on leave" in outcome.message

    @pytest.mark.parametrize(
        "start, end, weekdays, reason",
        [
            (None, date(2024, 6, 16), {Weekday.MONDAY}, ValidationReason.MISSING_DATE_RANGE),
            (date(2024, 6, 16), date(2024, 6, 3), {Weekday.MONDAY}, ValidationReason.START_AFTER_END),
            (date(2024, 6, 3), date(2024, 6, 16), set(), ValidationReason.EMPTY_WEEKDAYS),
            (date(2024, 6, 3), date(2024, 6, 4), {Weekday.FRIDAY}, ValidationReason.WEEKDAY_OUT_OF_RANGE),
            (date(2024, 6, 3), date(2024, 6, 16), {Weekday.FRIDAY}, ValidationReason.WEEKDAY_OUT_OF_RANGE),
        ],
    )
    @pytest.mark.asyncio
    async def test_validation(self, backend, orchestrator, start, end, weekdays, reason):
        group = await self.grouped(orchestrator)
        plan = BulkPlan(slot=group, start=start, end=end, weekdays=weekdays)
        with pytest.raises(SelectionValidationError) as exc_info:
            await orchestrator.submit_bulk(plan)
        assert exc_info.value.reason == reason
        assert backend.calls["book_many"] == 0

    @pytest.mark.asyncio
    async def test_missing_slot(self, orchestrator):
        await orchestrator.refresh()
        plan = BulkPlan(start=date(2024, 6, 3), end=date(2024, 6, 16), weekdays={Weekday.MONDAY})
        with pytest.raises(SelectionValidationError) as exc_info:
            await orchestrator.submit_bulk(plan)
        assert exc_info.value.reason == ValidationReason.MISSING_SLOT

    @pytest.mark.asyncio
    async def test_ineligible_recurring_booking(self, backend, orchestrator):
        backend.subscriptions.clear()
        await orchestrator.refresh()
        plan = BulkPlan(
            slot=orchestrator.catalog.find("T1"), start=date(2024, 6, 3),
            end=date(2024, 6, 16), weekdays={Weekday.MONDAY},
        )
        with pytest.raises(BookingConflictError) as exc_info:
            await orchestrator.submit_bulk(plan)
        assert exc_info.value.reason == ConflictReason.INELIGIBLE

    @pytest.mark.asyncio
    async def test_group_with_an_ineligible_weekday_makes_no_commit(self, backend, orchestrator):
        backend.slots[0]["packageSubscriptionId"] = "S9"
        backend.subscriptions.clear()
        group = await self.grouped(orchestrator)
        plan = BulkPlan(
            slot=group, start=date(2024, 6, 3), end=date(2024, 6, 16),
            weekdays={Weekday.MONDAY, Weekday.WEDNESDAY},
        )
        with pytest.raises(BookingConflictError) as exc_info:
            await orchestrator.submit_bulk(plan)
        assert exc_info.value.reason == ConflictReason.INELIGIBLE
        assert backend.calls["book_many"] == 0
        assert orchestrator.ledger.reservations == []
