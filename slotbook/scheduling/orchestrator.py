"""
Booking session for one student.

Drives the two booking workflows over shared catalog, ledger and
eligibility state:

- à la carte: toggle individual (slot, date) occurrences with a room into
  a selection and commit them together;
- recurring: pick a date range, weekdays and one slot grouping, show an
  estimate, and let the server expand the range.

Every commit is followed by a concurrent refresh of catalog, ledger and
subscriptions. The session counts as settled only once all three have
returned. Refresh results that arrive after the session was abandoned or
superseded are dropped.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Union

from slotbook.config import settings
from slotbook.errors import (
    ConflictReason,
    RemoteServiceError,
    SelectionValidationError,
    ValidationReason,
)
from slotbook.logging_context import get_session_logger, tagged
from slotbook.messages import (
    VALIDATION_MESSAGES,
    build_estimate_message,
    build_failure_message,
    build_partial_success_message,
    build_success_message,
)
from slotbook.schemas.booking_schema import (
    BookingItem,
    BookingOutcome,
    BookingReceipt,
    BookingRequest,
    BulkBookingRequest,
)
from slotbook.schemas.slot_schema import (
    GroupedSlot,
    OccurrenceKey,
    SlotOccurrence,
    SlotTemplate,
    Weekday,
)
from slotbook.scheduling.calendar import WeekdayCalendar
from slotbook.scheduling.catalog import SlotCatalog
from slotbook.scheduling.conflicts import ConflictResolver, OccurrenceCheck, conflict_error
from slotbook.scheduling.eligibility import EligibilityResolver
from slotbook.scheduling.ledger import ReservationLedger
from slotbook.scheduling.selection import BookingSelection, SelectionEntry
from slotbook.tools.sources import BookingSink

logger = get_session_logger(__name__)


def _invalid(reason: ValidationReason) -> SelectionValidationError:
    return SelectionValidationError(reason, VALIDATION_MESSAGES[reason])


class SessionGuard:
    """Generation counter that marks in-flight work as stale.

    ``begin()`` hands out a token; the result of that work may be applied
    only while ``is_current(token)`` holds. Starting newer work or calling
    ``abandon()`` invalidates every earlier token.
    """

    def __init__(self) -> None:
        self._generation = 0
        self.abandoned = False

    def begin(self) -> int:
        self._generation += 1
        return self._generation

    def is_current(self, token: int) -> bool:
        return not self.abandoned and token == self._generation

    def abandon(self) -> None:
        self._generation += 1
        self.abandoned = True


@dataclass
class BulkPlan:
    """Inputs of a recurring booking."""

    slot: Optional[Union[SlotTemplate, GroupedSlot]] = None
    start: Optional[date] = None
    end: Optional[date] = None
    weekdays: set[Weekday] = field(default_factory=set)
    room_id: Optional[str] = None  # None lets the server assign a room
    parent_note: Optional[str] = None


class BookingOrchestrator:
    """Owns the selection and commit flow of one booking session."""

    def __init__(
        self,
        student_id: Optional[str],
        calendar: WeekdayCalendar,
        catalog: SlotCatalog,
        ledger: ReservationLedger,
        eligibility: EligibilityResolver,
        sink: BookingSink,
    ) -> None:
        self.student_id = student_id
        self.calendar = calendar
        self.catalog = catalog
        self.ledger = ledger
        self.eligibility = eligibility
        self.conflicts = ConflictResolver(ledger, eligibility)
        self.selection = BookingSelection()
        self._sink = sink
        self._guard = SessionGuard()
        self._rooms: dict[OccurrenceKey, str] = {}
        self.settled = False
        self.last_outcome: Optional[BookingOutcome] = None

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    async def refresh(self) -> bool:
        """Reload catalog, ledger and subscriptions concurrently.

        The three fetches are collected first and applied together only if
        this refresh is still the current one. Returns False when the
        results were dropped because the session was abandoned or a newer
        refresh started meanwhile.

        A failed reservation fetch is applied but leaves the session
        unsettled: with the history unknown, selection and commits are
        refused until a later refresh succeeds.
        """
        student_id = self._require_student()
        token = self._guard.begin()
        self.settled = False
        with tagged(student_id=student_id, generation=token):
            slots, history, packages = await asyncio.gather(
                self.catalog.collect(student_id),
                self.ledger.collect(student_id),
                self.eligibility.collect(student_id),
            )
            if not self._guard.is_current(token):
                logger.info("Discarding stale refresh for %s", student_id)
                return False
            self.catalog.apply(slots)
            self.ledger.apply(history)
            self.eligibility.apply(packages)
            if history.error is not None:
                logger.warning("Reservation history unavailable, bookings on hold: %s", history.error)
                return True
            self.settled = True
            logger.info(
                "Session settled: %d slots, %d reservations, %d subscriptions",
                len(slots.templates),
                len(history.reservations),
                len(packages.subscriptions),
            )
        return True

    def abandon(self) -> None:
        """Drop the session; late results of in-flight fetches are ignored."""
        self._guard.abandon()
        self.selection.clear()
        self._rooms.clear()
        self.settled = False
        logger.info("Booking session abandoned")

    @property
    def is_abandoned(self) -> bool:
        return self._guard.abandoned

    def _require_student(self) -> str:
        if not self.student_id:
            raise _invalid(ValidationReason.MISSING_STUDENT)
        return self.student_id

    def _require_history(self) -> None:
        """Refuse to book while the reservation history failed to load."""
        if self.ledger.last_error is not None:
            raise RemoteServiceError(self.ledger.last_error)

    def _clean_note(self, note: Optional[str]) -> Optional[str]:
        """Trim the note; blank becomes absent. Raises if over the configured limit."""
        if note is None:
            return None
        trimmed = note.strip()
        if len(trimmed) > settings.booking.parent_note_max_length:
            raise _invalid(ValidationReason.NOTE_TOO_LONG)
        return trimmed or None

    # ------------------------------------------------------------------
    # À la carte
    # ------------------------------------------------------------------

    def visible_occurrences(self, on: date) -> list[SlotOccurrence]:
        """Occurrences of every catalog template recurring on ``on``."""
        return [SlotOccurrence(template=t, on=on) for t in self.catalog.templates_on(on)]

    def room_for(self, occurrence: SlotOccurrence) -> Optional[str]:
        entry = self.selection.get(occurrence.key)
        if entry is not None and entry.room_id:
            return entry.room_id
        return self._rooms.get(occurrence.key)

    def choose_room(self, occurrence: SlotOccurrence, room_id: str) -> None:
        """Pick the room for an occurrence, selected or not."""
        if not room_id or occurrence.template.room(room_id) is None:
            raise _invalid(ValidationReason.EMPTY_ROOM_SELECTION)
        self._rooms[occurrence.key] = room_id
        entry = self.selection.get(occurrence.key)
        if entry is not None:
            entry.room_id = room_id

    def classify(self, occurrence: SlotOccurrence) -> OccurrenceCheck:
        return self.conflicts.classify(
            occurrence, self._require_student(), room_id=self.room_for(occurrence)
        )

    def toggle(
        self,
        occurrence: SlotOccurrence,
        room_id: Optional[str] = None,
        parent_note: Optional[str] = None,
    ) -> bool:
        """Select or deselect one occurrence. Returns whether it is now selected.

        Raises:
            BookingConflictError: When selecting an occurrence that cannot
                be booked, naming the reason.
        """
        if occurrence.key in self.selection:
            self.selection.remove(occurrence.key)
            return False
        self._require_history()
        if room_id:
            self.choose_room(occurrence, room_id)
        check = self.classify(occurrence)
        check.raise_if_blocked()
        self.selection.put(
            SelectionEntry(
                occurrence=occurrence,
                room_id=check.room_id,
                parent_note=self._clean_note(parent_note),
            )
        )
        return True

    def selectable_occurrences(self, on: date) -> list[SlotOccurrence]:
        return [
            occurrence for occurrence in self.visible_occurrences(on)
            if self.classify(occurrence).is_selectable
        ]

    def toggle_all(self, on: date) -> bool:
        """Select every selectable occurrence on ``on``, or clear them if all are selected.

        Returns whether the occurrences are selected afterwards.
        """
        self._require_history()
        selectable = self.selectable_occurrences(on)
        if not selectable:
            return False
        if all(o.key in self.selection for o in selectable):
            for occurrence in selectable:
                self.selection.remove(occurrence.key)
            return False
        for occurrence in selectable:
            if occurrence.key not in self.selection:
                self.selection.put(
                    SelectionEntry(occurrence=occurrence, room_id=self.room_for(occurrence))
                )
        return True

    async def submit(self, parent_note: Optional[str] = None) -> BookingOutcome:
        """Commit the current selection.

        Every entry is re-checked against the current ledger, rooms and
        subscriptions first; nothing is sent if any entry is blocked or
        the entries span subscriptions. Succeeded entries leave the
        selection; entries on failed dates stay for a retry.
        """
        student_id = self._require_student()
        entries = self.selection.entries()
        if not entries:
            raise _invalid(ValidationReason.EMPTY_SELECTION)
        note = self._clean_note(parent_note)
        self._require_history()

        for entry in entries:
            check = self.conflicts.classify(entry.occurrence, student_id, room_id=entry.room_id)
            check.raise_if_blocked()
        batch = self.eligibility.resolve_batch(entries)
        if batch.invalid or batch.subscription_id is None:
            first = batch.invalid[0] if batch.invalid else None
            raise conflict_error(
                ConflictReason.INELIGIBLE,
                first.on if isinstance(first, SlotOccurrence) else None,
            )

        logger.info("Submitting %d selected slots for %s", len(entries), student_id)
        if len(entries) == 1:
            entry = entries[0]
            request = BookingRequest(
                student_id=student_id,
                subscription_id=batch.subscription_id,
                template_id=entry.occurrence.template_id,
                room_id=entry.room_id,
                date=entry.occurrence.on,
                parent_note=entry.parent_note or note,
            )
            receipt = await self._sink.book_one(request)
        else:
            bulk = BulkBookingRequest(
                student_id=student_id,
                subscription_id=batch.subscription_id,
                items=[
                    BookingItem(
                        template_id=e.occurrence.template_id,
                        room_id=e.room_id,
                        date=e.occurrence.on,
                        parent_note=e.parent_note,
                    )
                    for e in entries
                ],
                parent_note=note,
            )
            receipt = await self._sink.book_many(bulk)

        outcome = self._outcome(receipt, requested=len(entries))
        # An undated failure could belong to any entry; the refreshed ledger sorts them out.
        if not outcome.has_undated_failures:
            self.selection.retain_dates(outcome.failed_dates)
        await self._finish(outcome)
        self._drop_booked(student_id)
        for key in list(self._rooms):
            if key not in self.selection:
                del self._rooms[key]
        return outcome

    def _drop_booked(self, student_id: str) -> None:
        """Remove retained entries the settled ledger now shows as booked.

        Failures are reported per date, so a failed date can still hold
        entries that succeeded alongside the one that did not.
        """
        if not self.settled:
            return
        for entry in self.selection.entries():
            occurrence = entry.occurrence
            if self.ledger.find_active(occurrence.template_id, occurrence.on, student_id) is not None:
                self.selection.remove(entry.key)

    async def book_occurrence(
        self,
        occurrence: SlotOccurrence,
        room_id: Optional[str] = None,
        parent_note: Optional[str] = None,
    ) -> BookingOutcome:
        """Book a single occurrence directly, bypassing the selection."""
        student_id = self._require_student()
        self._require_history()
        if room_id:
            self.choose_room(occurrence, room_id)
        check = self.classify(occurrence)
        check.raise_if_blocked()
        request = BookingRequest(
            student_id=student_id,
            subscription_id=check.subscription_id,
            template_id=occurrence.template_id,
            room_id=check.room_id,
            date=occurrence.on,
            parent_note=self._clean_note(parent_note),
        )
        logger.info("Booking slot %s on %s for %s", occurrence.template_id, occurrence.on, student_id)
        receipt = await self._sink.book_one(request)
        self._rooms.pop(occurrence.key, None)
        outcome = self._outcome(receipt, requested=1)
        await self._finish(outcome)
        return outcome

    # ------------------------------------------------------------------
    # Recurring
    # ------------------------------------------------------------------

    def _validate_plan(self, plan: BulkPlan) -> list[SlotTemplate]:
        """Validate a recurring plan and return the templates it books."""
        self._require_student()
        if plan.start is None or plan.end is None:
            raise _invalid(ValidationReason.MISSING_DATE_RANGE)
        if plan.start > plan.end:
            raise _invalid(ValidationReason.START_AFTER_END)
        if not plan.weekdays:
            raise _invalid(ValidationReason.EMPTY_WEEKDAYS)
        allowed = WeekdayCalendar.weekdays_in_range(plan.start, plan.end)
        if not set(plan.weekdays) <= allowed:
            raise _invalid(ValidationReason.WEEKDAY_OUT_OF_RANGE)
        if plan.slot is None:
            raise _invalid(ValidationReason.MISSING_SLOT)

        if isinstance(plan.slot, GroupedSlot):
            if not set(plan.weekdays) <= plan.slot.weekdays:
                raise _invalid(ValidationReason.WEEKDAY_OUT_OF_RANGE)
            templates = plan.slot.templates_for(set(plan.weekdays))
        else:
            templates = [plan.slot]
        if not templates:
            raise _invalid(ValidationReason.MISSING_SLOT)

        if plan.room_id is not None and not any(t.room(plan.room_id) for t in templates):
            raise _invalid(ValidationReason.EMPTY_ROOM_SELECTION)
        self._clean_note(plan.parent_note)
        return templates

    def estimate(self, plan: BulkPlan) -> int:
        """Number of occurrences a recurring plan would create; display only."""
        if plan.start is None or plan.end is None:
            return 0
        return WeekdayCalendar.count_occurrences(plan.start, plan.end, plan.weekdays)

    def estimate_message(self, plan: BulkPlan) -> str:
        return build_estimate_message(self.estimate(plan))

    async def submit_bulk(self, plan: BulkPlan) -> BookingOutcome:
        """Send one recurring request; the server expands range x weekdays.

        Individual occurrences are not pre-checked. Failures come back per
        date in the outcome.
        """
        templates = self._validate_plan(plan)
        student_id = self._require_student()
        batch = self.eligibility.resolve_batch(templates)
        if batch.invalid or batch.subscription_id is None:
            raise conflict_error(ConflictReason.INELIGIBLE)

        request = BulkBookingRequest(
            student_id=student_id,
            subscription_id=batch.subscription_id,
            items=[BookingItem(template_id=t.id, room_id=plan.room_id) for t in templates],
            start_date=plan.start,
            end_date=plan.end,
            weekdays=sorted(plan.weekdays),
            parent_note=self._clean_note(plan.parent_note),
        )
        expected = self.estimate(plan)
        logger.info(
            "Submitting recurring booking %s..%s on %s (~%d slots) for %s",
            plan.start, plan.end, [w.short_label for w in request.weekdays], expected, student_id,
        )
        receipt = await self._sink.book_many(request)
        outcome = self._outcome(receipt, requested=expected)
        await self._finish(outcome)
        return outcome

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    @staticmethod
    def _outcome(receipt: BookingReceipt, requested: int) -> BookingOutcome:
        failed = list(receipt.failed_slots)
        if receipt.success_count is not None:
            success_count = receipt.success_count
        else:
            success_count = max(requested - len(failed), 0)

        failures = [(f.when, f.error) for f in failed]
        if not failed:
            message = receipt.message or build_success_message(success_count)
        elif success_count > 0:
            message = build_partial_success_message(success_count, failures)
        else:
            message = build_failure_message(failures)
        return BookingOutcome(success_count=success_count, failed_slots=failed, message=message)

    async def _finish(self, outcome: BookingOutcome) -> None:
        self.last_outcome = outcome
        logger.info(
            "Commit finished: %s (%d booked, %d failed)",
            outcome.kind.value, outcome.success_count, len(outcome.failed_slots),
        )
        if self.is_abandoned:
            return
        await self.refresh()
