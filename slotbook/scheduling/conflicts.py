"""
Per-occurrence booking state.

Classification order, first match wins:
    ALREADY_BOOKED      an active reservation holds the occurrence
    REOPENED            the only reservations for it are cancelled
    NO_ROOMS_AVAILABLE  the template offers no rooms
    NO_ROOM_CHOSEN      rooms exist but none (or an unknown one) is chosen
    INELIGIBLE          no active subscription covers it
    FREE                bookable

Checks are computed from the ledger and eligibility state at call time
and are never cached.
"""

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional

from slotbook.errors import BookingConflictError, ConflictReason
from slotbook.messages import CONFLICT_MESSAGES
from slotbook.schemas.reservation_schema import Reservation
from slotbook.schemas.slot_schema import SlotOccurrence
from slotbook.scheduling.eligibility import EligibilityResolver
from slotbook.scheduling.ledger import ReservationLedger
from slotbook.utils import format_display

logger = logging.getLogger(__name__)


class SlotState(str, Enum):
    ALREADY_BOOKED = "already_booked"
    REOPENED = "reopened"
    NO_ROOMS_AVAILABLE = "no_rooms_available"
    NO_ROOM_CHOSEN = "no_room_chosen"
    INELIGIBLE = "ineligible"
    FREE = "free"


def conflict_error(reason: ConflictReason, on: Optional[date] = None) -> BookingConflictError:
    """Build the conflict error for ``reason``, prefixed with the date when known."""
    message = CONFLICT_MESSAGES[reason]
    if on is not None:
        message = f"{format_display(on)}: {message}"
    return BookingConflictError(reason, message)


@dataclass(frozen=True)
class OccurrenceCheck:
    """Classification of one occurrence plus the facts it was derived from.

    ``room_id`` is set only when the chosen room belongs to the template.
    """

    occurrence: SlotOccurrence
    state: SlotState
    subscription_id: Optional[str] = None
    room_id: Optional[str] = None
    reservation: Optional[Reservation] = None

    @property
    def blocking_reason(self) -> Optional[ConflictReason]:
        """Why this occurrence cannot be booked right now, or None.

        A reopened occurrence still needs a room and a subscription.
        """
        if self.state == SlotState.ALREADY_BOOKED:
            return ConflictReason.ALREADY_BOOKED
        if not self.occurrence.template.has_rooms:
            return ConflictReason.NO_ROOMS_AVAILABLE
        if self.room_id is None:
            return ConflictReason.NO_ROOM_CHOSEN
        if self.subscription_id is None:
            return ConflictReason.INELIGIBLE
        return None

    @property
    def is_selectable(self) -> bool:
        return self.blocking_reason is None

    def raise_if_blocked(self) -> None:
        reason = self.blocking_reason
        if reason is not None:
            raise conflict_error(reason, self.occurrence.on)


class ConflictResolver:
    """Classifies occurrences against the ledger and the student's subscriptions."""

    def __init__(self, ledger: ReservationLedger, eligibility: EligibilityResolver) -> None:
        self._ledger = ledger
        self._eligibility = eligibility

    def classify(
        self,
        occurrence: SlotOccurrence,
        student_id: str,
        room_id: Optional[str] = None,
        subscription_override: Optional[str] = None,
    ) -> OccurrenceCheck:
        template = occurrence.template
        reservation = self._ledger.find_active(occurrence.template_id, occurrence.on, student_id)
        chosen_room = template.room(room_id)
        subscription_id = self._eligibility.resolve(occurrence, subscription_override)

        if reservation is not None:
            state = SlotState.ALREADY_BOOKED
        elif self._ledger.is_reopened(occurrence.template_id, occurrence.on, student_id):
            state = SlotState.REOPENED
            reservation = self._ledger.find(occurrence.template_id, occurrence.on, student_id)
        elif not template.has_rooms:
            state = SlotState.NO_ROOMS_AVAILABLE
        elif chosen_room is None:
            state = SlotState.NO_ROOM_CHOSEN
        elif subscription_id is None:
            state = SlotState.INELIGIBLE
        else:
            state = SlotState.FREE

        logger.debug(
            "Slot %s on %s classified %s", occurrence.template_id, occurrence.on, state.value
        )
        return OccurrenceCheck(
            occurrence=occurrence,
            state=state,
            subscription_id=subscription_id,
            room_id=chosen_room.room_id if chosen_room else None,
            reservation=reservation,
        )
