"""Error hierarchy for booking failures.

Three kinds of failure stop a booking: validation problems detected
locally before any request, conflicts detected from already-fetched
catalog/ledger/subscription state, and remote failures reported by the
transport or the backend. A partially successful batch is not an error;
it is reported through ``BookingOutcome``.
"""

from enum import Enum
from typing import Optional


class ValidationReason(str, Enum):
    MISSING_STUDENT = "missing_student"
    MISSING_DATE_RANGE = "missing_date_range"
    START_AFTER_END = "start_after_end"
    EMPTY_WEEKDAYS = "empty_weekdays"
    WEEKDAY_OUT_OF_RANGE = "weekday_out_of_range"
    MISSING_SLOT = "missing_slot"
    EMPTY_ROOM_SELECTION = "empty_room_selection"
    EMPTY_SELECTION = "empty_selection"
    NOTE_TOO_LONG = "note_too_long"


class ConflictReason(str, Enum):
    ALREADY_BOOKED = "already_booked"
    INELIGIBLE = "ineligible"
    NO_ROOMS_AVAILABLE = "no_rooms_available"
    NO_ROOM_CHOSEN = "no_room_chosen"
    MIXED_SUBSCRIPTIONS = "mixed_subscriptions"


class BookingError(Exception):
    """Base exception for all booking-core errors."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SelectionValidationError(BookingError):
    """Input is incomplete or malformed. Recoverable locally, never retried."""

    kind = "validation"

    def __init__(self, reason: ValidationReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class BookingConflictError(BookingError):
    """Booking blocked by known ledger, room, or subscription state.

    Raised before any network call is made.
    """

    kind = "conflict"

    def __init__(self, reason: ConflictReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class RemoteServiceError(BookingError):
    """Transport failure or backend rejection.

    ``message`` is user-displayable: the server's own text when it sent
    one, otherwise the configured fallback.
    """

    kind = "remote"

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
