"""User-facing message text for validation, conflict, and outcome reporting.

Every refusal names its specific reason; screens display these strings
as-is. Limits are injected from configuration, not hardcoded.
"""

from datetime import date
from typing import Iterable, Union

from slotbook.config import settings
from slotbook.errors import ConflictReason, ValidationReason
from slotbook.utils import format_display

VALIDATION_MESSAGES: dict[ValidationReason, str] = {
    ValidationReason.MISSING_STUDENT: "Please choose a child before booking.",
    ValidationReason.MISSING_DATE_RANGE: "Please choose a start date and an end date.",
    ValidationReason.START_AFTER_END: "The start date must be on or before the end date.",
    ValidationReason.EMPTY_WEEKDAYS: "Please choose at least one weekday.",
    ValidationReason.WEEKDAY_OUT_OF_RANGE: (
        "One of the chosen weekdays does not fall inside the selected date range."
    ),
    ValidationReason.MISSING_SLOT: "Please choose a time slot.",
    ValidationReason.EMPTY_ROOM_SELECTION: "Please choose a room for this slot.",
    ValidationReason.EMPTY_SELECTION: "Please select at least one slot to book.",
    ValidationReason.NOTE_TOO_LONG: (
        f"Notes can be at most {settings.booking.parent_note_max_length} characters."
    ),
}

CONFLICT_MESSAGES: dict[ConflictReason, str] = {
    ConflictReason.ALREADY_BOOKED: "This slot is already booked for your child. Please choose another.",
    ConflictReason.INELIGIBLE: (
        "No active package covers this slot. Please check your child's packages "
        "or contact the center."
    ),
    ConflictReason.NO_ROOMS_AVAILABLE: "No rooms are open for this slot yet.",
    ConflictReason.NO_ROOM_CHOSEN: "Please choose a room for this slot.",
    ConflictReason.MIXED_SUBSCRIPTIONS: (
        "The selected slots are covered by different packages. "
        "Please book slots from one package at a time."
    ),
}


def _failure_line(failed_on: Union[date, str], reason: str) -> str:
    label = format_display(failed_on) if isinstance(failed_on, date) else failed_on
    return f"  {label}: {reason}"


def build_success_message(success_count: int) -> str:
    """Build the confirmation shown after every occurrence was booked."""
    noun = "slot" if success_count == 1 else "slots"
    return f"Booked {success_count} {noun} successfully."


def build_partial_success_message(success_count: int, failures: Iterable[tuple[Union[date, str], str]]) -> str:
    """Build the partial-success report listing each failed date and the server's reason."""
    lines = [f"Booked {success_count}, but some dates could not be booked:"]
    for failed_on, reason in failures:
        lines.append(_failure_line(failed_on, reason))
    return "\n".join(lines)


def build_estimate_message(count: int) -> str:
    """Build the pre-commit estimate for a recurring booking."""
    noun = "slot" if count == 1 else "slots"
    return f"This will create {count} {noun}."


def build_failure_message(failures: Iterable[tuple[Union[date, str], str]]) -> str:
    """Build the report shown when the server booked none of the requested dates."""
    lines = ["None of the selected dates could be booked:"]
    for failed_on, reason in failures:
        lines.append(_failure_line(failed_on, reason))
    return "\n".join(lines)
