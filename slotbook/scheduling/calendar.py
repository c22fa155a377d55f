"""
Weekday calendar arithmetic for recurring weekly slots.

Weeks start on Monday and Sunday is their last day, so a Sunday slot in
"this week" falls six days after this week's Monday. "Today" is an
explicit input: production code passes ``date.today()``, tests pin it.

Usage:
    cal = WeekdayCalendar(today=date(2024, 6, 5))
    cal.date_for_weekday(0, Weekday.MONDAY)     # date(2024, 6, 3)
    cal.date_for_weekday(1, Weekday.SUNDAY)     # date(2024, 6, 16)
    cal.offset_of_date(date(2024, 5, 29))       # -1
"""

from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Union

from slotbook.schemas.slot_schema import SlotOccurrence, SlotTemplate, Weekday
from slotbook.utils import format_display, to_date

DAYS_PER_WEEK = 7


def _days_from_monday(weekday: Weekday) -> int:
    return 6 if weekday == Weekday.SUNDAY else int(weekday) - 1


def monday_of(value: date) -> date:
    """The Monday on or before ``value``."""
    return value - timedelta(days=_days_from_monday(Weekday.of(value)))


@dataclass(frozen=True)
class WeekRange:
    """A Monday-to-Sunday week."""

    monday: date
    sunday: date

    @property
    def display_text(self) -> str:
        return f"{format_display(self.monday)} - {format_display(self.sunday)}"

    def __contains__(self, value: date) -> bool:
        return self.monday <= value <= self.sunday


class WeekdayCalendar:
    """Maps week offsets and weekdays to concrete dates relative to a fixed today."""

    def __init__(self, today: Union[date, datetime]) -> None:
        self._today = to_date(today)

    @property
    def today(self) -> date:
        return self._today

    def week_of_offset(self, offset: int) -> WeekRange:
        """Monday..Sunday of the week ``offset`` whole weeks from the current one."""
        monday = monday_of(self._today) + timedelta(days=offset * DAYS_PER_WEEK)
        return WeekRange(monday=monday, sunday=monday + timedelta(days=6))

    def date_for_weekday(self, offset: int, weekday: Weekday) -> date:
        monday = self.week_of_offset(offset).monday
        return monday + timedelta(days=_days_from_monday(Weekday(weekday)))

    def offset_of_date(self, value: Union[date, datetime]) -> int:
        """Week offset whose Monday..Sunday contains ``value``."""
        diff = monday_of(to_date(value)) - monday_of(self._today)
        return round(diff.days / DAYS_PER_WEEK)

    def occurrence(self, template: SlotTemplate, offset: int) -> SlotOccurrence:
        """Project a template onto its date in the week at ``offset``."""
        return SlotOccurrence(template=template, on=self.date_for_weekday(offset, template.weekday))

    def slot_counts_by_date(self, templates: Iterable[SlotTemplate], offset: int) -> dict[date, int]:
        """How many templates land on each date of the week at ``offset``."""
        counts: Counter[date] = Counter(
            self.date_for_weekday(offset, t.weekday) for t in templates
        )
        return dict(counts)

    @staticmethod
    def weekdays_in_range(start: date, end: date) -> frozenset[Weekday]:
        """Every weekday touched by ``[start, end]``; empty when start > end."""
        if start > end:
            return frozenset()
        span = min((end - start).days + 1, DAYS_PER_WEEK)
        return frozenset(Weekday.of(start + timedelta(days=i)) for i in range(span))

    @staticmethod
    def count_occurrences(start: date, end: date, weekdays: Iterable[Weekday]) -> int:
        """Number of days in ``[start, end]`` whose weekday is selected.

        This is the estimate shown before a recurring booking and has to
        agree with what the server expands for the same range.
        """
        if start > end:
            return 0
        selected = {Weekday(w) for w in weekdays}
        if not selected:
            return 0
        total_days = (end - start).days + 1
        full_weeks, remainder = divmod(total_days, DAYS_PER_WEEK)
        count = full_weeks * len(selected)
        tail_start = start + timedelta(days=full_weeks * DAYS_PER_WEEK)
        for i in range(remainder):
            if Weekday.of(tail_start + timedelta(days=i)) in selected:
                count += 1
        return count
