"""
Recurring slot catalog for one student.

Fetches the branch's slot templates page by page, keeps only the ones
the backend marks available, and offers the two views the booking
screens need: per-weekday lists, and branch+timeframe groups for the
recurring workflow.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional

from slotbook.config import settings
from slotbook.errors import RemoteServiceError
from slotbook.logging_context import get_session_logger
from slotbook.schemas.slot_schema import (
    DISPLAY_ORDER,
    GroupedSlot,
    RoomOption,
    SlotTemplate,
    Weekday,
)
from slotbook.tools.sources import DateRange, Row, SlotSource

logger = get_session_logger(__name__)


@dataclass(frozen=True)
class CatalogSnapshot:
    """One catalog fetch, held apart until the caller decides to apply it."""

    templates: list[SlotTemplate] = field(default_factory=list)
    error: Optional[str] = None


def _start_key(item: SlotTemplate | GroupedSlot) -> tuple[bool, int]:
    minutes = item.start_minutes
    return (minutes is None, minutes or 0)


def sort_for_display(templates: Iterable[SlotTemplate]) -> list[SlotTemplate]:
    """Ascending start time; equal times keep their input order."""
    return sorted(templates, key=_start_key)


class SlotCatalog:
    """Holds the slot templates bookable by one student."""

    def __init__(
        self,
        source: SlotSource,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> None:
        self._source = source
        self.page_size = page_size or settings.catalog.page_size
        self.max_pages = max_pages or settings.catalog.max_pages
        self._templates: list[SlotTemplate] = []
        self.last_error: Optional[str] = None

    @property
    def templates(self) -> list[SlotTemplate]:
        return list(self._templates)

    async def fetch(self, student_id: str, date_range: Optional[DateRange] = None) -> list[SlotTemplate]:
        """
        Load every available template for the student.

        A failure on the first page leaves the catalog empty and records
        the message in ``last_error``. A failure on a later page keeps the
        rows already loaded.
        """
        return self.apply(await self.collect(student_id, date_range))

    async def collect(self, student_id: str, date_range: Optional[DateRange] = None) -> CatalogSnapshot:
        """Fetch and parse every page without touching the catalog."""
        rows: list[Row] = []
        page = 1
        while page <= self.max_pages:
            try:
                result = await self._source.list_available_slots(
                    student_id, page, self.page_size, date_range
                )
            except RemoteServiceError as exc:
                if page == 1:
                    logger.warning("Slot catalog fetch failed for %s: %s", student_id, exc.message)
                    return CatalogSnapshot(templates=[], error=exc.message)
                logger.warning("Slot catalog stopped at page %d: %s", page, exc.message)
                break
            rows.extend(result.items)
            if not result.has_next_page:
                break
            page += 1
        else:
            logger.warning(
                "Slot catalog hit the %d-page cap for %s; remaining pages skipped",
                self.max_pages, student_id,
            )

        templates = self._parse(rows)
        logger.info("Fetched %d available slots for %s", len(templates), student_id)
        return CatalogSnapshot(templates=templates)

    def apply(self, snapshot: CatalogSnapshot) -> list[SlotTemplate]:
        """Replace the held templates with a collected snapshot."""
        self._templates = list(snapshot.templates)
        self.last_error = snapshot.error
        return list(self._templates)

    def _parse(self, rows: list[Row]) -> list[SlotTemplate]:
        templates: list[SlotTemplate] = []
        seen: set[str] = set()
        for row in rows:
            try:
                template = SlotTemplate.from_row(row)
            except ValueError as exc:
                logger.warning("Skipping malformed slot row: %s", exc)
                continue
            if not template.is_available or template.id in seen:
                continue
            seen.add(template.id)
            templates.append(template)
        return sort_for_display(templates)

    def find(self, template_id: str) -> Optional[SlotTemplate]:
        return next((t for t in self._templates if t.id == template_id), None)

    def templates_on(self, on: date) -> list[SlotTemplate]:
        """Templates that recur on the weekday of ``on``."""
        weekday = Weekday.of(on)
        return [t for t in self._templates if t.weekday == weekday]

    async def load_rooms(self, template: SlotTemplate) -> SlotTemplate:
        """Refresh a template's rooms from the per-slot room listing.

        Room and staff details are enrichment: on failure the template's
        embedded rooms are kept as they are.
        """
        try:
            rows = await self._source.list_rooms(template.id)
        except RemoteServiceError as exc:
            logger.warning("Room lookup failed for slot %s: %s", template.id, exc.message)
            return template
        rooms: list[RoomOption] = []
        for row in rows:
            room = RoomOption.from_row(row)
            if room is not None:
                rooms.append(room)
        updated = template.model_copy(update={"rooms": tuple(rooms)})
        self._templates = [updated if t.id == template.id else t for t in self._templates]
        return updated

    @staticmethod
    def group_by_weekday(templates: Iterable[SlotTemplate]) -> dict[Weekday, list[SlotTemplate]]:
        """Partition templates by weekday. All seven keys are present, Mon..Sun."""
        grouped: dict[Weekday, list[SlotTemplate]] = {day: [] for day in DISPLAY_ORDER}
        for template in templates:
            grouped[template.weekday].append(template)
        return {day: sort_for_display(items) for day, items in grouped.items()}

    @staticmethod
    def dedupe_by_branch_timeframe(templates: Iterable[SlotTemplate]) -> list[GroupedSlot]:
        """Collapse per-weekday templates sharing branch and timeframe into one group each."""
        groups: "OrderedDict[tuple[Optional[str], Optional[str]], GroupedSlot]" = OrderedDict()
        for template in templates:
            key = (template.branch_id, template.timeframe_id)
            group = groups.get(key)
            if group is None:
                group = GroupedSlot(
                    branch_id=template.branch_id,
                    branch_name=template.branch_name,
                    timeframe_id=template.timeframe_id,
                    timeframe_name=template.timeframe_name,
                    start_time=template.start_time,
                    end_time=template.end_time,
                    slot_type_id=template.slot_type_id,
                    slot_type_name=template.slot_type_name,
                    rooms=template.rooms,
                )
                groups[key] = group
            group.weekdays.add(template.weekday)
            group.templates.append(template)
        return sorted(groups.values(), key=_start_key)
