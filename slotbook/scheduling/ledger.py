"""
A student's existing reservations, used to block double-booking.

The conflict check always works from the full reservation history
(cancelled ones included, so reopened occurrences can be told apart
from never-booked ones). Dashboards use the separate upcoming view.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from slotbook.errors import RemoteServiceError
from slotbook.logging_context import get_session_logger
from slotbook.schemas.reservation_schema import Reservation, ReservationStatus
from slotbook.tools.sources import ReservationSource, Row

logger = get_session_logger(__name__)


@dataclass(frozen=True)
class LedgerSnapshot:
    """One reservation fetch. ``error`` set means the history is unknown, not empty."""

    reservations: list[Reservation] = field(default_factory=list)
    error: Optional[str] = None


class ReservationLedger:
    """Snapshot of one student's reservations."""

    def __init__(self, source: ReservationSource) -> None:
        self._source = source
        self._reservations: list[Reservation] = []
        self.last_error: Optional[str] = None

    @property
    def reservations(self) -> list[Reservation]:
        return list(self._reservations)

    async def load(self, student_id: str) -> list[Reservation]:
        """Replace the snapshot with every reservation the student has, any status."""
        return self.apply(await self.collect(student_id))

    async def collect(self, student_id: str) -> LedgerSnapshot:
        """Fetch the full history without touching the snapshot."""
        return await self._fetch(student_id, upcoming_only=False)

    def apply(self, snapshot: LedgerSnapshot) -> list[Reservation]:
        self._reservations = list(snapshot.reservations)
        self.last_error = snapshot.error
        return list(self._reservations)

    async def active_reservations(self, student_id: str) -> list[Reservation]:
        """Reload and return reservations that still hold their occurrence."""
        await self.load(student_id)
        return [r for r in self._reservations if r.is_active]

    async def upcoming(self, student_id: str) -> list[Reservation]:
        """Upcoming reservations for dashboards; does not touch the snapshot."""
        snapshot = await self._fetch(student_id, upcoming_only=True)
        return snapshot.reservations

    async def _fetch(self, student_id: str, upcoming_only: bool) -> LedgerSnapshot:
        try:
            rows = await self._source.list_reservations(student_id, upcoming_only=upcoming_only)
        except RemoteServiceError as exc:
            logger.warning("Reservation fetch failed for %s: %s", student_id, exc.message)
            return LedgerSnapshot(error=exc.message)
        return LedgerSnapshot(reservations=self._parse(rows, student_id))

    @staticmethod
    def _parse(rows: list[Row], student_id: str) -> list[Reservation]:
        reservations: list[Reservation] = []
        for row in rows:
            try:
                reservations.append(Reservation.from_row(row, student_id=student_id))
            except ValueError as exc:
                logger.warning("Skipping malformed reservation row: %s", exc)
        return reservations

    def _matching(self, template_id: str, on: date, student_id: str) -> list[Reservation]:
        return [
            r for r in self._reservations
            if r.template_id == template_id
            and r.date == on
            and (not r.student_id or r.student_id == student_id)
        ]

    def find(self, template_id: str, on: date, student_id: str) -> Optional[Reservation]:
        """The most relevant reservation for an occurrence.

        Irregular history can hold several rows for one occurrence; a
        Booked one wins, then any other active one, then a cancelled one.
        """
        matches = self._matching(template_id, on, student_id)
        if not matches:
            return None
        booked = next((r for r in matches if r.status == ReservationStatus.BOOKED), None)
        if booked is not None:
            return booked
        active = next((r for r in matches if r.is_active), None)
        return active if active is not None else matches[0]

    def find_active(self, template_id: str, on: date, student_id: str) -> Optional[Reservation]:
        found = self.find(template_id, on, student_id)
        return found if found is not None and found.is_active else None

    def is_reopened(self, template_id: str, on: date, student_id: str) -> bool:
        """True if the occurrence has a reservation whose status is exactly Cancelled."""
        return any(
            r.status == ReservationStatus.CANCELLED
            for r in self._matching(template_id, on, student_id)
        )
