from slotbook.scheduling.calendar import WeekdayCalendar, WeekRange
from slotbook.scheduling.catalog import SlotCatalog
from slotbook.scheduling.conflicts import ConflictResolver, OccurrenceCheck, SlotState
from slotbook.scheduling.eligibility import BatchEligibility, EligibilityResolver
from slotbook.scheduling.ledger import ReservationLedger
from slotbook.scheduling.orchestrator import BookingOrchestrator, BulkPlan, SessionGuard
from slotbook.scheduling.selection import BookingSelection, SelectionEntry

__all__ = [
    "WeekdayCalendar",
    "WeekRange",
    "SlotCatalog",
    "ReservationLedger",
    "EligibilityResolver",
    "BatchEligibility",
    "ConflictResolver",
    "OccurrenceCheck",
    "SlotState",
    "BookingOrchestrator",
    "BookingSelection",
    "SelectionEntry",
    "BulkPlan",
    "SessionGuard",
]
