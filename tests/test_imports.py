"""Tests for import chains and module integrity.

Ensures all public modules can be imported without errors and
that re-exports from __init__.py files work correctly.
"""


class TestSchemaImports:
    def test_import_slot_schema(self):
        from slotbook.schemas.slot_schema import GroupedSlot, SlotTemplate, Weekday
        assert Weekday.MONDAY == 1

    def test_import_booking_schema(self):
        from slotbook.schemas.booking_schema import BookingOutcome, BulkBookingRequest
        assert BookingOutcome(success_count=0).failed_slots == []


class TestSchedulingImports:
    def test_reexports(self):
        from slotbook.scheduling import (
            BookingOrchestrator,
            ConflictResolver,
            EligibilityResolver,
            ReservationLedger,
            SlotCatalog,
            WeekdayCalendar,
        )
        from slotbook.scheduling.orchestrator import BookingOrchestrator as direct
        assert BookingOrchestrator is direct

    def test_all_is_complete(self):
        import slotbook.scheduling as scheduling
        for name in scheduling.__all__:
            assert hasattr(scheduling, name)


class TestToolImports:
    def test_api_client(self):
        from slotbook.tools.api_client import SlotbookApiClient
        assert hasattr(SlotbookApiClient, "book_many")

    def test_memory_backend_reset(self):
        from slotbook.tools.memory import InMemoryBackend, slot_row
        backend = InMemoryBackend()
        backend.slots.append(slot_row("T1", 1))
        backend.failing.add("book_one")
        backend.reset()
        assert backend.slots == []
        assert backend.failing == set()


class TestLoggingContext:
    def test_session_id_filter(self):
        import logging

        from slotbook.logging_context import get_session_logger, set_session_id

        set_session_id("BS-1")
        logger = get_session_logger("slotbook.test")
        record = logging.LogRecord("slotbook.test", logging.INFO, __file__, 1, "x", None, None)
        assert logger.filter(record)
        assert record.session_id == "BS-1"

    def test_tagged_block_narrows_and_restores(self):
        import logging

        from slotbook.logging_context import current_tag, get_session_logger, tagged

        logger = get_session_logger("slotbook.test")
        before = current_tag()
        with tagged(student_id="ST-1", generation=3):
            record = logging.LogRecord("slotbook.test", logging.INFO, __file__, 1, "x", None, None)
            assert logger.filter(record)
            assert record.student_id == "ST-1"
            assert record.generation == 3
            assert record.session_id == before.session_id
        assert current_tag() == before
