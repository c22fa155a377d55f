"""Booking-session fields on log records.

Records logged through :func:`get_session_logger` carry ``session_id``,
``student_id`` and ``generation``. The generation is the refresh token
handed out by the session guard, so lines from a refresh that was later
superseded can be told apart from the current one:

    %(asctime)s [%(session_id)s %(student_id)s #%(generation)d] %(message)s

The tag lives in a ContextVar. Tasks started by ``asyncio.gather`` copy
it, so the catalog, ledger and subscription fetches of one refresh all
log under that refresh's generation.
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, replace
from typing import Iterator, Optional


@dataclass(frozen=True)
class SessionTag:
    session_id: str = "-"
    student_id: str = "-"
    generation: int = 0


_tag: ContextVar[SessionTag] = ContextVar("booking_session_tag", default=SessionTag())


def set_session_id(session_id: str) -> None:
    """Name the booking session for the rest of the current context."""
    _tag.set(replace(_tag.get(), session_id=session_id))


def current_tag() -> SessionTag:
    return _tag.get()


@contextmanager
def tagged(student_id: Optional[str] = None, generation: Optional[int] = None) -> Iterator[SessionTag]:
    """Narrow the tag for one block of work, restoring the previous tag on exit."""
    previous = _tag.get()
    tag = replace(
        previous,
        student_id=student_id if student_id is not None else previous.student_id,
        generation=generation if generation is not None else previous.generation,
    )
    token = _tag.set(tag)
    try:
        yield tag
    finally:
        _tag.reset(token)


class SessionTagFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        tag = _tag.get()
        record.session_id = tag.session_id  # type: ignore[attr-defined]
        record.student_id = tag.student_id  # type: ignore[attr-defined]
        record.generation = tag.generation  # type: ignore[attr-defined]
        return True


def get_session_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if not any(isinstance(f, SessionTagFilter) for f in logger.filters):
        logger.addFilter(SessionTagFilter())
    return logger
