"""Unit-session context for log records.

A learner can have several courses open over a process lifetime, and the
periodic tasks of one unit interleave with request handling and with the
teardown of the previous unit.  Every log line emitted on behalf of a unit
session carries that session's identity so the lines can be told apart:

  INFO  engagement.services.progress_controller  Saved unit 2 at 312.4s
        session_id=5f0c... user_id=u-17 course_id=privacy-101 unit_index=2

The identity lives in a ContextVar.  asyncio copies the current context
into every task it creates, so the autosave and tick tasks spawned while a
session context is active keep logging with that session's fields even
after the code that started them has returned.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class SessionLogContext:
    session_id: str
    user_id: str
    course_id: str
    unit_index: int


session_context_var: ContextVar[SessionLogContext | None] = ContextVar(
    "unit_session", default=None
)


@contextmanager
def session_context(ctx: SessionLogContext) -> Iterator[SessionLogContext]:
    """Bind ``ctx`` for the duration of the block (and any task created in it)."""
    token = session_context_var.set(ctx)
    try:
        yield ctx
    finally:
        session_context_var.reset(token)


class SessionContextFilter(logging.Filter):
    """Copies the active session identity onto each LogRecord.

    Records that already carry a field (passed via ``extra=``) keep it.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = session_context_var.get()
        if ctx is None:
            return True
        for key in ("session_id", "user_id", "course_id", "unit_index"):
            if not hasattr(record, key):
                setattr(record, key, getattr(ctx, key))
        return True
