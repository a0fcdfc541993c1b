"""Append-only log of behavioral events posted by remote players.

Events are stored in their wire form (BehavioralEvent.to_dict()) so
dashboards and exports read exactly what the tracker produced.  Redis keeps
one list per session; LPUSH puts the newest event at the head, so reading
the most recent N is a single LRANGE.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from engagement.db.redis import redis_pool
from engagement.models.event import BehavioralEvent


@runtime_checkable
class EventLog(Protocol):
    async def append(self, events: Sequence[BehavioralEvent]) -> int: ...
    async def recent(self, session_id: str, limit: int = 100) -> list[BehavioralEvent]: ...


class InMemoryEventLog:
    def __init__(self) -> None:
        self._sessions: dict[str, list[BehavioralEvent]] = {}

    async def append(self, events: Sequence[BehavioralEvent]) -> int:
        for event in events:
            self._sessions.setdefault(event.session_id, []).append(event)
        return len(events)

    async def recent(self, session_id: str, limit: int = 100) -> list[BehavioralEvent]:
        events = self._sessions.get(session_id, [])
        return list(reversed(events[-limit:]))


class RedisEventLog:
    _PREFIX = "events:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def append(self, events: Sequence[BehavioralEvent]) -> int:
        for event in events:
            await self._redis.lpush(
                f"{self._PREFIX}{event.session_id}", json.dumps(event.to_dict())
            )
        return len(events)

    async def recent(self, session_id: str, limit: int = 100) -> list[BehavioralEvent]:
        raw = await self._redis.lrange(f"{self._PREFIX}{session_id}", 0, limit - 1)
        return [BehavioralEvent.from_dict(json.loads(item)) for item in raw]


if redis_pool is not None:
    event_log: EventLog = RedisEventLog(redis_pool)
else:
    event_log = InMemoryEventLog()
