"""Progress Store: load/save the unit-progress document of one learner+course.

Contract
--------
  load(user_id, course_id)  -> list[UnitProgress] | None   (None = never saved)
  save(user_id, course_id, course_name, units) -> bool     (False = SaveFailed)

Documents are keyed by ``{user_id}_{course_id}``.  A save is an upsert that
writes only the fields it owns (userId, courseId, courseName, units,
lastUpdated); anything else another writer keeps on the document survives.

Save failures are reported through the return value, never raised: the
caller logs them and waits for its next natural save trigger.
"""

from __future__ import annotations

import datetime
import json
import logging
from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from engagement.db.engine import async_session_factory
from engagement.db.redis import redis_pool
from engagement.db.tables import CourseProgressRow
from engagement.models.progress import UnitProgress

logger = logging.getLogger(__name__)


def progress_document_id(user_id: str, course_id: str) -> str:
    return f"{user_id}_{course_id}"


def _units_from_documents(docs: Sequence[dict[str, Any]]) -> list[UnitProgress]:
    return sorted(
        (UnitProgress.from_document(d) for d in docs), key=lambda u: u.unit_index
    )


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


@runtime_checkable
class ProgressStore(Protocol):
    async def load(self, user_id: str, course_id: str) -> list[UnitProgress] | None: ...

    async def save(
        self,
        user_id: str,
        course_id: str,
        course_name: str,
        units: Sequence[UnitProgress],
    ) -> bool: ...


class InMemoryProgressStore:
    """Dict of documents, for tests and local dev."""

    def __init__(self) -> None:
        self._docs: dict[str, dict[str, Any]] = {}

    async def load(self, user_id: str, course_id: str) -> list[UnitProgress] | None:
        doc = self._docs.get(progress_document_id(user_id, course_id))
        if doc is None or "units" not in doc:
            return None
        return _units_from_documents(doc["units"])

    async def save(
        self,
        user_id: str,
        course_id: str,
        course_name: str,
        units: Sequence[UnitProgress],
    ) -> bool:
        doc = self._docs.setdefault(progress_document_id(user_id, course_id), {})
        doc.update(
            {
                "userId": user_id,
                "courseId": course_id,
                "courseName": course_name,
                "units": [u.to_document() for u in units],
                "lastUpdated": _now().isoformat(),
            }
        )
        return True

    def document(self, user_id: str, course_id: str) -> dict[str, Any] | None:
        return self._docs.get(progress_document_id(user_id, course_id))


class RedisProgressStore:
    """One Redis hash per document; HSET only touches the fields we pass."""

    _PREFIX = "progress:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    def _key(self, user_id: str, course_id: str) -> str:
        return f"{self._PREFIX}{progress_document_id(user_id, course_id)}"

    async def load(self, user_id: str, course_id: str) -> list[UnitProgress] | None:
        raw = await self._redis.hget(self._key(user_id, course_id), "units")
        if raw is None:
            return None
        return _units_from_documents(json.loads(raw))

    async def save(
        self,
        user_id: str,
        course_id: str,
        course_name: str,
        units: Sequence[UnitProgress],
    ) -> bool:
        try:
            await self._redis.hset(
                self._key(user_id, course_id),
                mapping={
                    "userId": user_id,
                    "courseId": course_id,
                    "courseName": course_name,
                    "units": json.dumps([u.to_document() for u in units]),
                    "lastUpdated": _now().isoformat(),
                },
            )
        except Exception:
            logger.warning(
                "Redis progress save failed for %s",
                progress_document_id(user_id, course_id),
                exc_info=True,
            )
            return False
        return True


class PgProgressStore:
    """Satisfies ProgressStore using PostgreSQL (INSERT ... ON CONFLICT UPDATE)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def load(self, user_id: str, course_id: str) -> list[UnitProgress] | None:
        stmt = select(CourseProgressRow.units).where(
            CourseProgressRow.id == progress_document_id(user_id, course_id)
        )
        async with self._session_factory() as session:
            units = (await session.execute(stmt)).scalar_one_or_none()
        if units is None:
            return None
        return _units_from_documents(units)

    async def save(
        self,
        user_id: str,
        course_id: str,
        course_name: str,
        units: Sequence[UnitProgress],
    ) -> bool:
        values = {
            "id": progress_document_id(user_id, course_id),
            "user_id": user_id,
            "course_id": course_id,
            "course_name": course_name,
            "units": [u.to_document() for u in units],
            "last_updated": _now(),
        }
        stmt = pg_insert(CourseProgressRow).values(**values, extra={})
        stmt = stmt.on_conflict_do_update(
            index_elements=[CourseProgressRow.id],
            set_={
                "course_name": stmt.excluded.course_name,
                "units": stmt.excluded.units,
                "last_updated": stmt.excluded.last_updated,
            },
        )
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except Exception:
            logger.warning(
                "Postgres progress save failed for %s", values["id"], exc_info=True
            )
            return False
        return True


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if async_session_factory is not None:
    progress_store: ProgressStore = PgProgressStore(async_session_factory)
elif redis_pool is not None:
    progress_store = RedisProgressStore(redis_pool)
else:
    progress_store = InMemoryProgressStore()
