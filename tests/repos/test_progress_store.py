from __future__ import annotations

import asyncio
import dataclasses
import json

from engagement.models.course import VIDEO, UnitDefinition
from engagement.models.progress import UnitProgress
from engagement.repos.progress_store import (
    InMemoryProgressStore,
    RedisProgressStore,
    progress_document_id,
)

_UNIT = UnitProgress.not_started(0, UnitDefinition(type=VIDEO, title="Intro", url="a.mp4"))


def test_document_id() -> None:
    assert progress_document_id("u-1", "privacy-101") == "u-1_privacy-101"


def test_load_missing_document_returns_none() -> None:
    store = InMemoryProgressStore()
    assert asyncio.run(store.load("u-1", "c")) is None


def test_save_then_load() -> None:
    store = InMemoryProgressStore()
    unit = dataclasses.replace(_UNIT, last_position=12.0)

    async def _run():
        assert await store.save("u-1", "c", "Course", [unit]) is True
        return await store.load("u-1", "c")

    assert asyncio.run(_run()) == [unit]
    doc = store.document("u-1", "c")
    assert doc["userId"] == "u-1"
    assert doc["courseId"] == "c"
    assert doc["courseName"] == "Course"
    assert "lastUpdated" in doc


def test_save_merges_into_existing_document() -> None:
    store = InMemoryProgressStore()
    store._docs["u-1_c"] = {"certificateIssued": True, "units": []}

    asyncio.run(store.save("u-1", "c", "Course", [_UNIT]))

    doc = store.document("u-1", "c")
    assert doc["certificateIssued"] is True
    assert len(doc["units"]) == 1


def test_load_returns_units_in_index_order() -> None:
    store = InMemoryProgressStore()
    units = [dataclasses.replace(_UNIT, unit_index=i) for i in (2, 0, 1)]
    asyncio.run(store.save("u-1", "c", "Course", units))
    loaded = asyncio.run(store.load("u-1", "c"))
    assert [u.unit_index for u in loaded] == [0, 1, 2]


# ---- redis backend (fake client) ----


class _FakeRedis:
    def __init__(self, fail: bool = False) -> None:
        self.hashes: dict[str, dict[str, str]] = {}
        self.fail = fail

    async def hset(self, key: str, mapping: dict[str, str]) -> int:
        if self.fail:
            raise ConnectionError("redis down")
        self.hashes.setdefault(key, {}).update(mapping)
        return len(mapping)

    async def hget(self, key: str, field: str) -> str | None:
        return self.hashes.get(key, {}).get(field)


def test_redis_store_merges_fields() -> None:
    fake = _FakeRedis()
    fake.hashes["progress:u-1_c"] = {"certificateIssued": "1"}
    store = RedisProgressStore(fake)

    async def _run():
        await store.save("u-1", "c", "Course", [_UNIT])
        return await store.load("u-1", "c")

    assert asyncio.run(_run()) == [_UNIT]
    stored = fake.hashes["progress:u-1_c"]
    assert stored["certificateIssued"] == "1"
    assert json.loads(stored["units"])[0]["unitIndex"] == 0


def test_redis_store_reports_failure() -> None:
    store = RedisProgressStore(_FakeRedis(fail=True))
    assert asyncio.run(store.save("u-1", "c", "Course", [_UNIT])) is False
