from __future__ import annotations

import asyncio
import dataclasses
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from engagement.core.config import SETTINGS, Settings
from engagement.main import app
from engagement.models.course import QUIZ, VIDEO, CourseDefinition, UnitDefinition
from engagement.models.principal import Principal
from engagement.models.progress import UnitProgress
from engagement.repos.course_catalog import course_catalog, seed_sample_course
from engagement.repos.event_log import event_log
from engagement.repos.progress_store import InMemoryProgressStore, progress_store
from engagement.services import token_service
from engagement.services.playback import PlayerLoaders

# Ensure repo root is on sys.path so `import engagement` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def reset_progress_store() -> None:
    """Clear stored progress documents between tests."""
    if hasattr(progress_store, "_docs"):
        progress_store._docs.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_event_log() -> None:
    if hasattr(event_log, "_sessions"):
        event_log._sessions.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_course_catalog() -> None:
    """Back to the seeded sample course only."""
    course_catalog._by_id.clear()
    seed_sample_course(course_catalog)


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(
    username: str = "test-user",
    roles: list[str] | None = None,
    employee_id: str | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(
        sub=username, roles=roles, employee_id=employee_id
    )


@pytest.fixture
def token() -> str:
    return mint_token()


@pytest.fixture
def admin_token() -> str:
    return mint_token(username="test-admin", roles=["admin"])


# ---------------------------------------------------------------------------
# Unit-session helpers
# ---------------------------------------------------------------------------

LEARNER = Principal(user_id="learner-1", roles=frozenset({"user"}))
REVIEWER = Principal(user_id="reviewer-1", roles=frozenset({"admin"}))


def make_settings(**overrides: Any) -> Settings:
    """Test settings with timers slowed down so nothing fires unless asked."""
    values: dict[str, Any] = {
        "autosave_interval": 3600.0,
        "metrics_tick_interval": 3600.0,
        "guard_sample_interval": 3600.0,
        "player_init_timeout": 0.2,
    }
    values.update(overrides)
    return dataclasses.replace(SETTINGS, **values)


def make_course(*units: UnitDefinition, course_id: str = "course-1") -> CourseDefinition:
    if not units:
        units = (
            UnitDefinition(type=VIDEO, title="Intro", url="https://cdn.test/intro.mp4"),
            UnitDefinition(
                type=VIDEO, title="Deep dive", url="https://youtu.be/abcdefghijk"
            ),
            UnitDefinition(type=QUIZ, title="Quiz", verification_code="Secret42"),
        )
    return CourseDefinition(id=course_id, title="Test course", units=tuple(units))


async def settle(delay: float = 0.01) -> None:
    """Let scheduled save tasks run to completion."""
    await asyncio.sleep(delay)


class FlakyProgressStore(InMemoryProgressStore):
    """In-memory store that records every save and can be told to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.saves: list[list[UnitProgress]] = []
        self.fail_with: Exception | None = None
        self.return_false = False

    async def save(self, user_id, course_id, course_name, units) -> bool:  # type: ignore[override]
        self.saves.append(list(units))
        if self.fail_with is not None:
            raise self.fail_with
        if self.return_false:
            return False
        return await super().save(user_id, course_id, course_name, units)

    def saved_unit(self, unit_index: int) -> UnitProgress | None:
        for units in reversed(self.saves):
            for unit in units:
                if unit.unit_index == unit_index:
                    return unit
        return None

    def saved_units(self, unit_index: int) -> list[UnitProgress]:
        return [u for units in self.saves for u in units if u.unit_index == unit_index]


class GatedProgressStore(FlakyProgressStore):
    """Saves block after ``hold()`` until ``release()``, keeping the lock held."""

    def __init__(self) -> None:
        super().__init__()
        self._gate: asyncio.Event | None = None

    def hold(self) -> None:
        self._gate = asyncio.Event()

    def release(self) -> None:
        if self._gate is not None:
            self._gate.set()
        self._gate = None

    async def save(self, user_id, course_id, course_name, units) -> bool:  # type: ignore[override]
        if self._gate is not None:
            await self._gate.wait()
        return await super().save(user_id, course_id, course_name, units)


# ---------------------------------------------------------------------------
# Fake players
# ---------------------------------------------------------------------------


class FakeEmbeddedPlayer:
    """IFrame-style player: state-change callbacks, no seek events."""

    def __init__(self, duration: float = 600.0) -> None:
        self.time = 0.0
        self.length = duration
        self.rate = 1.0
        self.destroyed = False
        self.seeks: list[float] = []
        self._handlers: dict[str, list[Callable[..., Any]]] = {}

    def add_event_listener(self, event: str, handler: Callable[..., Any]) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def remove_event_listener(self, event: str, handler: Callable[..., Any]) -> None:
        if handler in self._handlers.get(event, []):
            self._handlers[event].remove(handler)

    def listener_count(self) -> int:
        return sum(len(h) for h in self._handlers.values())

    def get_current_time(self) -> float:
        return self.time

    def get_duration(self) -> float:
        return self.length

    def get_playback_rate(self) -> float:
        return self.rate

    def seek_to(self, seconds: float, allow_seek_ahead: bool) -> None:
        self.seeks.append(seconds)
        self.time = seconds

    def destroy(self) -> None:
        self.destroyed = True

    def _fire(self, event: str, data: Any) -> None:
        for handler in list(self._handlers.get(event, [])):
            handler(data)

    def play(self) -> None:
        self._fire("onStateChange", 1)

    def pause(self) -> None:
        self._fire("onStateChange", 2)

    def end(self) -> None:
        self.time = self.length
        self._fire("onStateChange", 0)

    def set_rate(self, rate: float) -> None:
        self.rate = rate
        self._fire("onPlaybackRateChange", rate)


class FakeMediaElement:
    """Native media element; assigning current_time fires seeking/seeked."""

    def __init__(self, duration: float = 600.0) -> None:
        self._time = 0.0
        self.duration = duration
        self.playback_rate = 1.0
        self._handlers: dict[str, list[Callable[..., Any]]] = {}

    @property
    def current_time(self) -> float:
        return self._time

    @current_time.setter
    def current_time(self, value: float) -> None:
        self.fire("seeking")
        self._time = value
        self.fire("seeked")

    def add_event_listener(self, event: str, handler: Callable[..., Any]) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def remove_event_listener(self, event: str, handler: Callable[..., Any]) -> None:
        if handler in self._handlers.get(event, []):
            self._handlers[event].remove(handler)

    def listener_count(self) -> int:
        return sum(len(h) for h in self._handlers.values())

    def fire(self, event: str) -> None:
        for handler in list(self._handlers.get(event, [])):
            handler({"type": event})

    def play_to(self, seconds: float) -> None:
        """Normal playback up to ``seconds`` (fires timeupdate)."""
        self._time = seconds
        self.fire("timeupdate")

    def jump_silently(self, seconds: float) -> None:
        self._time = seconds

    def set_rate(self, rate: float) -> None:
        self.playback_rate = rate
        self.fire("ratechange")


def loaders_for(
    *,
    embedded: FakeEmbeddedPlayer | None = None,
    native: FakeMediaElement | None = None,
) -> PlayerLoaders:
    async def load_embedded(video_id: str) -> FakeEmbeddedPlayer:
        assert embedded is not None
        return embedded

    async def load_native(url: str) -> FakeMediaElement:
        assert native is not None
        return native

    return PlayerLoaders(
        embedded=load_embedded if embedded is not None else None,
        native=load_native if native is not None else None,
    )
