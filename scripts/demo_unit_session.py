"""Demo: one learner watching the sample course, then reading progress over HTTP.

Uses a scripted media element in place of a browser player and the
in-memory progress store.  Run with:
    python scripts/demo_unit_session.py
"""

from __future__ import annotations

import asyncio
import dataclasses

from fastapi.testclient import TestClient

from engagement.core.config import SETTINGS
from engagement.main import app
from engagement.models.principal import Principal
from engagement.repos.course_catalog import course_catalog
from engagement.repos.progress_store import progress_store
from engagement.services import token_service
from engagement.services.playback import PlayerLoaders
from engagement.services.progress_controller import UnitProgressController

LEARNER = Principal(user_id="demo-learner", roles=frozenset({"user"}))


class ScriptedMediaElement:
    """Just enough of a media element to drive the native adapter."""

    def __init__(self, duration: float) -> None:
        self._time = 0.0
        self.duration = duration
        self.playback_rate = 1.0
        self._handlers: dict[str, list] = {}

    @property
    def current_time(self) -> float:
        return self._time

    @current_time.setter
    def current_time(self, value: float) -> None:
        self.fire("seeking")
        self._time = value
        self.fire("seeked")

    def add_event_listener(self, event, handler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def remove_event_listener(self, event, handler) -> None:
        if handler in self._handlers.get(event, []):
            self._handlers[event].remove(handler)

    def fire(self, event: str) -> None:
        for handler in list(self._handlers.get(event, [])):
            handler({"type": event})

    def play_to(self, seconds: float) -> None:
        self._time = seconds
        self.fire("timeupdate")


async def watch_part_two() -> None:
    course = course_catalog.get("privacy-101")
    element = ScriptedMediaElement(duration=120.0)

    async def load_native(url: str) -> ScriptedMediaElement:
        return element

    controller = UnitProgressController(
        principal=LEARNER,
        course=course,
        store=progress_store,
        loaders=PlayerLoaders(native=load_native),
        settings=dataclasses.replace(SETTINGS, metrics_tick_interval=0.01),
    )
    session = await controller.activate(1)
    print(f"1. activate unit 1           → {session.state}")

    element.fire("play")
    for second in range(1, 31):
        element.play_to(float(second))
    await asyncio.sleep(0.05)
    print(f"2. played to 30s             → {session.state}")

    element.current_time = 100.0
    print(f"3. learner skips to 100s     → clamped to {element.current_time:.0f}s")

    element.current_time = 5.0
    print("4. learner rewinds to 5s     → counted as a seek-back")

    for second in range(6, 111):
        element.play_to(float(second))
    element.fire("pause")
    await asyncio.sleep(0.01)
    print(f"5. watched to 110s, pause    → {session.state}")

    await controller.activate(2)
    await controller.confirm_quiz("pdpa2024")
    print(f"6. quiz confirmed            → {controller.course_progress}")
    await controller.close()

    metrics = session.progress.behavioral_metrics
    print(
        f"   metrics: seek_backs={metrics.seek_back_count} "
        f"play_time={metrics.total_play_time:.2f}s tes={metrics.true_engagement_score:.2f}"
    )


def main() -> None:
    asyncio.run(watch_part_two())

    client = TestClient(app)
    token = token_service.create_access_token(sub=LEARNER.user_id)
    r = client.get(
        "/v1/courses/privacy-101/progress",
        headers={"Authorization": f"Bearer {token}"},
    )
    body = r.json()
    print(
        f"7. GET  /v1/courses/privacy-101/progress → {r.status_code}  "
        f"{body['completion_rate']}% {body['status']}"
    )


if __name__ == "__main__":
    main()
