from __future__ import annotations

import math

import pytest

from engagement.models.event import (
    SYSTEM_EVENT,
    VIDEO_PLAYER_EVENT,
    BehavioralEvent,
    EventContext,
    device_type,
    finite_or_none,
)


def _event(**overrides) -> BehavioralEvent:
    values = {
        "event_id": "e-1",
        "timestamp": "2026-03-01T10:00:00+00:00",
        "session_id": "s-1",
        "user_id": "u-1",
        "category": VIDEO_PLAYER_EVENT,
        "name": "pause",
        "context": EventContext(page_url="https://lms.test/c/1"),
        "payload": {"video_current_time": 12.5},
    }
    values.update(overrides)
    return BehavioralEvent(**values)


@pytest.mark.parametrize(
    ("user_agent", "expected"),
    [
        ("Mozilla/5.0 (iPad; CPU OS 16_0 like Mac OS X)", "tablet"),
        ("Mozilla/5.0 (Linux; Android 13; SM-X700) AppleWebKit", "tablet"),
        ("Mozilla/5.0 (Linux; Android 13; Pixel 7) Mobile Safari", "mobile"),
        ("Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X)", "mobile"),
        ("Mozilla/5.0 (Windows NT 10.0; Win64; x64)", "desktop"),
        ("", "desktop"),
    ],
)
def test_device_type(user_agent: str, expected: str) -> None:
    assert device_type(user_agent) == expected


@pytest.mark.parametrize(
    ("value", "expected"),
    [(3, 3.0), (2.5, 2.5), ("2.5", None), (None, None), (True, None), (math.inf, None)],
)
def test_finite_or_none(value, expected) -> None:
    assert finite_or_none(value) == expected


def test_finite_or_none_nan() -> None:
    assert finite_or_none(float("nan")) is None


def test_wire_format_keys() -> None:
    data = _event().to_dict()
    assert data["event_category"] == VIDEO_PLAYER_EVENT
    assert data["event_name"] == "pause"
    assert data["context"] == {
        "page_url": "https://lms.test/c/1",
        "user_agent": "",
        "device_type": "desktop",
    }
    assert data["payload"] == {"video_current_time": 12.5}


def test_from_dict_reads_wire_format() -> None:
    original = _event(category=SYSTEM_EVENT, name="page_view", payload={"url": "x"})
    assert BehavioralEvent.from_dict(original.to_dict()) == original


def test_unknown_category_rejected() -> None:
    with pytest.raises(ValueError, match="unknown event category"):
        _event(category="clickstream")


def test_payload_is_read_only() -> None:
    event = _event()
    with pytest.raises(TypeError):
        event.payload["video_current_time"] = 0  # type: ignore[index]


def test_payload_copied_from_caller() -> None:
    payload = {"seek_from": 1.0}
    event = _event(payload=payload)
    payload["seek_from"] = 99.0
    assert event.payload["seek_from"] == 1.0


def test_number_treats_garbage_as_unknown() -> None:
    event = _event(payload={"seek_from": "ten", "seek_to": float("nan")})
    assert event.number("seek_from") is None
    assert event.number("seek_to") is None
    assert event.number("missing") is None


def test_context_from_user_agent() -> None:
    ctx = EventContext.from_user_agent("https://lms.test", "Mozilla/5.0 (iPhone)")
    assert ctx.device_type == "mobile"
