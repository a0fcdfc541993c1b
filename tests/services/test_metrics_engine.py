from __future__ import annotations

import pytest

from engagement.models.event import (
    CLICK_RELATED_LINK,
    DOWNLOAD_ATTACHMENT,
    INTERACTION_EVENT,
    VIDEO_PLAYER_EVENT,
    BehavioralEvent,
)
from engagement.models.progress import MetricsSnapshot
from engagement.services.metrics_engine import MetricsEngine, speed_weight


def _event(name: str, category: str = VIDEO_PLAYER_EVENT, **payload) -> BehavioralEvent:
    return BehavioralEvent(
        event_id="e-1",
        timestamp="2026-01-01T00:00:00+00:00",
        session_id="s-1",
        user_id="u-1",
        category=category,
        name=name,
        payload=payload,
    )


# ---- seek-back ----


@pytest.mark.parametrize(
    ("seek_from", "seek_to", "counted"),
    [
        (100, 92, True),
        (100, 98, False),
        (50, 80, False),
        (100, 95, False),
    ],
)
def test_seek_back_threshold(seek_from: float, seek_to: float, counted: bool) -> None:
    engine = MetricsEngine()
    engine.process_event(_event("seek", seek_from=seek_from, seek_to=seek_to))
    assert engine.metrics.seek_back_count == (1 if counted else 0)


def test_seek_with_missing_fields_is_ignored() -> None:
    engine = MetricsEngine()
    engine.process_event(_event("seek", seek_from=100))
    engine.process_event(_event("seek", seek_from="100", seek_to=10))
    assert engine.metrics.seek_back_count == 0


# ---- playback rate ----


def test_rate_change_to_double_speed_is_penalized() -> None:
    engine = MetricsEngine()
    engine.process_event(_event("rate_change", playback_rate=2.0))
    assert engine.metrics.playback_speed_penalty_count == 1
    assert engine.current_rate == 2.0

    engine.tick(True, interval=1.0)
    assert engine.metrics.true_engagement_score == pytest.approx(0.3)


def test_rate_change_below_penalty_not_counted() -> None:
    engine = MetricsEngine()
    engine.process_event(_event("rate_change", playback_rate=1.5))
    assert engine.metrics.playback_speed_penalty_count == 0


@pytest.mark.parametrize(
    ("rate", "weight"),
    [(1.0, 1.0), (0.5, 1.0), (1.25, 1.0), (1.5, 0.8), (1.75, 1.0), (2.0, 0.3), (3.0, 0.3)],
)
def test_speed_weight(rate: float, weight: float) -> None:
    assert speed_weight(rate) == weight


def test_tick_prefers_reported_rate_over_last_event() -> None:
    engine = MetricsEngine()
    engine.tick(True, current_time=10.0, playback_rate=1.5)
    assert engine.metrics.true_engagement_score == pytest.approx(0.8)


# ---- ticks ----


def test_ticks_accumulate_play_time_and_never_lower_tes() -> None:
    engine = MetricsEngine()
    intervals = [1.0, 1.0, 0.5, 2.0, 1.0]
    rates = [1.0, 2.0, 1.5, 1.0, 3.0]
    previous = 0.0
    for interval, rate in zip(intervals, rates):
        engine.tick(True, playback_rate=rate, interval=interval)
        assert engine.metrics.true_engagement_score >= previous
        previous = engine.metrics.true_engagement_score

    assert engine.metrics.total_play_time == pytest.approx(sum(intervals))


def test_tick_while_paused_changes_nothing() -> None:
    engine = MetricsEngine()
    engine.tick(False, current_time=30.0)
    assert engine.metrics == MetricsSnapshot()


def test_tick_records_drop_off_and_seek_back_rate() -> None:
    engine = MetricsEngine()
    engine.process_event(_event("seek", seek_from=100, seek_to=50))
    for second in range(30):
        engine.tick(True, current_time=float(second))
    assert engine.metrics.drop_off_time == 29.0
    # 1 seek-back over half a minute
    assert engine.metrics.seek_back_rate == 2.0


def test_non_finite_tick_position_is_ignored() -> None:
    engine = MetricsEngine()
    engine.tick(True, current_time=12.0)
    engine.tick(True, current_time=float("nan"))
    assert engine.metrics.drop_off_time == 12.0


# ---- interactions ----


def test_interactions_counted() -> None:
    engine = MetricsEngine()
    engine.process_event(_event(DOWNLOAD_ATTACHMENT, category=INTERACTION_EVENT))
    engine.process_event(_event(CLICK_RELATED_LINK, category=INTERACTION_EVENT))
    engine.process_event(_event("share", category=INTERACTION_EVENT))
    assert engine.metrics.interaction_count == 2


def test_event_position_updates_drop_off_and_duration() -> None:
    engine = MetricsEngine()
    engine.process_event(_event("pause", video_current_time=42.0, video_duration=600.0))
    assert engine.metrics.drop_off_time == 42.0
    assert engine.total_duration == 600.0


def test_snapshot_is_a_copy() -> None:
    engine = MetricsEngine()
    snap = engine.snapshot()
    engine.tick(True)
    assert snap.total_play_time == 0.0
    assert engine.metrics.total_play_time == 1.0
