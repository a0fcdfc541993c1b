"""Behavioral metrics accumulator.

Consumes BehavioralEvents (process_event) and a wall-clock tick (tick) and
maintains one MetricsSnapshot.  No I/O, no clocks, no exceptions on
malformed input: a missing or non-numeric field is "unknown" and whatever
depends on it is skipped for that event.

  True Engagement Score (TES)
    Each tick while playing adds ``interval * weight``:
      rate == 1.5  -> 0.8
      rate >= 2.0  -> 0.3
      otherwise    -> 1.0

  Seek-back
    A backward seek of more than 5 seconds is a rewatch, i.e. interest.
    Forward seeks and small instinctive rewinds are ignored.
    seek_back_rate is per minute of accumulated play time so short and
    long units compare.
"""

from __future__ import annotations

from engagement.models.event import (
    CLICK_RELATED_LINK,
    DOWNLOAD_ATTACHMENT,
    BehavioralEvent,
    finite_or_none,
)
from engagement.models.progress import MetricsSnapshot

SEEK_BACK_THRESHOLD = -5.0
PENALTY_RATE = 2.0

_INTERACTIONS = frozenset({DOWNLOAD_ATTACHMENT, CLICK_RELATED_LINK})


def speed_weight(rate: float) -> float:
    if rate >= PENALTY_RATE:
        return 0.3
    if rate == 1.5:
        return 0.8
    return 1.0


class MetricsEngine:
    def __init__(self, snapshot: MetricsSnapshot | None = None) -> None:
        self.metrics = snapshot.copy() if snapshot is not None else MetricsSnapshot()
        self.current_rate = 1.0
        self.total_duration: float | None = None

    def process_event(self, event: BehavioralEvent) -> None:
        duration = event.number("video_duration")
        if duration:
            self.total_duration = duration

        if event.name == "seek":
            self._analyze_seek(event.number("seek_from"), event.number("seek_to"))
        elif event.name == "rate_change":
            rate = event.number("playback_rate")
            if rate is not None:
                self.current_rate = rate
                if rate >= PENALTY_RATE:
                    self.metrics.playback_speed_penalty_count += 1
        elif event.name in _INTERACTIONS:
            self.metrics.interaction_count += 1

        position = event.number("video_current_time")
        if position is not None:
            self.metrics.drop_off_time = position

    def _analyze_seek(self, seek_from: float | None, seek_to: float | None) -> None:
        if seek_from is None or seek_to is None:
            return
        if seek_to - seek_from < SEEK_BACK_THRESHOLD:
            self.metrics.seek_back_count += 1

    def tick(
        self,
        is_playing: bool,
        current_time: float | None = None,
        playback_rate: float | None = None,
        interval: float = 1.0,
    ) -> None:
        if not is_playing:
            return

        rate = finite_or_none(playback_rate)
        if rate is None:
            rate = self.current_rate

        self.metrics.true_engagement_score += interval * speed_weight(rate)
        self.metrics.total_play_time += interval

        position = finite_or_none(current_time)
        if position is not None:
            self.metrics.drop_off_time = position

        minutes = self.metrics.total_play_time / 60
        if minutes > 0:
            self.metrics.seek_back_rate = round(
                self.metrics.seek_back_count / minutes, 2
            )

    def snapshot(self) -> MetricsSnapshot:
        return self.metrics.copy()
