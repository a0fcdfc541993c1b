from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from engagement.models.course import UnitDefinition
from engagement.models.event import finite_or_none

NOT_STARTED = "not-started"
IN_PROGRESS = "in-progress"
COMPLETED = "completed"


@dataclass(slots=True)
class MetricsSnapshot:
    """Mutable accumulator owned by exactly one MetricsEngine."""

    seek_back_count: int = 0
    seek_back_rate: float = 0.0
    true_engagement_score: float = 0.0
    playback_speed_penalty_count: int = 0
    drop_off_time: float | None = None
    interaction_count: int = 0
    total_play_time: float = 0.0

    def copy(self) -> MetricsSnapshot:
        return dataclasses.replace(self)

    def to_document(self) -> dict[str, Any]:
        return {
            "seekBackCount": self.seek_back_count,
            "seekBackRate": self.seek_back_rate,
            "trueEngagementScore": self.true_engagement_score,
            "playbackSpeedPenaltyCount": self.playback_speed_penalty_count,
            "dropOffTime": self.drop_off_time,
            "interactionCount": self.interaction_count,
            "totalPlayTime": self.total_play_time,
        }

    @staticmethod
    def from_document(doc: Mapping[str, Any]) -> MetricsSnapshot:
        return MetricsSnapshot(
            seek_back_count=int(doc.get("seekBackCount") or 0),
            seek_back_rate=float(doc.get("seekBackRate") or 0.0),
            true_engagement_score=float(doc.get("trueEngagementScore") or 0.0),
            playback_speed_penalty_count=int(doc.get("playbackSpeedPenaltyCount") or 0),
            drop_off_time=finite_or_none(doc.get("dropOffTime")),
            interaction_count=int(doc.get("interactionCount") or 0),
            total_play_time=float(doc.get("totalPlayTime") or 0.0),
        )


@dataclass(frozen=True, slots=True)
class UnitProgress:
    """Progress of one user through one unit of one course.

    ``completed`` only ever goes from False to True; the controller never
    clears it.  ``reinitialize`` is the explicit reset.
    """

    unit_index: int
    unit_title: str
    type: str  # video|quiz
    last_position: float = 0.0
    duration: float = 0.0
    completed: bool = False
    quiz_completed: bool = False
    last_access_time: str | None = None
    view_count: int = 0
    behavioral_metrics: MetricsSnapshot | None = None

    @staticmethod
    def not_started(unit_index: int, unit: UnitDefinition) -> UnitProgress:
        return UnitProgress(unit_index=unit_index, unit_title=unit.title, type=unit.type)

    @property
    def is_done(self) -> bool:
        return self.completed or self.quiz_completed

    def reinitialize(self) -> UnitProgress:
        return UnitProgress(
            unit_index=self.unit_index, unit_title=self.unit_title, type=self.type
        )

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "unitIndex": self.unit_index,
            "unitTitle": self.unit_title,
            "type": self.type,
            "lastPosition": self.last_position,
            "duration": self.duration,
            "completed": self.completed,
            "quizCompleted": self.quiz_completed,
            "lastAccessTime": self.last_access_time,
            "viewCount": self.view_count,
        }
        if self.behavioral_metrics is not None:
            doc["behavioralMetrics"] = self.behavioral_metrics.to_document()
        return doc

    @staticmethod
    def from_document(doc: Mapping[str, Any]) -> UnitProgress:
        metrics = doc.get("behavioralMetrics")
        return UnitProgress(
            unit_index=int(doc["unitIndex"]),
            unit_title=str(doc.get("unitTitle") or ""),
            type=str(doc.get("type") or "video"),
            last_position=finite_or_none(doc.get("lastPosition")) or 0.0,
            duration=finite_or_none(doc.get("duration")) or 0.0,
            completed=bool(doc.get("completed", False)),
            quiz_completed=bool(doc.get("quizCompleted", False)),
            last_access_time=doc.get("lastAccessTime"),
            view_count=int(doc.get("viewCount") or 0),
            behavioral_metrics=(
                MetricsSnapshot.from_document(metrics) if metrics else None
            ),
        )


def clamp_position(position: float, duration: float) -> float:
    """Keep 0 <= position <= duration (when duration is known)."""
    position = max(position, 0.0)
    if duration > 0:
        position = min(position, duration)
    return position


def completion_rate(completed_units: int, total_units: int) -> int:
    if total_units <= 0:
        return 0
    ratio = Decimal(100 * completed_units) / Decimal(total_units)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def status_for(rate: int) -> str:
    if rate <= 0:
        return NOT_STARTED
    if rate >= 100:
        return COMPLETED
    return IN_PROGRESS


@dataclass(frozen=True, slots=True)
class CourseProgress:
    """Course roll-up, recomputed from the unit array on every save."""

    completed_units: int
    total_units: int
    completion_rate: int
    status: str  # not-started|in-progress|completed
