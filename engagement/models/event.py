from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

VIDEO_PLAYER_EVENT = "video_player_event"
INTERACTION_EVENT = "interaction_event"
SYSTEM_EVENT = "system_event"

EVENT_CATEGORIES = frozenset({VIDEO_PLAYER_EVENT, INTERACTION_EVENT, SYSTEM_EVENT})

# Interactions that count towards interaction_count
DOWNLOAD_ATTACHMENT = "download_attachment"
CLICK_RELATED_LINK = "click_related_link"

_TABLET_UA = re.compile(r"(tablet|ipad|playbook|silk)|(android(?!.*mobi))", re.I)
_MOBILE_UA = re.compile(
    r"Mobile|Android|iP(hone|od)|IEMobile|BlackBerry|Kindle|Silk-Accelerated"
    r"|(hpw|web)OS|Opera M(obi|ini)"
)


def device_type(user_agent: str) -> str:
    """Classify a user agent as tablet|mobile|desktop."""
    if _TABLET_UA.search(user_agent):
        return "tablet"
    if _MOBILE_UA.search(user_agent):
        return "mobile"
    return "desktop"


def finite_or_none(value: Any) -> float | None:
    """Numeric payload value, or None when missing/NaN/non-numeric."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


@dataclass(frozen=True, slots=True)
class EventContext:
    page_url: str = ""
    user_agent: str = ""
    device_type: str = "desktop"

    @staticmethod
    def from_user_agent(page_url: str, user_agent: str) -> EventContext:
        return EventContext(
            page_url=page_url,
            user_agent=user_agent,
            device_type=device_type(user_agent),
        )


@dataclass(frozen=True, slots=True)
class BehavioralEvent:
    """One observed learner/player transition.

    Never mutated after construction; ``payload`` is a read-only view.
    ``to_dict`` produces the stored/exported schema, whose key names other
    tooling depends on.
    """

    event_id: str
    timestamp: str
    session_id: str
    user_id: str
    category: str  # video_player_event|interaction_event|system_event
    name: str  # play|pause|seek|rate_change|complete|page_view|...
    context: EventContext = EventContext()
    payload: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.category not in EVENT_CATEGORIES:
            raise ValueError(f"unknown event category {self.category!r}")
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    def number(self, key: str) -> float | None:
        return finite_or_none(self.payload.get(key))

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "timestamp": self.timestamp,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "event_category": self.category,
            "event_name": self.name,
            "context": {
                "page_url": self.context.page_url,
                "user_agent": self.context.user_agent,
                "device_type": self.context.device_type,
            },
            "payload": dict(self.payload),
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> BehavioralEvent:
        ctx = data.get("context") or {}
        return BehavioralEvent(
            event_id=str(data["event_id"]),
            timestamp=str(data["timestamp"]),
            session_id=str(data["session_id"]),
            user_id=str(data["user_id"]),
            category=str(data["event_category"]),
            name=str(data["event_name"]),
            context=EventContext(
                page_url=ctx.get("page_url", ""),
                user_agent=ctx.get("user_agent", ""),
                device_type=ctx.get("device_type", "desktop"),
            ),
            payload=data.get("payload") or {},
        )
