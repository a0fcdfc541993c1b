"""Behavioral event tracker.

Listens to one PlaybackSource and turns its signals into BehavioralEvents,
handing each event to ``hook`` exactly once.  The hook is the fan-out point
into the MetricsEngine; it belongs to this tracker instance only, so two
units never share one.
"""

from __future__ import annotations

import datetime
import logging
import uuid
from collections.abc import Callable, Mapping
from typing import Any

from engagement.core.metrics import BEHAVIORAL_EVENTS
from engagement.models.event import (
    INTERACTION_EVENT,
    SYSTEM_EVENT,
    VIDEO_PLAYER_EVENT,
    BehavioralEvent,
    EventContext,
)
from engagement.services.playback import (
    ENDED,
    PAUSE,
    PLAY,
    RATE_CHANGE,
    SEEKED,
    SEEKING,
    PlaybackSignal,
    PlaybackSource,
)

logger = logging.getLogger(__name__)

EventHook = Callable[[BehavioralEvent], None]


def build_event(
    *,
    category: str,
    name: str,
    session_id: str,
    user_id: str,
    context: EventContext,
    source: PlaybackSource | None = None,
    payload: Mapping[str, Any] | None = None,
    now: datetime.datetime | None = None,
) -> BehavioralEvent:
    """Pure builder: stamps identity and, with a source, the player snapshot."""
    body = dict(payload or {})
    if source is not None:
        body["video_current_time"] = source.current_time()
        body["video_duration"] = source.duration()
        body["playback_rate"] = source.playback_rate()

    stamp = now or datetime.datetime.now(datetime.UTC)
    return BehavioralEvent(
        event_id=str(uuid.uuid4()),
        timestamp=stamp.isoformat(),
        session_id=session_id,
        user_id=user_id,
        category=category,
        name=name,
        context=context,
        payload=body,
    )


class BehavioralEventTracker:
    def __init__(
        self,
        *,
        session_id: str | None = None,
        user_id: str = "anonymous",
        context: EventContext | None = None,
        hook: EventHook | None = None,
    ) -> None:
        self.session_id = session_id or str(uuid.uuid4())
        self.user_id = user_id
        self.context = context or EventContext()
        self.hook = hook

        self._source: PlaybackSource | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._seeking = False
        self._seek_from = 0.0

    @property
    def is_seeking(self) -> bool:
        return self._seeking

    def attach(self, source: PlaybackSource) -> None:
        if self._source is not None:
            self.detach_source()
        self._source = source
        self._unsubscribe = source.subscribe(self._on_signal)
        self.track_page_view()

    def track_page_view(self) -> BehavioralEvent:
        return self.track_event(SYSTEM_EVENT, "page_view", {"url": self.context.page_url})

    def detach_source(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
        self._unsubscribe = None
        self._source = None
        self._seeking = False

    def detach(self) -> None:
        """Stop listening and drop the hook; nothing reaches the hook afterwards."""
        self.detach_source()
        self.hook = None

    def track_event(
        self,
        category: str,
        name: str,
        payload: Mapping[str, Any] | None = None,
    ) -> BehavioralEvent:
        event = build_event(
            category=category,
            name=name,
            session_id=self.session_id,
            user_id=self.user_id,
            context=self.context,
            source=self._source,
            payload=payload,
        )
        BEHAVIORAL_EVENTS.labels(category=category, name=name).inc()
        logger.debug("Tracked %s/%s", category, name, extra={"event_name": name})

        if self.hook is not None:
            self.hook(event)
        return event

    def track_interaction(
        self, action: str, target_id: str, target_type: str
    ) -> BehavioralEvent:
        return self.track_event(
            INTERACTION_EVENT,
            action,
            {"target_id": target_id, "target_type": target_type},
        )

    def track_correction(self, seek_from: float, seek_to: float) -> BehavioralEvent:
        """Record a system-initiated reposition (never counted as a learner seek)."""
        return self.track_event(
            SYSTEM_EVENT,
            "guard_correction",
            {"seek_from": seek_from, "seek_to": seek_to},
        )

    # --- signal handlers ---

    def _on_signal(self, signal: PlaybackSignal) -> None:
        if signal.kind == PLAY:
            self.track_event(VIDEO_PLAYER_EVENT, "play")
        elif signal.kind == PAUSE:
            # Some players fire a pause while scrubbing
            if not self._seeking:
                self.track_event(VIDEO_PLAYER_EVENT, "pause")
        elif signal.kind == SEEKING:
            if signal.system:
                return
            self._seeking = True
            self._seek_from = signal.position or 0.0
        elif signal.kind == SEEKED:
            if signal.system or not self._seeking:
                return
            self._seeking = False
            self.track_event(
                VIDEO_PLAYER_EVENT,
                "seek",
                {"seek_from": self._seek_from, "seek_to": signal.position},
            )
        elif signal.kind == RATE_CHANGE:
            self.track_event(VIDEO_PLAYER_EVENT, "rate_change")
        elif signal.kind == ENDED:
            self.track_event(VIDEO_PLAYER_EVENT, "complete")
