"""Playback sources: one event vocabulary over two player backends.

The rest of the system never talks to a player directly.  It talks to a
PlaybackSource, which emits PlaybackSignals and answers three questions
(where are we, how long is it, how fast is it playing).

  EmbeddedPlayerAdapter: third-party IFrame-style player.  It reports
    state changes (PLAYING/PAUSED/ENDED) and rate changes, but has no
    seek signal.  Seeks are inferred by whoever samples current_time()
    and fed back through report_jump().

  NativeMediaAdapter: native media element with real play/pause/
    seeking/seeked/ratechange/ended/timeupdate events.

Players are created by host-supplied async loaders.  A loader that fails
or times out produces an UnavailablePlaybackSource whose state says so;
callers check ``state`` instead of guessing from silence.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable
from urllib.parse import parse_qs, urlparse

from engagement.core.metrics import PLAYER_UNAVAILABLE
from engagement.models.course import UnitDefinition
from engagement.models.event import finite_or_none

logger = logging.getLogger(__name__)

# Signal kinds
PLAY = "play"
PAUSE = "pause"
SEEKING = "seeking"
SEEKED = "seeked"
RATE_CHANGE = "rate_change"
ENDED = "ended"
TIME_UPDATE = "time_update"

# Source states
READY = "ready"
UNAVAILABLE = "unavailable"
DETACHED = "detached"

EMBEDDED = "embedded"
NATIVE = "native"


class PlayerUnavailableError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class PlaybackSignal:
    kind: str
    position: float | None = None
    rate: float | None = None
    # True for seeks the system issued itself (resume, guard correction)
    system: bool = False


Listener = Callable[[PlaybackSignal], None]


@runtime_checkable
class PlaybackSource(Protocol):
    backend: str

    @property
    def state(self) -> str: ...
    def subscribe(self, listener: Listener) -> Callable[[], None]: ...
    def current_time(self) -> float: ...
    def duration(self) -> float | None: ...
    def playback_rate(self) -> float: ...
    def seek_to(self, seconds: float, *, system: bool = False) -> None: ...
    def detach(self) -> None: ...


class EmbeddedPlayer(Protocol):
    """The subset of an IFrame player API the adapter relies on."""

    def add_event_listener(self, event: str, handler: Callable[..., Any]) -> None: ...
    def remove_event_listener(
        self, event: str, handler: Callable[..., Any]
    ) -> None: ...
    def get_current_time(self) -> float: ...
    def get_duration(self) -> float: ...
    def get_playback_rate(self) -> float: ...
    def seek_to(self, seconds: float, allow_seek_ahead: bool) -> None: ...
    def destroy(self) -> None: ...


class MediaElement(Protocol):
    current_time: float
    duration: float
    playback_rate: float

    def add_event_listener(self, event: str, handler: Callable[..., Any]) -> None: ...
    def remove_event_listener(
        self, event: str, handler: Callable[..., Any]
    ) -> None: ...


class _SignalSource:
    """Listener bookkeeping shared by both adapters."""

    backend = ""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._state = READY

    @property
    def state(self) -> str:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, signal: PlaybackSignal) -> None:
        if self._state != READY:
            return
        for listener in list(self._listeners):
            listener(signal)

    def detach(self) -> None:
        self._listeners.clear()
        self._state = DETACHED


# ---------------------------------------------------------------------------
# Embedded (IFrame) player
# ---------------------------------------------------------------------------

# IFrame player state codes
STATE_ENDED = 0
STATE_PLAYING = 1
STATE_PAUSED = 2

_STATE_SIGNALS = {
    STATE_PLAYING: PLAY,
    STATE_PAUSED: PAUSE,
    STATE_ENDED: ENDED,
}


class EmbeddedPlayerAdapter(_SignalSource):
    backend = EMBEDDED

    def __init__(self, player: EmbeddedPlayer) -> None:
        super().__init__()
        self._player = player
        player.add_event_listener("onStateChange", self._on_state_change)
        player.add_event_listener("onPlaybackRateChange", self._on_rate_change)

    def _on_state_change(self, state: int) -> None:
        kind = _STATE_SIGNALS.get(state)
        if kind is None:
            return  # buffering, cued, unstarted
        self._emit(PlaybackSignal(kind, position=self.current_time()))

    def _on_rate_change(self, rate: float) -> None:
        self._emit(
            PlaybackSignal(
                RATE_CHANGE,
                position=self.current_time(),
                rate=finite_or_none(rate),
            )
        )

    def report_jump(self, seek_from: float, seek_to: float) -> None:
        """Emit the seeking/seeked pair the player itself never fires."""
        self._emit(PlaybackSignal(SEEKING, position=seek_from))
        self._emit(PlaybackSignal(SEEKED, position=seek_to))

    def current_time(self) -> float:
        return finite_or_none(self._player.get_current_time()) or 0.0

    def duration(self) -> float | None:
        return finite_or_none(self._player.get_duration())

    def playback_rate(self) -> float:
        return finite_or_none(self._player.get_playback_rate()) or 1.0

    def seek_to(self, seconds: float, *, system: bool = False) -> None:
        # The IFrame API fires no seek events, so ``system`` has nothing to tag.
        self._player.seek_to(seconds, True)

    def detach(self) -> None:
        if self._state == DETACHED:
            return
        self._player.remove_event_listener("onStateChange", self._on_state_change)
        self._player.remove_event_listener(
            "onPlaybackRateChange", self._on_rate_change
        )
        try:
            self._player.destroy()
        except Exception:
            logger.warning("Embedded player raised during destroy", exc_info=True)
        super().detach()


# ---------------------------------------------------------------------------
# Native media element
# ---------------------------------------------------------------------------

_MEDIA_EVENTS = {
    "play": PLAY,
    "pause": PAUSE,
    "seeking": SEEKING,
    "seeked": SEEKED,
    "ratechange": RATE_CHANGE,
    "ended": ENDED,
    "timeupdate": TIME_UPDATE,
}


class NativeMediaAdapter(_SignalSource):
    backend = NATIVE

    def __init__(self, element: MediaElement) -> None:
        super().__init__()
        self._element = element
        self._pending_system_seeks = 0
        self._system_seek_active = False
        self._handlers: dict[str, Callable[..., None]] = {}
        for media_event, kind in _MEDIA_EVENTS.items():
            handler = functools.partial(self._on_media_event, kind)
            element.add_event_listener(media_event, handler)
            self._handlers[media_event] = handler

    def _on_media_event(self, kind: str, *_event: Any) -> None:
        system = False
        if kind == SEEKING and self._pending_system_seeks:
            self._pending_system_seeks -= 1
            self._system_seek_active = True
            system = True
        elif kind == SEEKED and self._system_seek_active:
            self._system_seek_active = False
            system = True

        self._emit(
            PlaybackSignal(
                kind,
                position=self.current_time(),
                rate=self.playback_rate() if kind == RATE_CHANGE else None,
                system=system,
            )
        )

    def current_time(self) -> float:
        return finite_or_none(self._element.current_time) or 0.0

    def duration(self) -> float | None:
        return finite_or_none(self._element.duration)

    def playback_rate(self) -> float:
        return finite_or_none(self._element.playback_rate) or 1.0

    def seek_to(self, seconds: float, *, system: bool = False) -> None:
        if system:
            self._pending_system_seeks += 1
        self._element.current_time = seconds

    def detach(self) -> None:
        if self._state == DETACHED:
            return
        for media_event, handler in self._handlers.items():
            self._element.remove_event_listener(media_event, handler)
        self._handlers.clear()
        super().detach()


# ---------------------------------------------------------------------------
# Unavailable player
# ---------------------------------------------------------------------------


class UnavailablePlaybackSource:
    """Stands in for a player that never initialized."""

    def __init__(self, backend: str, reason: str) -> None:
        self.backend = backend
        self.reason = reason

    @property
    def state(self) -> str:
        return UNAVAILABLE

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return lambda: None

    def current_time(self) -> float:
        return 0.0

    def duration(self) -> float | None:
        return None

    def playback_rate(self) -> float:
        return 1.0

    def seek_to(self, seconds: float, *, system: bool = False) -> None:
        raise PlayerUnavailableError(self.reason)

    def detach(self) -> None:
        pass


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

_VIDEO_ID = re.compile(r"^[A-Za-z0-9_-]{11}$")


def embed_video_id(url: str) -> str | None:
    """Extract the embeddable video id from a watch/short/embed URL or bare id."""
    url = url.strip()
    if not url:
        return None
    if _VIDEO_ID.match(url):
        return url

    parsed = urlparse(url)
    host = parsed.netloc.lower()
    if host.endswith("youtu.be"):
        candidate = parsed.path.lstrip("/").split("/")[0]
    elif "youtube.com" in host and parsed.path.startswith("/embed/"):
        candidate = parsed.path[len("/embed/") :].split("/")[0]
    elif "youtube.com" in host and parsed.path.startswith("/watch"):
        candidate = parse_qs(parsed.query).get("v", [""])[0]
    else:
        return None
    return candidate or None


EmbeddedLoader = Callable[[str], Awaitable[EmbeddedPlayer]]
NativeLoader = Callable[[str], Awaitable[MediaElement]]


@dataclass(frozen=True, slots=True)
class PlayerLoaders:
    """Host hooks that create concrete players.

    embedded: video id -> IFrame player, once the player API has loaded
    native:   media URL -> media element
    """

    embedded: EmbeddedLoader | None = None
    native: NativeLoader | None = None


def _unavailable(backend: str, reason: str) -> UnavailablePlaybackSource:
    PLAYER_UNAVAILABLE.labels(backend=backend).inc()
    logger.warning("Player unavailable backend=%s: %s", backend, reason)
    return UnavailablePlaybackSource(backend, reason)


async def open_playback_source(
    unit: UnitDefinition,
    resume_position: float,
    loaders: PlayerLoaders,
    *,
    timeout: float,
) -> PlaybackSource:
    """Create the adapter for ``unit`` and position it at ``resume_position``."""
    if unit.is_direct_media:
        backend, target, loader = NATIVE, unit.url, loaders.native
    else:
        backend, loader = EMBEDDED, loaders.embedded
        target = embed_video_id(unit.url) or ""

    if not target:
        return _unavailable(backend, "no playable video configured for this unit")
    if loader is None:
        return _unavailable(backend, f"no {backend} player loader configured")

    try:
        handle = await asyncio.wait_for(loader(target), timeout)
    except TimeoutError:
        return _unavailable(
            backend, f"{backend} player did not initialize within {timeout:g}s"
        )
    except Exception as exc:
        logger.debug("Player loader failed", exc_info=True)
        return _unavailable(backend, f"{backend} player failed to load: {exc}")

    source: EmbeddedPlayerAdapter | NativeMediaAdapter
    if backend == NATIVE:
        source = NativeMediaAdapter(handle)  # type: ignore[arg-type]
    else:
        source = EmbeddedPlayerAdapter(handle)  # type: ignore[arg-type]

    if resume_position > 0:
        source.seek_to(resume_position, system=True)
    return source
