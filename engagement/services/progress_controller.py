"""Per-unit progress controller.

One UnitProgressController serves one learner looking at one course.  At
most one unit is active at a time; everything that belongs to the active
unit lives on a UnitSession:

  source   PlaybackSource for the unit's video
  tracker  BehavioralEventTracker -> engine.process_event
  engine   MetricsEngine for this viewing only
  guard    AntiSkipGuard seeded from the stored position
  tasks    metrics tick (~1s), autosave (10s), guard sampler (embedded only)
  lock     serializes this unit's Progress Store writes

State machine
-------------
  idle -> activating -> ready -> playing <-> paused -> completed
                   \\-> unavailable         (seeking is transient and
                                            resolves to playing/paused)
  any -> closed on teardown

Saves happen on activation, on every pause/seek/end, on the autosave tick
while playing, and once more on teardown.  Each save reads the player
position, merges the metrics snapshot, re-evaluates completion (which never
reverts) and re-aggregates the course.  The recorded position is capped at
the guard's watermark plus buffer; a guard check that arrives while a save
holds the lock is run as soon as that save releases it.

Teardown stops listeners and timers synchronously, then awaits one final
save.  Every callback checks ``session.closed`` first, so a timer that fired
just before teardown cannot tick, save, or seek on behalf of a dead unit.
"""

from __future__ import annotations

import asyncio
import contextvars
import dataclasses
import datetime
import enum
import functools
import logging
import time
import uuid
from collections.abc import Callable, Coroutine

from engagement.core.config import SETTINGS, Settings
from engagement.core.log_context import SessionLogContext, session_context
from engagement.core.metrics import (
    ACTIVE_UNIT_SESSIONS,
    GUARD_CORRECTIONS,
    PROGRESS_SAVE_DURATION,
    PROGRESS_SAVES,
)
from engagement.models.course import QUIZ, CourseDefinition, UnitDefinition
from engagement.models.event import EventContext
from engagement.models.principal import Principal
from engagement.models.progress import CourseProgress, UnitProgress, clamp_position
from engagement.repos.progress_store import ProgressStore, progress_store
from engagement.services.aggregator import aggregate, backfill, initial_units
from engagement.services.anti_skip import AntiSkipGuard
from engagement.services.metrics_engine import MetricsEngine
from engagement.services.playback import (
    ENDED,
    PAUSE,
    PLAY,
    SEEKED,
    SEEKING,
    TIME_UPDATE,
    UNAVAILABLE,
    EmbeddedPlayerAdapter,
    PlaybackSignal,
    PlaybackSource,
    PlayerLoaders,
    open_playback_source,
)
from engagement.services.tracker import BehavioralEventTracker

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = (
    "This video could not be loaded. Please check your connection and reopen "
    "the unit; progress for this unit is not being saved."
)


class QuizVerificationError(ValueError):
    pass


class UnitState(enum.StrEnum):
    IDLE = "idle"
    ACTIVATING = "activating"
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"
    SEEKING = "seeking"
    COMPLETED = "completed"
    UNAVAILABLE = "unavailable"
    CLOSED = "closed"


_TRANSITIONS: dict[UnitState, frozenset[UnitState]] = {
    UnitState.IDLE: frozenset({UnitState.ACTIVATING, UnitState.CLOSED}),
    UnitState.ACTIVATING: frozenset(
        {UnitState.READY, UnitState.COMPLETED, UnitState.UNAVAILABLE, UnitState.CLOSED}
    ),
    UnitState.READY: frozenset(
        {UnitState.PLAYING, UnitState.SEEKING, UnitState.COMPLETED, UnitState.CLOSED}
    ),
    UnitState.PLAYING: frozenset(
        {UnitState.PAUSED, UnitState.SEEKING, UnitState.COMPLETED, UnitState.CLOSED}
    ),
    UnitState.PAUSED: frozenset(
        {UnitState.PLAYING, UnitState.SEEKING, UnitState.COMPLETED, UnitState.CLOSED}
    ),
    UnitState.SEEKING: frozenset(
        {UnitState.PLAYING, UnitState.PAUSED, UnitState.COMPLETED, UnitState.CLOSED}
    ),
    UnitState.COMPLETED: frozenset({UnitState.CLOSED}),
    UnitState.UNAVAILABLE: frozenset({UnitState.CLOSED}),
    UnitState.CLOSED: frozenset(),
}


def _utcnow_iso() -> str:
    return datetime.datetime.now(datetime.UTC).isoformat()


class UnitSession:
    """Everything owned by one activation of one unit."""

    def __init__(
        self, unit_index: int, unit: UnitDefinition, progress: UnitProgress
    ) -> None:
        self.session_id = str(uuid.uuid4())
        self.unit_index = unit_index
        self.unit = unit
        self.progress = progress
        self.state = UnitState.IDLE

        self.source: PlaybackSource | None = None
        self.tracker: BehavioralEventTracker | None = None
        self.engine: MetricsEngine | None = None
        self.guard: AntiSkipGuard | None = None

        self.playing = False
        self.closed = False
        self.autosave_enabled = True
        self.error: str | None = None
        self.last_sample: float | None = None
        self.save_count = 0
        # A guard check was skipped because a save held the lock
        self.guard_deferred = False

        self.save_lock = asyncio.Lock()
        self.log_context: contextvars.Context | None = None
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe: Callable[[], None] | None = None

    def spawn(self, coro: Coroutine[object, object, object]) -> asyncio.Task | None:
        if self.closed:
            coro.close()
            return None
        task = asyncio.get_running_loop().create_task(coro, context=self.log_context)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def stop(self) -> None:
        """Synchronously silence the session: no further callbacks or timers."""
        self.closed = True
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        self._tasks.clear()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self.tracker is not None:
            self.tracker.detach()


class UnitProgressController:
    def __init__(
        self,
        *,
        principal: Principal,
        course: CourseDefinition,
        store: ProgressStore | None = None,
        loaders: PlayerLoaders | None = None,
        context: EventContext | None = None,
        settings: Settings = SETTINGS,
    ) -> None:
        self.user_id = principal.user_id
        self.course = course
        self._store = store if store is not None else progress_store
        self._loaders = loaders or PlayerLoaders()
        self._context = context or EventContext()
        self._settings = settings
        self._guard_bypass = principal.can_scrub_freely()

        self.units: list[UnitProgress] = []
        self.course_progress: CourseProgress = aggregate([])
        self.session: UnitSession | None = None
        self._loaded = False

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> CourseProgress:
        """Read the stored unit array, back-filling units added since."""
        stored = await self._store.load(self.user_id, self.course.id)
        if stored is None:
            # First visit: the document is created by the first activation save.
            self.units = initial_units(self.course)
        else:
            self.units, appended = backfill(stored, self.course)
            if appended:
                logger.info(
                    "Back-filled %d new unit(s) for course=%s",
                    len(self.units) - len(stored),
                    self.course.id,
                )
                await self._write(self.units)
        self.course_progress = aggregate(self.units)
        self._loaded = True
        return self.course_progress

    # ------------------------------------------------------------------
    # Activation / teardown
    # ------------------------------------------------------------------

    async def activate(self, unit_index: int) -> UnitSession:
        if not 0 <= unit_index < len(self.course.units):
            raise ValueError(f"unit index {unit_index} out of range")
        if not self._loaded:
            await self.load()

        await self.deactivate()

        unit = self.course.units[unit_index]
        stored = self._unit(unit_index)
        progress = dataclasses.replace(
            stored,
            view_count=stored.view_count + 1,
            last_access_time=_utcnow_iso(),
        )
        session = UnitSession(unit_index, unit, progress)
        self.session = session
        self._replace_unit(progress)
        ACTIVE_UNIT_SESSIONS.inc()

        log_ctx = SessionLogContext(
            session_id=session.session_id,
            user_id=self.user_id,
            course_id=self.course.id,
            unit_index=unit_index,
        )
        with session_context(log_ctx):
            session.log_context = contextvars.copy_context()
            self._transition(session, UnitState.ACTIVATING)

            if unit.is_video:
                await self._wire_video(session)
            else:
                session.tracker = BehavioralEventTracker(
                    session_id=session.session_id,
                    user_id=self.user_id,
                    context=self._context,
                )
                session.engine = MetricsEngine()
                session.tracker.hook = session.engine.process_event
                session.tracker.track_page_view()
                self._transition(
                    session,
                    UnitState.COMPLETED if progress.is_done else UnitState.READY,
                )

            if not session.closed:
                logger.info(
                    "Activated unit %d (%s) view=%d resume=%.1fs",
                    unit_index,
                    unit.type,
                    progress.view_count,
                    progress.last_position,
                )
                await self._save(session, "activate")
        return session

    async def _wire_video(self, session: UnitSession) -> None:
        progress = session.progress
        source = await open_playback_source(
            session.unit,
            progress.last_position,
            self._loaders,
            timeout=self._settings.player_init_timeout,
        )
        if session.closed:
            # Another unit was activated while this player was loading.
            source.detach()
            return

        session.source = source
        if source.state == UNAVAILABLE:
            session.error = UNAVAILABLE_MESSAGE
            session.autosave_enabled = False
            self._transition(session, UnitState.UNAVAILABLE)
            return

        guard = AntiSkipGuard(
            progress.last_position,
            buffer_seconds=self._settings.guard_buffer,
            bypass=self._guard_bypass,
        )
        if progress.completed:
            guard.seed(progress.duration)
        session.guard = guard

        engine = MetricsEngine()
        tracker = BehavioralEventTracker(
            session_id=session.session_id,
            user_id=self.user_id,
            context=self._context,
            hook=engine.process_event,
        )
        session.engine = engine
        session.tracker = tracker
        tracker.attach(source)
        session._unsubscribe = source.subscribe(
            functools.partial(self._on_signal, session)
        )
        session.last_sample = source.current_time()

        self._transition(
            session, UnitState.COMPLETED if progress.completed else UnitState.READY
        )

        session.spawn(
            self._run_periodic(
                session, self._settings.metrics_tick_interval, self._tick
            )
        )
        session.spawn(
            self._run_periodic(
                session, self._settings.autosave_interval, self._autosave
            )
        )
        if isinstance(source, EmbeddedPlayerAdapter):
            session.spawn(
                self._run_periodic(
                    session, self._settings.guard_sample_interval, self._sample
                )
            )

    async def deactivate(self) -> None:
        """Tear down the active unit: stop everything, then save once."""
        session = self.session
        if session is None:
            return
        self.session = None

        session.stop()
        final = self._capture(session)
        if session.source is not None:
            session.source.detach()
        self._transition(session, UnitState.CLOSED)
        ACTIVE_UNIT_SESSIONS.dec()

        await asyncio.get_running_loop().create_task(
            self._save(session, "teardown", final=final),
            context=session.log_context,
        )

    async def close(self) -> None:
        """Leaving the course."""
        await self.deactivate()

    # ------------------------------------------------------------------
    # Learner gestures
    # ------------------------------------------------------------------

    async def confirm_quiz(self, verification_code: str | None = None) -> UnitProgress:
        session = self._require_session()
        if session.unit.type != QUIZ:
            raise ValueError("the active unit is not a quiz")

        expected = session.unit.verification_code
        if expected:
            supplied = (verification_code or "").strip().lower()
            if supplied != expected.strip().lower():
                logger.info("Rejected quiz verification code for unit %d", session.unit_index)
                raise QuizVerificationError("verification code does not match")

        session.progress = dataclasses.replace(
            session.progress, quiz_completed=True, last_access_time=_utcnow_iso()
        )
        self._replace_unit(session.progress)
        await self._save(session, "quiz")
        return session.progress

    def track_interaction(self, action: str, target_id: str, target_type: str) -> None:
        session = self.session
        if session is None or session.closed or session.tracker is None:
            return
        session.tracker.track_interaction(action, target_id, target_type)

    # ------------------------------------------------------------------
    # Player signals
    # ------------------------------------------------------------------

    def _on_signal(self, session: UnitSession, signal: PlaybackSignal) -> None:
        if session.closed:
            return

        if signal.kind == PLAY:
            session.playing = True
            self._transition(session, UnitState.PLAYING)
        elif signal.kind == PAUSE:
            if session.tracker is not None and session.tracker.is_seeking:
                return
            session.playing = False
            self._transition(session, UnitState.PAUSED)
            session.spawn(self._save(session, "pause"))
        elif signal.kind == SEEKING:
            if not signal.system:
                self._transition(session, UnitState.SEEKING)
        elif signal.kind == SEEKED:
            if signal.system:
                return
            self._transition(
                session, UnitState.PLAYING if session.playing else UnitState.PAUSED
            )
            self._check_guard(session)
            session.spawn(self._save(session, "seek"))
        elif signal.kind == ENDED:
            session.playing = False
            self._transition(session, UnitState.PAUSED)
            session.spawn(self._save(session, "ended"))
        elif signal.kind == TIME_UPDATE:
            self._sample(session)

    def _sample(self, session: UnitSession) -> None:
        """Guard sampling; for the embedded player also infers seeks from jumps."""
        source = session.source
        if session.closed or source is None or session.guard is None:
            return
        if session.state == UnitState.SEEKING:
            return

        current = source.current_time()
        last = session.last_sample
        if isinstance(source, EmbeddedPlayerAdapter) and last is not None:
            expected = (
                self._settings.guard_sample_interval * source.playback_rate()
                if session.playing
                else 0.0
            )
            jump = current - last
            if jump > expected + self._settings.guard_buffer or (
                jump < -self._settings.guard_buffer
            ):
                # Fires seeking/seeked, which runs the guard via _on_signal
                source.report_jump(last, current)
                if not session.closed:
                    session.last_sample = source.current_time()
                return

        self._check_guard(session)

    def _check_guard(self, session: UnitSession) -> None:
        source, guard = session.source, session.guard
        if source is None or guard is None or session.closed:
            return
        if session.save_lock.locked():
            # A save is reading the position; re-checked once it releases.
            session.guard_deferred = True
            return

        session.guard_deferred = False
        current = source.current_time()
        decision = guard.check(current)
        if decision.corrected:
            GUARD_CORRECTIONS.inc()
            logger.info(
                "Guard correction %.1fs -> %.1fs (watermark)",
                current,
                decision.position,
                extra={"correction": "guard"},
            )
            if session.tracker is not None:
                session.tracker.track_correction(current, decision.position)
            source.seek_to(decision.position, system=True)
        session.last_sample = source.current_time()

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    async def _run_periodic(
        self,
        session: UnitSession,
        interval: float,
        step: Callable[[UnitSession], object],
    ) -> None:
        while not session.closed:
            await asyncio.sleep(interval)
            if session.closed:
                return
            result = step(session)
            if asyncio.iscoroutine(result):
                await result

    def _tick(self, session: UnitSession) -> None:
        if session.closed or session.engine is None or session.source is None:
            return
        session.engine.tick(
            session.playing,
            session.source.current_time(),
            session.source.playback_rate(),
            interval=self._settings.metrics_tick_interval,
        )

    async def _autosave(self, session: UnitSession) -> None:
        if session.playing:
            await self._save(session, "autosave")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _capture(self, session: UnitSession) -> UnitProgress:
        """Fold the player's position and the metrics into the unit record."""
        progress = session.progress
        source = session.source
        if source is None or source.state == UNAVAILABLE:
            return progress

        duration = source.duration() or progress.duration
        position = source.current_time()
        if session.guard is not None:
            # Never record more than the learner legitimately reached
            position = session.guard.limit(position)
        position = clamp_position(position, duration)
        completed = progress.completed or (
            duration > 0 and position / duration >= self._settings.completion_threshold
        )
        metrics = (
            session.engine.snapshot()
            if session.engine is not None
            else progress.behavioral_metrics
        )
        return dataclasses.replace(
            progress,
            last_position=position,
            duration=duration,
            completed=completed,
            last_access_time=_utcnow_iso(),
            behavioral_metrics=metrics,
        )

    async def _save(
        self,
        session: UnitSession,
        reason: str,
        *,
        final: UnitProgress | None = None,
    ) -> bool:
        if not session.autosave_enabled:
            return False
        if session.closed and final is None:
            return False

        async with session.save_lock:
            if session.closed and final is None:
                return False

            progress = final if final is not None else self._capture(session)
            if progress.completed and not session.progress.completed:
                logger.info(
                    "Unit %d completed at %.1f/%.1fs",
                    session.unit_index,
                    progress.last_position,
                    progress.duration,
                )
            session.progress = progress
            self._replace_unit(progress)
            if progress.is_done:
                self._transition(session, UnitState.COMPLETED)

            ok = await self._write(self.units)
            session.save_count += 1
            logger.debug(
                "Saved unit %d (%s) at %.1fs ok=%s",
                session.unit_index,
                reason,
                progress.last_position,
                ok,
            )

        if session.guard_deferred and not session.closed:
            self._check_guard(session)
        return ok

    async def _write(self, units: list[UnitProgress]) -> bool:
        snapshot = list(units)
        self.course_progress = aggregate(snapshot)
        start = time.monotonic()
        try:
            ok = await self._store.save(
                self.user_id, self.course.id, self.course.title, snapshot
            )
        except Exception:
            logger.warning("Progress Store raised during save", exc_info=True)
            ok = False
        PROGRESS_SAVE_DURATION.observe(time.monotonic() - start)
        PROGRESS_SAVES.labels(result="ok" if ok else "failed").inc()
        if not ok:
            logger.warning(
                "Progress save failed for course=%s; retrying on next save",
                self.course.id,
            )
        return ok

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _unit(self, unit_index: int) -> UnitProgress:
        for unit in self.units:
            if unit.unit_index == unit_index:
                return unit
        fresh = UnitProgress.not_started(unit_index, self.course.units[unit_index])
        self.units.append(fresh)
        return fresh

    def _replace_unit(self, progress: UnitProgress) -> None:
        for i, unit in enumerate(self.units):
            if unit.unit_index == progress.unit_index:
                self.units[i] = progress
                return
        self.units.append(progress)

    def _require_session(self) -> UnitSession:
        if self.session is None or self.session.closed:
            raise RuntimeError("no active unit")
        return self.session

    def _transition(self, session: UnitSession, target: UnitState) -> None:
        if session.state == target:
            return
        if target not in _TRANSITIONS[session.state]:
            logger.debug("Ignored transition %s -> %s", session.state, target)
            return
        session.state = target
