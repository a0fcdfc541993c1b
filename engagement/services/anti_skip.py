"""Anti-skip guard: blocks seeking past what the learner has watched.

The guard keeps a watermark, the furthest point reached legitimately.  Each
sampled position is checked against it:

  current > watermark + buffer  -> corrected (caller seeks back to watermark)
  current > watermark           -> advanced  (normal playback moves it on)
  otherwise                     -> accepted  (rewatching is always fine)

The buffer absorbs network/codec jitter between samples.  This is a UX
deterrent on the client, not an enforcement boundary.

Reviewers get ``bypass=True`` at construction; the guard never looks at
roles itself.
"""

from __future__ import annotations

from dataclasses import dataclass

ACCEPTED = "accepted"
ADVANCED = "advanced"
CORRECTED = "corrected"
BYPASSED = "bypassed"


@dataclass(frozen=True, slots=True)
class GuardDecision:
    outcome: str  # accepted|advanced|corrected|bypassed
    position: float  # where playback should be after the check

    @property
    def corrected(self) -> bool:
        return self.outcome == CORRECTED


class AntiSkipGuard:
    def __init__(
        self,
        max_viewed_time: float = 0.0,
        *,
        buffer_seconds: float = 2.0,
        bypass: bool = False,
    ) -> None:
        self._max_viewed_time = max(0.0, max_viewed_time)
        self.buffer_seconds = buffer_seconds
        self.bypass = bypass

    @property
    def max_viewed_time(self) -> float:
        return self._max_viewed_time

    def seed(self, position: float) -> None:
        """Raise the watermark (never lowers it)."""
        if position > self._max_viewed_time:
            self._max_viewed_time = position

    def limit(self, position: float) -> float:
        """The furthest position that may be recorded as progress."""
        if self.bypass:
            return position
        return min(position, self._max_viewed_time + self.buffer_seconds)

    def check(self, current_time: float) -> GuardDecision:
        if self.bypass:
            self.seed(current_time)
            return GuardDecision(BYPASSED, current_time)

        if current_time > self._max_viewed_time + self.buffer_seconds:
            return GuardDecision(CORRECTED, self._max_viewed_time)

        if current_time > self._max_viewed_time:
            self._max_viewed_time = current_time
            return GuardDecision(ADVANCED, current_time)

        return GuardDecision(ACCEPTED, current_time)
