"""Prometheus metric inventory for engagement-service.

All metrics are defined here and incremented at the point of action, so
this file is the single list of what the service measures.

Counters only go up (events seen, saves attempted); gauges go up and down
(unit sessions open right now); histograms bucket observations so
dashboards can ask for p95 store latency rather than an average that hides
the slow tail.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# Behavioral events
# ---------------------------------------------------------------------------

BEHAVIORAL_EVENTS = Counter(
    "behavioral_events_total",
    "Behavioral events emitted by trackers or ingested over HTTP",
    ["category", "name"],
)

# ---------------------------------------------------------------------------
# Progress persistence
# ---------------------------------------------------------------------------

PROGRESS_SAVES = Counter(
    "progress_saves_total",
    "Unit progress saves by result",
    ["result"],  # "ok" or "failed"
)

PROGRESS_SAVE_DURATION = Histogram(
    "progress_save_duration_seconds",
    "Progress Store write latency in seconds",
    # A save blocks the next save for the same unit, so anything above the
    # 10s autosave cadence means writes are queueing up.
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# ---------------------------------------------------------------------------
# Playback
# ---------------------------------------------------------------------------

GUARD_CORRECTIONS = Counter(
    "guard_corrections_total",
    "Forward seeks clamped back to the viewed watermark",
)

PLAYER_UNAVAILABLE = Counter(
    "player_unavailable_total",
    "Player backends that failed to initialize",
    ["backend"],  # "embedded" or "native"
)

ACTIVE_UNIT_SESSIONS = Gauge(
    "active_unit_sessions",
    "Unit sessions currently wired to a player",
)
