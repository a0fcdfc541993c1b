"""Course-level roll-up of unit progress.

Both functions are pure.  ``backfill`` handles courses that gained units
after a learner started: every definition index beyond the stored array is
appended as a fresh record.  Courses that lost or reordered units are left
as stored; the array is never trimmed or re-keyed.
"""

from __future__ import annotations

from collections.abc import Sequence

from engagement.models.course import CourseDefinition
from engagement.models.progress import (
    CourseProgress,
    UnitProgress,
    completion_rate,
    status_for,
)


def aggregate(units: Sequence[UnitProgress]) -> CourseProgress:
    total = len(units)
    done = sum(1 for u in units if u.is_done)
    rate = completion_rate(done, total)
    return CourseProgress(
        completed_units=done,
        total_units=total,
        completion_rate=rate,
        status=status_for(rate),
    )


def backfill(
    units: Sequence[UnitProgress], course: CourseDefinition
) -> tuple[list[UnitProgress], bool]:
    """Return (units, appended) with missing trailing units added."""
    result = list(units)
    known = {u.unit_index for u in result}
    appended = False
    for index, unit in enumerate(course.units):
        if index in known:
            continue
        result.append(UnitProgress.not_started(index, unit))
        appended = True
    return result, appended


def initial_units(course: CourseDefinition) -> list[UnitProgress]:
    return [UnitProgress.not_started(i, u) for i, u in enumerate(course.units)]
