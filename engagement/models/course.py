from __future__ import annotations

import datetime
import re
from dataclasses import dataclass

VIDEO = "video"
QUIZ = "quiz"

_DIRECT_MEDIA = re.compile(r"\.(mp4|webm|ogg)$", re.I)


@dataclass(frozen=True, slots=True)
class UnitDefinition:
    type: str  # video|quiz
    title: str
    url: str = ""
    verification_code: str | None = None

    @property
    def is_video(self) -> bool:
        return self.type == VIDEO

    @property
    def is_direct_media(self) -> bool:
        """True for files the native media element plays directly."""
        return bool(_DIRECT_MEDIA.search(self.url))


@dataclass(frozen=True, slots=True)
class CourseDefinition:
    """Read-only course outline as authored by admins."""

    id: str
    title: str
    units: tuple[UnitDefinition, ...] = ()
    start_date: datetime.date | None = None
    end_date: datetime.date | None = None
    allowed_user_ids: frozenset[str] = frozenset()

    def is_available(self, today: datetime.date) -> bool:
        """Inclusive date window; a course without both dates is always open."""
        if self.start_date is None or self.end_date is None:
            return True
        return self.start_date <= today <= self.end_date

    def can_view(
        self, employee_id: str | None, *, today: datetime.date, is_admin: bool = False
    ) -> bool:
        if not self.is_available(today):
            return False
        if not self.allowed_user_ids or is_admin:
            return True
        if not employee_id:
            return False
        return employee_id in self.allowed_user_ids
