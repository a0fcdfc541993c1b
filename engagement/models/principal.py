from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated learner (or reviewer) extracted from a validated JWT.

    user_id:     subject from the token; keys the progress document
    roles:       platform roles (admin, user)
    employee_id: optional claim matched against course allow-lists
    """

    user_id: str
    roles: frozenset[str]
    employee_id: str | None = None

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def is_platform_admin(self) -> bool:
        return "admin" in self.roles

    def can_scrub_freely(self) -> bool:
        """Reviewers may seek anywhere; the anti-skip guard is bypassed."""
        return self.is_platform_admin()
