from __future__ import annotations

import datetime
from typing import Protocol

from engagement.models.course import QUIZ, VIDEO, CourseDefinition, UnitDefinition


class CourseCatalog(Protocol):
    def get(self, course_id: str) -> CourseDefinition | None: ...
    def list_courses(self) -> list[CourseDefinition]: ...


class InMemoryCourseCatalog:
    def __init__(self) -> None:
        self._by_id: dict[str, CourseDefinition] = {}

    def get(self, course_id: str) -> CourseDefinition | None:
        return self._by_id.get(course_id)

    def list_courses(self) -> list[CourseDefinition]:
        return list(self._by_id.values())

    def add(self, course: CourseDefinition) -> None:
        # Course authoring happens elsewhere; this only mirrors published outlines.
        self._by_id[course.id] = course


def seed_sample_course(catalog: InMemoryCourseCatalog) -> None:
    """Seed a sample course for development/testing."""
    if catalog.get("privacy-101") is not None:
        return
    catalog.add(
        CourseDefinition(
            id="privacy-101",
            title="Personal Data Protection: Law and Cases",
            units=(
                UnitDefinition(
                    type=VIDEO,
                    title="Part 1",
                    url="https://www.youtube.com/embed/dQw4w9WgXcQ",
                ),
                UnitDefinition(
                    type=VIDEO,
                    title="Part 2",
                    url="https://media.example.com/privacy-101/part2.mp4",
                ),
                UnitDefinition(
                    type=QUIZ,
                    title="Post-course quiz",
                    url="https://forms.example.com/privacy-101",
                    verification_code="PDPA2024",
                ),
            ),
            start_date=datetime.date(2023, 1, 1),
            end_date=datetime.date(2030, 12, 31),
        )
    )


course_catalog = InMemoryCourseCatalog()
seed_sample_course(course_catalog)
