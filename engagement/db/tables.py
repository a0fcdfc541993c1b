"""SQLAlchemy table definitions.

The progress store keeps one row per learner/course, keyed by the same
``{user_id}_{course_id}`` identity the other backends use.  ``units`` holds
the unit array in its document form so export tooling reads the same field
names from every backend.  ``extra`` belongs to other writers; progress
saves never touch it.
"""

from __future__ import annotations

import datetime
from typing import Any

from sqlalchemy import DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from engagement.db.engine import Base


class CourseProgressRow(Base):
    __tablename__ = "course_progress"

    id: Mapped[str] = mapped_column(String(512), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    course_id: Mapped[str] = mapped_column(String(255), nullable=False)
    course_name: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    units: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB, nullable=False, default=list
    )
    last_updated: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    extra: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
