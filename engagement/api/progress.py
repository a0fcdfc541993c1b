"""Course progress read endpoint.

GET /v1/courses/{course_id}/progress
  -> resolve course (404) and check availability/allow-list (403)
  -> load the caller's unit array, back-filling new units (persisted once)
  -> return units + completion rate/status (503 if the store cannot be read)
"""

from __future__ import annotations

import datetime
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from engagement.api.dependencies import require_user
from engagement.models.principal import Principal
from engagement.repos.course_catalog import course_catalog
from engagement.repos.progress_store import progress_store
from engagement.services.progress_controller import UnitProgressController

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/courses", tags=["progress"])


class CourseProgressOut(BaseModel):
    user_id: str
    course_id: str
    course_name: str
    completed_units: int
    total_units: int
    completion_rate: int
    status: str  # not-started|in-progress|completed
    units: list[dict[str, Any]]


@router.get("/{course_id}/progress", response_model=CourseProgressOut)
async def get_course_progress(
    course_id: str,
    principal: Annotated[Principal, Depends(require_user)],
) -> CourseProgressOut:
    course = course_catalog.get(course_id)
    if course is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Course not found"
        )

    today = datetime.datetime.now(datetime.UTC).date()
    if not course.can_view(
        principal.employee_id, today=today, is_admin=principal.is_platform_admin()
    ):
        logger.warning(
            "Access denied: user=%s course=%s", principal.user_id, course_id
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Course is not available to you",
        )

    controller = UnitProgressController(
        principal=principal,
        course=course,
        store=progress_store,
    )
    try:
        summary = await controller.load()
    except Exception:
        logger.warning(
            "Progress load failed: user=%s course=%s",
            principal.user_id,
            course_id,
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Progress is temporarily unavailable",
        )

    return CourseProgressOut(
        user_id=principal.user_id,
        course_id=course.id,
        course_name=course.title,
        completed_units=summary.completed_units,
        total_units=summary.total_units,
        completion_rate=summary.completion_rate,
        status=summary.status,
        units=[u.to_document() for u in controller.units],
    )
