"""Behavioral event ingestion.

Remote players batch their tracker output here:
  Client -> POST /v1/engagement/events  {"events": [...wire format...]}
  -> every event must belong to the caller (403 otherwise, nothing stored)
  -> append to the event log
  -> 202 Accepted

GET /v1/engagement/sessions/{session_id}/events returns the caller's most
recent events for one session, newest first.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from engagement.api.dependencies import require_user
from engagement.core.metrics import BEHAVIORAL_EVENTS
from engagement.models.event import BehavioralEvent, EventContext, device_type
from engagement.models.principal import Principal
from engagement.repos.event_log import event_log

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/engagement", tags=["engagement"])

_MAX_BATCH = 500


class EventContextIn(BaseModel):
    page_url: str = ""
    user_agent: str = ""
    device_type: Literal["mobile", "tablet", "desktop"] | None = None


class BehavioralEventIn(BaseModel):
    event_id: str
    timestamp: str
    session_id: str
    user_id: str
    event_category: Literal["video_player_event", "interaction_event", "system_event"]
    event_name: str
    context: EventContextIn = Field(default_factory=EventContextIn)
    payload: dict[str, Any] = Field(default_factory=dict)

    def to_event(self) -> BehavioralEvent:
        return BehavioralEvent(
            event_id=self.event_id,
            timestamp=self.timestamp,
            session_id=self.session_id,
            user_id=self.user_id,
            category=self.event_category,
            name=self.event_name,
            context=EventContext(
                page_url=self.context.page_url,
                user_agent=self.context.user_agent,
                device_type=self.context.device_type
                or device_type(self.context.user_agent),
            ),
            payload=self.payload,
        )


class EventBatchIn(BaseModel):
    events: list[BehavioralEventIn] = Field(min_length=1, max_length=_MAX_BATCH)


class EventBatchOut(BaseModel):
    accepted: int


@router.post(
    "/events",
    response_model=EventBatchOut,
    status_code=status.HTTP_202_ACCEPTED,
)
async def ingest_events(
    batch: EventBatchIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> EventBatchOut:
    foreign = [e.event_id for e in batch.events if e.user_id != principal.user_id]
    if foreign:
        logger.warning(
            "Rejected %d event(s) for another user from user=%s",
            len(foreign),
            principal.user_id,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Events must belong to the authenticated user",
        )

    events = [e.to_event() for e in batch.events]
    accepted = await event_log.append(events)
    for event in events:
        BEHAVIORAL_EVENTS.labels(category=event.category, name=event.name).inc()
    logger.debug("Ingested %d event(s) for user=%s", accepted, principal.user_id)
    return EventBatchOut(accepted=accepted)


@router.get("/sessions/{session_id}/events")
async def recent_session_events(
    session_id: str,
    principal: Annotated[Principal, Depends(require_user)],
    limit: Annotated[int, Query(ge=1, le=_MAX_BATCH)] = 100,
) -> list[dict[str, Any]]:
    events = await event_log.recent(session_id, limit)
    return [e.to_dict() for e in events if e.user_id == principal.user_id]
