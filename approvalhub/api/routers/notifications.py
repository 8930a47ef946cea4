"""Notification inbox, badge count and live stream endpoints."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from approvalhub.api.deps import actor_partitions, get_actor, get_db, get_event_bus, settings
from approvalhub.api.schemas.common import NotificationResponse
from approvalhub.core.workflow.engine import Actor
from approvalhub.services.events import InMemoryEventBus, sse_events
from approvalhub.services.notifications import NotificationChannel

router = APIRouter(prefix="/notifications", tags=["notifications"])


# Schemas
class NotificationListResponse(BaseModel):
    items: List[NotificationResponse]
    total: int
    page: int
    per_page: int


class NotificationCountResponse(BaseModel):
    role: str
    count: int


# Endpoints
@router.get("", response_model=NotificationListResponse)
async def inbox(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
):
    """Pending notifications for the actor's role, newest first."""
    channel = NotificationChannel(db)
    partitions = actor_partitions(db, actor)
    items = channel.inbox(
        actor.role,
        partitions,
        limit=per_page,
        offset=(page - 1) * per_page,
    )
    return NotificationListResponse(
        items=[NotificationResponse.model_validate(n) for n in items],
        total=channel.count_for_role(actor.role, partitions),
        page=page,
        per_page=per_page,
    )


@router.get("/count", response_model=NotificationCountResponse)
async def count(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Badge count: pending notifications for the actor's role."""
    total = NotificationChannel(db).count_for_role(actor.role, actor_partitions(db, actor))
    return NotificationCountResponse(role=actor.role, count=total)


@router.get("/stream")
async def stream(
    request: Request,
    role: Optional[str] = Query(None, description="Role to listen for (browsers cannot set headers)"),
    x_actor_role: Optional[str] = Header(None),
    bus: InMemoryEventBus = Depends(get_event_bus),
):
    """
    Server-sent events for a role.

    Events are hints to refresh the count; nothing is replayed on reconnect.
    """
    listen_role = role or x_actor_role
    if not listen_role:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing role")

    return StreamingResponse(
        sse_events(bus, listen_role, settings.sse_heartbeat_seconds, request.is_disconnected),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
