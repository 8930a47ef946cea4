from typing import Generator, List, Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from approvalhub.core.config import get_settings
from approvalhub.core.exceptions import WorkflowError
from approvalhub.core.workflow.engine import Actor
from approvalhub.core.workflow.registry import WorkflowRegistry
from approvalhub.db.session import SessionLocal
from approvalhub.services.events import InMemoryEventBus, build_event_sink
from approvalhub.services.stores import SqlAlchemyAssignmentStore, SqlAlchemyWorkflowStore

settings = get_settings()

event_bus = InMemoryEventBus()
event_sink = build_event_sink(settings, event_bus)
registry = WorkflowRegistry(SqlAlchemyWorkflowStore(SessionLocal))


def get_db() -> Generator:
    """Database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_registry() -> WorkflowRegistry:
    return registry


def get_event_bus() -> InMemoryEventBus:
    return event_bus


def get_event_sink():
    return event_sink


def _split(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    return [p.strip() for p in value.split(",") if p.strip()]


def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_name: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
    x_actor_partitions: Optional[str] = Header(None),
) -> Actor:
    """
    Acting user as asserted by the upstream authentication layer.

    ``X-Actor-Partitions`` is optional; without it the scope of a
    partition-scoped role is read from the role/partition assignments.
    """
    if not x_actor_id or not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing actor headers (X-Actor-Id, X-Actor-Role)",
        )
    return Actor(
        id=x_actor_id,
        name=x_actor_name or x_actor_id,
        role=x_actor_role,
        partitions=_split(x_actor_partitions),
    )


def actor_partitions(db: Session, actor: Actor) -> Optional[List[str]]:
    """
    Partitions restricting the actor, or None when the role is not partition-scoped.

    ``X-Actor-Partitions`` only narrows partition-scoped roles; workflow-wide
    roles see every partition whatever the header says.
    """
    assignments = SqlAlchemyAssignmentStore(db)
    if not assignments.is_partition_scoped(actor.role):
        return None
    if actor.partitions is not None:
        return actor.partitions
    return assignments.partitions_for(actor.role, actor.id)


def http_error(e: WorkflowError) -> HTTPException:
    """Map an engine error to the HTTP error the routers raise."""
    return HTTPException(status_code=e.status_code, detail=e.to_dict())
