"""Workflow definition administration endpoints."""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from approvalhub.api.deps import get_actor, get_db, get_registry, http_error
from approvalhub.core.exceptions import WorkflowError
from approvalhub.core.workflow.definitions import LevelDef, WorkflowDefinition
from approvalhub.core.workflow.engine import Actor
from approvalhub.core.workflow.registry import WorkflowRegistry
from approvalhub.services.workflows import WorkflowAdmin

router = APIRouter(prefix="/workflows", tags=["workflows"])


# Schemas
class LevelSchema(BaseModel):
    level: int = Field(..., ge=1)
    role: str = Field(..., min_length=1, max_length=64)
    partition: Optional[str] = Field(None, max_length=64)
    approval_limit: Optional[Decimal] = None


class WorkflowUpsert(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    entity_type: str = Field(..., min_length=1, max_length=100)
    partitioned: bool = False
    levels: List[LevelSchema] = Field(default_factory=list)


class WorkflowResponse(BaseModel):
    id: int
    name: Optional[str]
    entity_type: str
    partitioned: bool
    levels: List[LevelSchema]


class CanDeleteResponse(BaseModel):
    workflow_id: int
    can_delete: bool
    pending: int


class PendingRoleResponse(BaseModel):
    level: int
    role: str
    partition: Optional[str]
    pending: int
    locked: bool


def _response(definition: WorkflowDefinition) -> WorkflowResponse:
    return WorkflowResponse(
        id=definition.id,
        name=definition.name,
        entity_type=definition.entity_type,
        partitioned=definition.partitioned,
        levels=[
            LevelSchema(
                level=d.level,
                role=d.role,
                partition=d.partition,
                approval_limit=d.approval_limit,
            )
            for d in definition.levels
        ],
    )


# Endpoints
@router.get("", response_model=List[WorkflowResponse])
async def list_workflows(db: Session = Depends(get_db)):
    """List all workflow definitions."""
    return [_response(d) for d in WorkflowAdmin(db).list()]


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(workflow_id: int, db: Session = Depends(get_db)):
    """Get one workflow definition."""
    try:
        return _response(WorkflowAdmin(db).get(workflow_id))
    except WorkflowError as e:
        raise http_error(e)


@router.put("/{workflow_id}", response_model=WorkflowResponse)
async def upsert_workflow(
    workflow_id: int,
    body: WorkflowUpsert,
    db: Session = Depends(get_db),
    registry: WorkflowRegistry = Depends(get_registry),
    actor: Actor = Depends(get_actor),
):
    """Create or replace a workflow definition."""
    admin = WorkflowAdmin(db, registry)
    try:
        definition = WorkflowDefinition(
            id=workflow_id,
            name=body.name,
            entity_type=body.entity_type,
            partitioned=body.partitioned,
            levels=tuple(
                LevelDef(
                    level=d.level,
                    role=d.role,
                    partition=d.partition,
                    approval_limit=d.approval_limit,
                )
                for d in body.levels
            ),
        )
        saved = admin.save(definition)
        db.commit()
    except WorkflowError as e:
        db.rollback()
        raise http_error(e)

    # a concurrent cache fill may have read the pre-commit rows
    registry.invalidate(workflow_id)
    return _response(saved)


@router.delete("/{workflow_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_workflow(
    workflow_id: int,
    db: Session = Depends(get_db),
    registry: WorkflowRegistry = Depends(get_registry),
    actor: Actor = Depends(get_actor),
):
    """Delete a workflow definition that has no pending items."""
    try:
        WorkflowAdmin(db, registry).delete(workflow_id)
        db.commit()
    except WorkflowError as e:
        db.rollback()
        raise http_error(e)

    registry.invalidate(workflow_id)


@router.get("/{workflow_id}/can-delete", response_model=CanDeleteResponse)
async def can_delete_workflow(workflow_id: int, db: Session = Depends(get_db)):
    """Check whether a workflow can be deleted."""
    try:
        return CanDeleteResponse(**WorkflowAdmin(db).can_delete(workflow_id))
    except WorkflowError as e:
        raise http_error(e)


@router.get("/{workflow_id}/pending-roles", response_model=List[PendingRoleResponse])
async def pending_roles(workflow_id: int, db: Session = Depends(get_db)):
    """Per level, how many items are pending at or beyond it."""
    try:
        return [PendingRoleResponse(**row) for row in WorkflowAdmin(db).pending_roles(workflow_id)]
    except WorkflowError as e:
        raise http_error(e)
