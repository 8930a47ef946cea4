"""Approval workflow API endpoints, generic over registered document types."""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from approvalhub.api.deps import (
    actor_partitions,
    get_actor,
    get_db,
    get_event_sink,
    get_registry,
    http_error,
    settings,
)
from approvalhub.api.schemas.common import (
    BatchResponse,
    NotificationResponse,
    RemarksRequest,
    SignatureResponse,
    entity_to_dict,
)
from approvalhub.core.exceptions import EntityNotFound, ValidationError, WorkflowError
from approvalhub.core.workflow.documents import DocumentType, document_types
from approvalhub.core.workflow.engine import Actor, ApprovalEngine
from approvalhub.core.workflow.registry import WorkflowRegistry
from approvalhub.services.audit import AuditTrail
from approvalhub.services.events import EventOutbox

router = APIRouter(prefix="/approvals", tags=["approvals"])


# Schemas
class CreateEntityRequest(BaseModel):
    data: Dict[str, Any] = Field(default_factory=dict)
    remarks: Optional[str] = Field(None, max_length=2000)
    partition_value: Optional[str] = None
    batch_key: Optional[str] = None


class CreateEntityResponse(BaseModel):
    entity: Dict[str, Any]
    notification: NotificationResponse


class TransitionResponse(BaseModel):
    entity: Dict[str, Any]
    message: str
    signatures: List[SignatureResponse]


class RejectRequest(RemarksRequest):
    meta: Optional[Dict[str, Any]] = None


class PendingItemResponse(BaseModel):
    entity: Dict[str, Any]
    history: List[SignatureResponse]


class PendingListResponse(BaseModel):
    items: List[PendingItemResponse]
    total: int
    page: int
    per_page: int


class TrackResponse(BaseModel):
    document: Dict[str, Any]
    status: Optional[SignatureResponse] = None
    workflow_progress: Dict[str, int]


def _document_type(document_type: str) -> DocumentType:
    try:
        return document_types.get(document_type)
    except WorkflowError as e:
        raise http_error(e)


def _engine(
    doc: DocumentType,
    db: Session,
    registry: WorkflowRegistry,
    event_sink: Any,
) -> ApprovalEngine:
    return doc.build_engine(
        db,
        registry,
        event_sink,
        enforce_route_role=settings.enforce_route_role,
    )


def _reject_meta(doc: DocumentType, meta: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    merged = dict(meta or {})
    if doc.reject_field and "specific_field" not in merged:
        merged["specific_field"] = doc.reject_field
    return merged or None


def _matches(doc: DocumentType, entity: Any, search: Optional[str]) -> bool:
    if not search or not doc.search_fields:
        return True
    needle = search.lower()
    return any(
        needle in str(getattr(entity, name, "") or "").lower()
        for name in doc.search_fields
    )


# Endpoints
@router.post("/{document_type}", response_model=CreateEntityResponse, status_code=201)
async def create_entity(
    document_type: str,
    body: CreateEntityRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    registry: WorkflowRegistry = Depends(get_registry),
    event_sink: Any = Depends(get_event_sink),
    actor: Actor = Depends(get_actor),
):
    """Submit a new entity into its approval workflow."""
    doc = _document_type(document_type)

    data = dict(body.data)
    if doc.fields:
        unknown = sorted(set(data) - set(doc.fields))
        if unknown:
            raise http_error(ValidationError(f"Unknown fields for {doc.label}: {', '.join(unknown)}"))
    if body.partition_value is not None:
        data["partition_value"] = body.partition_value
    if body.batch_key is not None:
        data["batch_key"] = body.batch_key

    outbox = EventOutbox(event_sink)
    engine = _engine(doc, db, registry, outbox)
    try:
        result = engine.create_entity(data, actor, body.remarks)
        db.commit()
        background_tasks.add_task(outbox.flush)
    except WorkflowError as e:
        db.rollback()
        raise http_error(e)

    return CreateEntityResponse(
        entity=entity_to_dict(result.entity),
        notification=NotificationResponse.model_validate(result.notification),
    )


@router.get("/{document_type}/pending", response_model=PendingListResponse)
async def list_pending(
    document_type: str,
    db: Session = Depends(get_db),
    registry: WorkflowRegistry = Depends(get_registry),
    actor: Actor = Depends(get_actor),
    search: Optional[str] = None,
    strict: bool = False,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
):
    """List entities awaiting the actor's role, each with its signature history."""
    doc = _document_type(document_type)
    engine = _engine(doc, db, registry, None)

    try:
        items = engine.list_pending_for_role(
            actor.role,
            actor_partitions(db, actor),
            actor_id=actor.id,
            strict=strict,
        )
    except WorkflowError as e:
        raise http_error(e)

    items = [item for item in items if _matches(doc, item.entity, search)]
    start = (page - 1) * per_page
    return PendingListResponse(
        items=[
            PendingItemResponse(
                entity=entity_to_dict(item.entity),
                history=[SignatureResponse.model_validate(s) for s in item.history],
            )
            for item in items[start:start + per_page]
        ],
        total=len(items),
        page=page,
        per_page=per_page,
    )


@router.get("/{document_type}/track/{reference}", response_model=TrackResponse)
async def track_document(
    document_type: str,
    reference: str,
    db: Session = Depends(get_db),
    registry: WorkflowRegistry = Depends(get_registry),
    actor: Actor = Depends(get_actor),
):
    """Find a document by reference and report its latest signature and progress."""
    doc = _document_type(document_type)
    engine = _engine(doc, db, registry, None)

    fields = list(doc.search_fields) or ([doc.reference_field] if doc.reference_field else [])
    try:
        entity = engine.entities.find_by_reference(fields, reference)
        if entity is None:
            raise EntityNotFound(doc.label, reference)
        result = engine.track_entity(
            entity, actor.role, actor_partitions(db, actor), actor_id=actor.id
        )
    except WorkflowError as e:
        raise http_error(e)

    return TrackResponse(
        document=entity_to_dict(result.entity),
        status=(
            SignatureResponse.model_validate(result.latest_signature)
            if result.latest_signature is not None else None
        ),
        workflow_progress=result.progress,
    )


@router.get("/{document_type}/{entity_id}/history", response_model=List[SignatureResponse])
async def get_history(
    document_type: str,
    entity_id: str,
    db: Session = Depends(get_db),
    registry: WorkflowRegistry = Depends(get_registry),
    actor: Actor = Depends(get_actor),
):
    """Get the ordered signature history of an entity."""
    doc = _document_type(document_type)
    engine = _engine(doc, db, registry, None)

    if engine.entities.find_by_id(entity_id) is None:
        raise http_error(EntityNotFound(doc.label, entity_id))

    history = AuditTrail(db).history(doc.workflow_id, entity_id)
    return [SignatureResponse.model_validate(s) for s in history]


@router.post("/{document_type}/{entity_id}/advance", response_model=TransitionResponse)
async def advance_entity(
    document_type: str,
    entity_id: str,
    action: RemarksRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    registry: WorkflowRegistry = Depends(get_registry),
    event_sink: Any = Depends(get_event_sink),
    actor: Actor = Depends(get_actor),
):
    """Approve an entity at its current level."""
    doc = _document_type(document_type)
    outbox = EventOutbox(event_sink)
    engine = _engine(doc, db, registry, outbox)

    try:
        result = engine.advance_entity(
            entity_id, actor, action.remarks, require_remarks=settings.remarks_required
        )
        db.commit()
        background_tasks.add_task(outbox.flush)
    except WorkflowError as e:
        db.rollback()
        raise http_error(e)

    return TransitionResponse(
        entity=entity_to_dict(result.entity),
        message=result.message,
        signatures=[SignatureResponse.model_validate(s) for s in result.signatures],
    )


@router.post("/{document_type}/{entity_id}/reject", response_model=TransitionResponse)
async def reject_entity(
    document_type: str,
    entity_id: str,
    action: RejectRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    registry: WorkflowRegistry = Depends(get_registry),
    event_sink: Any = Depends(get_event_sink),
    actor: Actor = Depends(get_actor),
):
    """Reject an entity at its current level."""
    doc = _document_type(document_type)
    outbox = EventOutbox(event_sink)
    engine = _engine(doc, db, registry, outbox)

    try:
        result = engine.reject_entity(
            entity_id,
            actor,
            action.remarks,
            _reject_meta(doc, action.meta),
            require_remarks=settings.remarks_required,
        )
        db.commit()
        background_tasks.add_task(outbox.flush)
    except WorkflowError as e:
        db.rollback()
        raise http_error(e)

    return TransitionResponse(
        entity=entity_to_dict(result.entity),
        message=result.message,
        signatures=[SignatureResponse.model_validate(s) for s in result.signatures],
    )


@router.post("/{document_type}/batch/{batch_key}/advance", response_model=BatchResponse)
async def advance_batch(
    document_type: str,
    batch_key: str,
    action: RemarksRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    registry: WorkflowRegistry = Depends(get_registry),
    event_sink: Any = Depends(get_event_sink),
    actor: Actor = Depends(get_actor),
):
    """Approve every entity of a batch; failed items are reported, not raised."""
    doc = _document_type(document_type)
    if settings.remarks_required and not (action.remarks or "").strip():
        raise HTTPException(status_code=400, detail="Remarks are required for batch approvals")

    outbox = EventOutbox(event_sink)
    engine = _engine(doc, db, registry, outbox)
    result = engine.advance_batch(batch_key, actor, action.remarks)
    db.commit()
    background_tasks.add_task(outbox.flush)

    return BatchResponse(**result.to_dict())


@router.post("/{document_type}/batch/{batch_key}/reject", response_model=BatchResponse)
async def reject_batch(
    document_type: str,
    batch_key: str,
    action: RejectRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    registry: WorkflowRegistry = Depends(get_registry),
    event_sink: Any = Depends(get_event_sink),
    actor: Actor = Depends(get_actor),
):
    """Reject every entity of a batch; failed items are reported, not raised."""
    doc = _document_type(document_type)
    if settings.remarks_required and not (action.remarks or "").strip():
        raise HTTPException(status_code=400, detail="Remarks are required for batch rejections")

    outbox = EventOutbox(event_sink)
    engine = _engine(doc, db, registry, outbox)
    result = engine.reject_batch(batch_key, actor, action.remarks, _reject_meta(doc, action.meta))
    db.commit()
    background_tasks.add_task(outbox.flush)

    return BatchResponse(**result.to_dict())
