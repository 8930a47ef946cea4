"""Document types: how business modules plug their entities into the engine.

Each module registers its model once::

    document_types.register(DocumentType(
        key="itemCode",
        workflow_id=149,
        model=ItemCode,
        entity_type="Item Code",
        search_fields=("base_code",),
        reference_field="base_code",
    ))

The generic approval routes look the key up and build an engine per request.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from approvalhub.core.exceptions import DocumentTypeNotFound
from approvalhub.core.workflow.access import AccessResolver
from approvalhub.core.workflow.engine import ApprovalEngine, MessageBuilder, default_message
from approvalhub.core.workflow.registry import WorkflowRegistry
from approvalhub.core.workflow.states import MessageEvent
from approvalhub.services.audit import AuditTrail
from approvalhub.services.notifications import NotificationChannel
from approvalhub.services.stores import SqlAlchemyAssignmentStore, SqlAlchemyEntityStore


@dataclass(frozen=True)
class DocumentType:
    key: str
    workflow_id: int
    model: Any
    entity_type: Optional[str] = None
    search_fields: Sequence[str] = ()
    reference_field: Optional[str] = None
    message_builder: Optional[MessageBuilder] = None
    # Attribute mirroring the status on rejection, if the model has one
    reject_field: Optional[str] = None
    fields: Sequence[str] = field(default_factory=tuple)

    @property
    def label(self) -> str:
        return self.entity_type or self.model.__name__

    def reference(self, entity: Any) -> Optional[str]:
        if not self.reference_field:
            return None
        value = getattr(entity, self.reference_field, None)
        return str(value) if value is not None else None

    def message(self, entity: Any, event: MessageEvent) -> str:
        if self.message_builder is not None:
            return self.message_builder(entity, event)
        return default_message(self.label, event, self.reference(entity))

    def build_engine(
        self,
        db: Session,
        registry: WorkflowRegistry,
        event_sink: Any = None,
        *,
        enforce_route_role: bool = False,
    ) -> ApprovalEngine:
        """Wire an engine for this document type on the given session."""
        return ApprovalEngine(
            workflow_id=self.workflow_id,
            entity_type=self.label,
            entities=SqlAlchemyEntityStore(db, self.model),
            registry=registry,
            audit=AuditTrail(db),
            notifications=NotificationChannel(db, event_sink),
            access=AccessResolver(registry, SqlAlchemyAssignmentStore(db)),
            db=db,
            message_builder=self.message,
            enforce_route_role=enforce_route_role,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "workflow_id": self.workflow_id,
            "entity_type": self.label,
            "search_fields": list(self.search_fields),
            "reference_field": self.reference_field,
        }


class DocumentTypeRegistry:
    """Lookup of registered document types by key."""

    def __init__(self):
        self._types: Dict[str, DocumentType] = {}
        self._lock = threading.Lock()

    def register(self, document_type: DocumentType) -> DocumentType:
        with self._lock:
            self._types[document_type.key] = document_type
        return document_type

    def unregister(self, key: str) -> None:
        with self._lock:
            self._types.pop(key, None)

    def get(self, key: str) -> DocumentType:
        with self._lock:
            document_type = self._types.get(key)
        if document_type is None:
            raise DocumentTypeNotFound(key)
        return document_type

    def for_workflow(self, workflow_id: int) -> List[DocumentType]:
        with self._lock:
            return [d for d in self._types.values() if d.workflow_id == workflow_id]

    def all(self) -> List[DocumentType]:
        with self._lock:
            return sorted(self._types.values(), key=lambda d: d.key)


document_types = DocumentTypeRegistry()
