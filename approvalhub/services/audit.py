"""Append-only signature trail of approval actions."""

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from approvalhub.core.exceptions import AlreadyProcessed
from approvalhub.core.workflow.states import WorkflowAction
from approvalhub.db.models.audit import ApprovalSignature

logger = logging.getLogger(__name__)


class AuditTrail:
    """
    Audit store backed by the ``approval_signatures`` table.

    Entries are only ever inserted. Each insert runs in its own SAVEPOINT so
    a unique-constraint hit (a concurrent duplicate action) leaves the
    caller's transaction usable.
    """

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        workflow_id: int,
        entity_id: Any,
        *,
        action: WorkflowAction,
        role: str,
        level: int,
        remarks: Optional[str] = None,
        actor_id: Optional[str] = None,
        actor_name: Optional[str] = None,
        entity_type: str = "Entity",
    ) -> ApprovalSignature:
        """
        Record one signature.

        Raises:
            AlreadyProcessed: If the same role already signed the same action
                at this level for this entity
        """
        signature = ApprovalSignature(
            workflow_id=workflow_id,
            entity_id=str(entity_id),
            action=WorkflowAction(action).value,
            role=role,
            level=level,
            remarks=remarks,
            actor_id=actor_id,
            actor_name=actor_name,
        )
        try:
            with self.db.begin_nested():
                self.db.add(signature)
        except IntegrityError as e:
            logger.warning(
                "Duplicate %s signature refused for %s %s at level %s by role %s",
                signature.action, entity_type, entity_id, level, role,
            )
            raise AlreadyProcessed(entity_type, entity_id, level, role) from e
        return signature

    def has_entry(
        self,
        workflow_id: int,
        entity_id: Any,
        level: int,
        role: str,
        action: WorkflowAction = WorkflowAction.ADVANCE,
    ) -> bool:
        """Whether ``role`` already performed ``action`` on the entity at ``level``."""
        found = self.db.query(ApprovalSignature.id).filter(
            and_(
                ApprovalSignature.workflow_id == workflow_id,
                ApprovalSignature.entity_id == str(entity_id),
                ApprovalSignature.level == level,
                ApprovalSignature.role == role,
                ApprovalSignature.action == WorkflowAction(action).value,
            )
        ).first()
        return found is not None

    def find_by_entity_id(self, workflow_id: int, entity_id: Any) -> List[ApprovalSignature]:
        """Ordered history of one entity: level first, then time of signing."""
        return self.db.query(ApprovalSignature).filter(
            and_(
                ApprovalSignature.workflow_id == workflow_id,
                ApprovalSignature.entity_id == str(entity_id),
            )
        ).order_by(
            ApprovalSignature.level.asc(),
            ApprovalSignature.created_at.asc(),
            ApprovalSignature.id.asc(),
        ).all()

    history = find_by_entity_id

    def histories(self, workflow_id: int, entity_ids: Iterable[Any]) -> Dict[str, List[ApprovalSignature]]:
        """Ordered histories of many entities in one query, keyed by entity id string."""
        keys = [str(i) for i in entity_ids]
        result: Dict[str, List[ApprovalSignature]] = {k: [] for k in keys}
        if not keys:
            return result

        rows = self.db.query(ApprovalSignature).filter(
            and_(
                ApprovalSignature.workflow_id == workflow_id,
                ApprovalSignature.entity_id.in_(keys),
            )
        ).order_by(
            ApprovalSignature.level.asc(),
            ApprovalSignature.created_at.asc(),
            ApprovalSignature.id.asc(),
        ).all()
        for row in rows:
            result[row.entity_id].append(row)
        return result
