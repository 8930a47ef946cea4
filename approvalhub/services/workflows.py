"""Workflow administration.

Definitions change out-of-band of the engine. Every write here ends with a
registry invalidation, and changes that would strand pending items are
refused.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from approvalhub.core.exceptions import WorkflowLocked, WorkflowNotFound
from approvalhub.core.workflow.definitions import WorkflowDefinition, load_definitions
from approvalhub.core.workflow.registry import WorkflowRegistry
from approvalhub.core.workflow.states import NotificationStatus
from approvalhub.db.models.notification import ApprovalNotification
from approvalhub.db.models.workflow import Workflow

logger = logging.getLogger(__name__)


class WorkflowAdmin:
    """Create, update, delete and inspect workflow definitions."""

    def __init__(self, db: Session, registry: Optional[WorkflowRegistry] = None):
        self.db = db
        self.registry = registry

    def list(self) -> List[WorkflowDefinition]:
        rows = self.db.query(Workflow).order_by(Workflow.id.asc()).all()
        return [row.to_definition() for row in rows]

    def get(self, workflow_id: int) -> WorkflowDefinition:
        row = self.db.get(Workflow, workflow_id)
        if row is None:
            raise WorkflowNotFound(workflow_id)
        return row.to_definition()

    def _pending(self, workflow_id: int) -> List[ApprovalNotification]:
        return self.db.query(ApprovalNotification).filter(
            and_(
                ApprovalNotification.workflow_id == workflow_id,
                ApprovalNotification.status == NotificationStatus.PENDING.value,
            )
        ).all()

    def locked_levels(
        self,
        current: WorkflowDefinition,
        proposed: WorkflowDefinition,
    ) -> List[Dict[str, Any]]:
        """
        Levels whose routing may not change while items are pending.

        A level is locked when an item of the same partition is pending at
        that level or beyond it. Changing its role (or removing it) would
        reroute or orphan work already in flight.
        """
        pending = self._pending(current.id)
        if not pending:
            return []

        if current.partitioned != proposed.partitioned:
            return [{
                "level": None,
                "partition": None,
                "reason": "partitioning cannot change while items are pending",
                "pending": len(pending),
            }]

        deepest: Dict[Optional[str], int] = {}
        for notification in pending:
            partition = notification.partition_value if current.partitioned else None
            deepest[partition] = max(deepest.get(partition, 0), notification.level)

        locked = []
        for detail in current.levels:
            if detail.level > deepest.get(detail.partition, 0):
                continue
            replacement = proposed.route(detail.level, detail.partition)
            if replacement is None or replacement.role != detail.role:
                locked.append({
                    "level": detail.level,
                    "partition": detail.partition,
                    "role": detail.role,
                    "new_role": replacement.role if replacement else None,
                })
        return locked

    def save(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """
        Create or replace a workflow definition.

        Raises:
            ValidationError: If the definition breaks the level invariants
            WorkflowLocked: If the change touches levels with pending items
        """
        definition.validate()

        row = self.db.get(Workflow, definition.id)
        if row is None:
            row = Workflow(id=definition.id)
            self.db.add(row)
            created = True
        else:
            locked = self.locked_levels(row.to_definition(), definition)
            if locked:
                raise WorkflowLocked(
                    f"Workflow {definition.id} has pending items at levels that would change",
                    locked=locked,
                )
            created = False

        row.apply_definition(definition)
        self.db.flush()
        self._invalidate(definition.id)

        logger.info(
            "%s workflow %s (%s, %d levels)",
            "Created" if created else "Updated",
            definition.id, definition.entity_type, len(definition.levels),
        )
        return row.to_definition()

    def can_delete(self, workflow_id: int) -> Dict[str, Any]:
        if self.db.get(Workflow, workflow_id) is None:
            raise WorkflowNotFound(workflow_id)
        pending = self.db.query(func.count(ApprovalNotification.id)).filter(
            and_(
                ApprovalNotification.workflow_id == workflow_id,
                ApprovalNotification.status == NotificationStatus.PENDING.value,
            )
        ).scalar() or 0
        return {"workflow_id": workflow_id, "can_delete": pending == 0, "pending": pending}

    def delete(self, workflow_id: int) -> None:
        """
        Delete a workflow definition.

        Raises:
            WorkflowNotFound: If the workflow does not exist
            WorkflowLocked: If any of its items is still pending
        """
        check = self.can_delete(workflow_id)
        if not check["can_delete"]:
            raise WorkflowLocked(
                f"Workflow {workflow_id} still has {check['pending']} pending item(s)"
            )
        row = self.db.get(Workflow, workflow_id)
        self.db.delete(row)
        self.db.flush()
        self._invalidate(workflow_id)
        logger.info("Deleted workflow %s", workflow_id)

    def pending_roles(self, workflow_id: int) -> List[Dict[str, Any]]:
        """
        Per level, how many items are pending at or beyond it.

        A non-zero count means the level's role has signed (or will sign)
        work that is still in flight.
        """
        definition = self.get(workflow_id)
        pending = self._pending(workflow_id)

        summary = []
        for detail in definition.levels:
            count = sum(
                1 for n in pending
                if n.level >= detail.level
                and (not definition.partitioned or n.partition_value == detail.partition)
            )
            summary.append({
                "level": detail.level,
                "role": detail.role,
                "partition": detail.partition,
                "pending": count,
                "locked": count > 0,
            })
        return summary

    def provision(self, definitions: Iterable[WorkflowDefinition]) -> List[WorkflowDefinition]:
        return [self.save(d) for d in definitions]

    def provision_from_yaml(self, path: Union[str, Path]) -> List[WorkflowDefinition]:
        """Load definitions from a YAML file and save each of them."""
        saved = self.provision(load_definitions(path))
        logger.info("Provisioned %d workflow(s) from %s", len(saved), path)
        return saved

    def _invalidate(self, workflow_id: int) -> None:
        if self.registry is not None:
            self.registry.invalidate(workflow_id)
