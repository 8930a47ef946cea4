"""Notification channel: the persisted pending record plus live events.

Handles:
- The single "awaiting action" record of every entity, updated in place
- Inbox listing and badge counts per role
- Best-effort live emission to whoever listens for a role
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from approvalhub.core.workflow.definitions import LevelDef
from approvalhub.core.workflow.states import NotificationStatus
from approvalhub.core.workflow.stores import EventSink
from approvalhub.db.models.notification import ApprovalNotification

logger = logging.getLogger(__name__)


class NotificationChannel:
    """
    Persisted notifications of one database session, with an optional sink
    for live events.
    """

    def __init__(self, db: Session, event_sink: Optional[EventSink] = None):
        self.db = db
        self.event_sink = event_sink

    def get(self, workflow_id: int, entity_id: Any) -> Optional[ApprovalNotification]:
        return self.db.query(ApprovalNotification).filter(
            and_(
                ApprovalNotification.workflow_id == workflow_id,
                ApprovalNotification.entity_id == str(entity_id),
            )
        ).first()

    def open(
        self,
        workflow_id: int,
        entity_id: Any,
        route: LevelDef,
        message: str,
        partition_value: Optional[str] = None,
    ) -> ApprovalNotification:
        """Create the pending record of a newly submitted entity."""
        notification = ApprovalNotification(
            workflow_id=workflow_id,
            entity_id=str(entity_id),
            role=route.role,
            partition_value=partition_value,
            level=route.level,
            status=NotificationStatus.PENDING.value,
            message=message,
        )
        self.db.add(notification)
        self.db.flush()
        return notification

    def move(
        self,
        workflow_id: int,
        entity_id: Any,
        route: LevelDef,
        message: str,
        partition_value: Optional[str] = None,
    ) -> ApprovalNotification:
        """Re-route the pending record to the next level's role."""
        notification = self.get(workflow_id, entity_id)
        if notification is None:
            logger.warning(
                "No notification for workflow %s entity %s, recreating it at level %s",
                workflow_id, entity_id, route.level,
            )
            return self.open(workflow_id, entity_id, route, message, partition_value)

        notification.role = route.role
        notification.level = route.level
        notification.partition_value = partition_value
        notification.status = NotificationStatus.PENDING.value
        notification.message = message
        notification.updated_at = datetime.utcnow()
        self.db.flush()
        return notification

    def close(
        self,
        workflow_id: int,
        entity_id: Any,
        status: NotificationStatus,
        message: str,
    ) -> Optional[ApprovalNotification]:
        """Mark the record terminal; role and level stay where they were."""
        notification = self.get(workflow_id, entity_id)
        if notification is None:
            logger.warning(
                "No notification to close for workflow %s entity %s", workflow_id, entity_id
            )
            return None

        notification.status = NotificationStatus(status).value
        notification.message = message
        notification.updated_at = datetime.utcnow()
        self.db.flush()
        return notification

    def _pending_query(
        self,
        role: Optional[str] = None,
        partitions: Optional[Iterable[str]] = None,
        workflow_id: Optional[int] = None,
    ):
        query = self.db.query(ApprovalNotification).filter(
            ApprovalNotification.status == NotificationStatus.PENDING.value
        )
        if role is not None:
            query = query.filter(ApprovalNotification.role == role)
        if workflow_id is not None:
            query = query.filter(ApprovalNotification.workflow_id == workflow_id)
        if partitions is not None:
            # unpartitioned items stay visible to partition-scoped roles
            query = query.filter(
                (ApprovalNotification.partition_value.is_(None))
                | (ApprovalNotification.partition_value.in_(list(partitions)))
            )
        return query

    def pending(
        self,
        workflow_id: Optional[int] = None,
        role: Optional[str] = None,
        partitions: Optional[Iterable[str]] = None,
    ) -> List[ApprovalNotification]:
        return self._pending_query(role, partitions, workflow_id).order_by(
            ApprovalNotification.updated_at.asc()
        ).all()

    def pending_at(
        self,
        workflow_id: int,
        role: str,
        routes: Iterable[Tuple[int, Optional[str]]],
    ) -> List[ApprovalNotification]:
        """
        Pending notifications of ``role`` at the given ``(level, partition)``
        routes. A ``None`` partition matches the level in any partition.
        """
        clauses = []
        for level, partition in routes:
            if partition is None:
                clauses.append(ApprovalNotification.level == level)
            else:
                clauses.append(and_(
                    ApprovalNotification.level == level,
                    ApprovalNotification.partition_value == partition,
                ))
        if not clauses:
            return []
        return self._pending_query(role, workflow_id=workflow_id).filter(
            or_(*clauses)
        ).order_by(
            ApprovalNotification.created_at.asc(),
            ApprovalNotification.id.asc(),
        ).all()

    def inbox(
        self,
        role: str,
        partitions: Optional[Iterable[str]] = None,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> List[ApprovalNotification]:
        """Pending notifications for a role, newest first."""
        return self._pending_query(role, partitions).order_by(
            ApprovalNotification.updated_at.desc(),
            ApprovalNotification.id.desc(),
        ).offset(offset).limit(limit).all()

    def count_for_role(self, role: str, partitions: Optional[Iterable[str]] = None) -> int:
        return self._pending_query(role, partitions).with_entities(
            func.count(ApprovalNotification.id)
        ).scalar() or 0

    def emit(self, role: str, count_delta: int = 1, **extra: Any) -> None:
        """
        Push a count change to listeners of ``role``.

        Never raises: delivery problems are logged and dropped.
        """
        if self.event_sink is None:
            return
        payload: Dict[str, Any] = {"role": role, "count": count_delta}
        payload.update(extra)
        try:
            self.event_sink.emit(role, payload)
        except Exception:
            logger.exception("Failed to emit notification event for role %s", role)
