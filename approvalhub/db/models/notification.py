"""Live approval notification model."""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Text, UniqueConstraint

from approvalhub.db.base import Base
from approvalhub.core.workflow.states import NotificationStatus


class ApprovalNotification(Base):
    """
    The single "awaiting action" record of an entity.

    Created once per entity and updated in place on every level transition.
    ``version`` is checked by SQLAlchemy on every UPDATE, so two approvers
    racing on the same record cannot both win.
    """
    __tablename__ = "approval_notifications"
    __table_args__ = (
        UniqueConstraint("workflow_id", "entity_id", name="uq_approval_notifications_entity"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    workflow_id = Column(Integer, nullable=False, index=True)
    entity_id = Column(String(64), nullable=False, index=True)

    # Routing of the pending action
    role = Column(String(64), nullable=False, index=True)
    partition_value = Column(String(64), nullable=True, index=True)
    level = Column(Integer, nullable=False)

    status = Column(String(20), nullable=False, default=NotificationStatus.PENDING.value, index=True)
    message = Column(Text, nullable=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<ApprovalNotification {self.entity_id} level={self.level} role={self.role} [{self.status}]>"
