"""Approval signature (audit) model.

This table is APPEND-ONLY. ORM listeners refuse updates and deletes, and the
initial migration installs database triggers doing the same, so the signature
trail of an entity can always be replayed.
"""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Text, UniqueConstraint, Index, event

from approvalhub.db.base import Base


class ImmutableRecordError(Exception):
    """Raised when code tries to change or remove an approval signature."""


class ApprovalSignature(Base):
    """
    One actor's action on one entity at one level.

    Level 0 is the creation signature. Ordering by ``(level, created_at, id)``
    reconstructs the approval history.
    """
    __tablename__ = "approval_signatures"
    __table_args__ = (
        # one action per role per level; backs the duplicate-approval guard
        UniqueConstraint(
            "workflow_id", "entity_id", "level", "role", "action",
            name="uq_approval_signatures_step",
        ),
        Index("ix_approval_signatures_entity_history", "workflow_id", "entity_id", "level", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    workflow_id = Column(Integer, nullable=False, index=True)
    entity_id = Column(String(64), nullable=False, index=True)

    action = Column(String(20), nullable=False)  # created, advanced, rejected
    role = Column(String(64), nullable=False)
    level = Column(Integer, nullable=False)
    remarks = Column(Text, nullable=True)

    actor_id = Column(String(64), nullable=True)
    actor_name = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def to_dict(self) -> dict:
        return {
            "entity_id": self.entity_id,
            "workflow_id": self.workflow_id,
            "action": self.action,
            "role": self.role,
            "level": self.level,
            "remarks": self.remarks,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<ApprovalSignature {self.entity_id} level={self.level} role={self.role} {self.action}>"


@event.listens_for(ApprovalSignature, "before_update")
def _refuse_update(mapper, connection, target):
    raise ImmutableRecordError(f"Approval signatures are immutable (id={target.id})")


@event.listens_for(ApprovalSignature, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise ImmutableRecordError(f"Approval signatures cannot be deleted (id={target.id})")
