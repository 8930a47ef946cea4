"""Roles and per-actor partition assignments.

Partition-scoped roles only see items of the partitions explicitly assigned
to the acting user; other roles act workflow-wide.
"""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import relationship

from approvalhub.db.base import Base


class Role(Base):
    __tablename__ = "roles"

    id = Column(String(64), primary_key=True)  # identifier used in workflow levels
    name = Column(String(100), nullable=False, unique=True)
    partition_scoped = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    assignments = relationship("RolePartitionAssignment", back_populates="role", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Role {self.id} {self.name}>"


class RolePartitionAssignment(Base):
    """
    Grants one actor holding a role access to one partition value.
    """
    __tablename__ = "role_partition_assignments"
    __table_args__ = (
        UniqueConstraint("role_id", "actor_id", "partition_value", name="uq_role_partition_assignment"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    role_id = Column(String(64), ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True)
    actor_id = Column(String(64), nullable=False, index=True)
    partition_value = Column(String(64), nullable=False)

    # Who assigned this partition
    assigned_by = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=True)  # Optional expiration

    role = relationship("Role", back_populates="assignments")

    def __repr__(self) -> str:
        return f"<RolePartitionAssignment role={self.role_id} actor={self.actor_id} partition={self.partition_value}>"
