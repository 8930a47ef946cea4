"""Workflow definition database models.

A workflow row owns its ordered level rows. The rows are converted to the
immutable ``WorkflowDefinition`` the registry caches.
"""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Integer, Numeric, UniqueConstraint
from sqlalchemy.orm import relationship, object_session

from approvalhub.db.base import Base
from approvalhub.core.workflow.definitions import LevelDef, WorkflowDefinition


class Workflow(Base):
    """A provisioned approval workflow."""
    __tablename__ = "workflows"

    id = Column(Integer, primary_key=True, autoincrement=False)  # business workflow id, e.g. 149
    name = Column(String(255), nullable=True)
    entity_type = Column(String(100), nullable=False)
    partitioned = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    levels = relationship(
        "WorkflowLevel",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowLevel.level",
    )

    def to_definition(self) -> WorkflowDefinition:
        return WorkflowDefinition(
            id=self.id,
            name=self.name,
            entity_type=self.entity_type,
            partitioned=bool(self.partitioned),
            levels=tuple(
                LevelDef(
                    level=row.level,
                    role=row.role,
                    partition=row.partition,
                    approval_limit=row.approval_limit,
                )
                for row in self.levels
            ),
        )

    def apply_definition(self, definition: WorkflowDefinition) -> None:
        """Replace name, flags and level rows with the given definition."""
        session = object_session(self)
        if session is not None and self.levels:
            # old rows must be gone before new ones hit uq_workflow_levels_route
            self.levels.clear()
            session.flush()

        self.name = definition.name
        self.entity_type = definition.entity_type
        self.partitioned = definition.partitioned
        self.levels = [
            WorkflowLevel(
                level=d.level,
                role=d.role,
                partition=d.partition,
                approval_limit=d.approval_limit,
            )
            for d in definition.levels
        ]

    def __repr__(self) -> str:
        return f"<Workflow {self.id} {self.entity_type}>"


class WorkflowLevel(Base):
    """One level of a workflow chain, optionally bound to a partition."""
    __tablename__ = "workflow_levels"
    __table_args__ = (
        UniqueConstraint("workflow_id", "level", "partition", name="uq_workflow_levels_route"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    workflow_id = Column(Integer, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True)

    level = Column(Integer, nullable=False)
    role = Column(String(64), nullable=False, index=True)
    partition = Column(String(64), nullable=True)
    approval_limit = Column(Numeric(18, 2), nullable=True)  # advisory

    workflow = relationship("Workflow", back_populates="levels")

    def __repr__(self) -> str:
        return f"<WorkflowLevel {self.workflow_id}:{self.level} role={self.role} partition={self.partition}>"
