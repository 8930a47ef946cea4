"""SQLAlchemy implementations of the engine's collaborator stores."""

import logging
from datetime import datetime
from typing import Any, Callable, Iterable, List, Mapping, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from approvalhub.core.exceptions import ValidationError
from approvalhub.core.workflow.definitions import WorkflowDefinition
from approvalhub.db.models.role import Role, RolePartitionAssignment
from approvalhub.db.models.workflow import Workflow

logger = logging.getLogger(__name__)


class SqlAlchemyEntityStore:
    """Entity store for any mapped model using ``ApprovableMixin``."""

    def __init__(self, db: Session, model):
        self.db = db
        self.model = model
        self._pk = model.__mapper__.primary_key[0]

    def _coerce_id(self, entity_id: Any) -> Any:
        python_type = self._pk.type.python_type
        if isinstance(entity_id, python_type):
            return entity_id
        try:
            return python_type(entity_id)
        except (TypeError, ValueError):
            return None

    def new(self, data: Mapping[str, Any]):
        try:
            return self.model(**dict(data))
        except TypeError as e:
            raise ValidationError(f"Invalid {self.model.__name__} data: {e}") from e

    def find_by_id(self, entity_id: Any):
        key = self._coerce_id(entity_id)
        if key is None:
            return None
        return self.db.get(self.model, key)

    def save(self, entity):
        self.db.add(entity)
        self.db.flush()
        return entity

    def find(
        self,
        *,
        ids: Optional[Iterable[Any]] = None,
        status: Optional[str] = None,
        batch_key: Optional[str] = None,
    ) -> List[Any]:
        query = self.db.query(self.model)
        if ids is not None:
            keys = [k for k in (self._coerce_id(i) for i in ids) if k is not None]
            query = query.filter(self._pk.in_(keys))
        if status is not None:
            query = query.filter(self.model.status == status)
        if batch_key is not None:
            query = query.filter(self.model.batch_key == batch_key)
        return query.order_by(self._pk.asc()).all()

    def find_by_reference(self, fields: Iterable[str], reference: str):
        """First entity whose value in any of ``fields`` equals ``reference``."""
        columns = [getattr(self.model, name) for name in fields if hasattr(self.model, name)]
        if not columns:
            return None
        return self.db.query(self.model).filter(
            or_(*[column == reference for column in columns])
        ).order_by(self._pk.asc()).first()


class SqlAlchemyWorkflowStore:
    """
    Workflow store reading the ``workflows`` tables.

    With a ``session_factory`` it opens its own short-lived session so the
    registry cache can be filled independently of whichever request happens
    to miss it. With ``db`` it reads through that session instead.
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        *,
        db: Optional[Session] = None,
    ):
        if session_factory is None and db is None:
            raise ValueError("Either session_factory or db is required")
        self.session_factory = session_factory
        self.db = db

    def find_by_workflow_id(self, workflow_id: int) -> Optional[WorkflowDefinition]:
        if self.db is not None:
            row = self.db.get(Workflow, workflow_id)
            return row.to_definition() if row is not None else None
        with self.session_factory() as db:
            row = db.get(Workflow, workflow_id)
            return row.to_definition() if row is not None else None


class SqlAlchemyAssignmentStore:
    """Role to partition assignments from the ``roles`` tables."""

    def __init__(self, db: Session):
        self.db = db

    def is_partition_scoped(self, role: str) -> bool:
        row = self.db.get(Role, role)
        return bool(row and row.partition_scoped)

    def partitions_for(self, role: str, actor_id: Optional[str] = None) -> List[str]:
        now = datetime.utcnow()
        query = self.db.query(RolePartitionAssignment.partition_value).filter(
            and_(
                RolePartitionAssignment.role_id == role,
                or_(
                    RolePartitionAssignment.expires_at.is_(None),
                    RolePartitionAssignment.expires_at > now,
                ),
            )
        )
        if actor_id is not None:
            query = query.filter(RolePartitionAssignment.actor_id == actor_id)
        return sorted({value for (value,) in query.all()})

    def assign(
        self,
        role: str,
        actor_id: str,
        partition_value: str,
        *,
        assigned_by: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> RolePartitionAssignment:
        assignment = RolePartitionAssignment(
            role_id=role,
            actor_id=actor_id,
            partition_value=partition_value,
            assigned_by=assigned_by,
            expires_at=expires_at,
        )
        self.db.add(assignment)
        self.db.flush()
        logger.info("Assigned partition %s of role %s to %s", partition_value, role, actor_id)
        return assignment
