"""Columns a business entity mixes in to be driven by the approval engine."""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer
from sqlalchemy.orm import declared_attr

from approvalhub.core.workflow.states import EntityStatus, FIRST_LEVEL


class ApprovableMixin:
    """
    Engine-managed fields of an entity.

    Usage::

        class ItemCode(ApprovableMixin, Base):
            __tablename__ = "item_codes"
            id = Column(Integer, primary_key=True)
            base_code = Column(String(50), nullable=False)

    ``partition_value`` is set once at creation for partitioned workflows.
    ``version`` turns a concurrent second write into a ``StaleDataError``.
    """

    status = Column(String(20), nullable=False, default=EntityStatus.VERIFICATION.value, index=True)
    level = Column(Integer, nullable=False, default=FIRST_LEVEL)
    partition_value = Column(String(64), nullable=True, index=True)
    batch_key = Column(String(64), nullable=True, index=True)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @declared_attr.directive
    def __mapper_args__(cls):
        return {"version_id_col": cls.version}
