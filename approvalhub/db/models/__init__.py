"""Database models for ApprovalHub."""

from approvalhub.db.models.workflow import Workflow, WorkflowLevel
from approvalhub.db.models.audit import ApprovalSignature, ImmutableRecordError
from approvalhub.db.models.notification import ApprovalNotification
from approvalhub.db.models.role import Role, RolePartitionAssignment
from approvalhub.db.models.mixins import ApprovableMixin

__all__ = [
    "Workflow",
    "WorkflowLevel",
    "ApprovalSignature",
    "ImmutableRecordError",
    "ApprovalNotification",
    "Role",
    "RolePartitionAssignment",
    "ApprovableMixin",
]
