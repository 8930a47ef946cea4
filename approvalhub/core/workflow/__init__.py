"""Multi-level approval workflow core.

The engine itself lives in ``approvalhub.core.workflow.engine`` and the
document-type registry in ``approvalhub.core.workflow.documents``; both pull
in the persistence layer, so they are imported explicitly.
"""

from .states import (
    CREATION_LEVEL,
    FIRST_LEVEL,
    EntityStatus,
    NotificationStatus,
    WorkflowAction,
    MessageEvent,
    is_terminal,
    can_perform,
)
from .definitions import LevelDef, WorkflowDefinition, load_definitions
from .registry import WorkflowRegistry
from .access import AccessResolver
from .stores import (
    ApprovableEntity,
    EntityStore,
    WorkflowStore,
    PartitionAssignmentStore,
    EventSink,
    EventPublisher,
    InMemoryWorkflowStore,
)

__all__ = [
    "CREATION_LEVEL",
    "FIRST_LEVEL",
    "EntityStatus",
    "NotificationStatus",
    "WorkflowAction",
    "MessageEvent",
    "is_terminal",
    "can_perform",
    "LevelDef",
    "WorkflowDefinition",
    "load_definitions",
    "WorkflowRegistry",
    "AccessResolver",
    "ApprovableEntity",
    "EntityStore",
    "WorkflowStore",
    "PartitionAssignmentStore",
    "EventSink",
    "EventPublisher",
    "InMemoryWorkflowStore",
]
