"""Collaborator interfaces the approval engine depends on.

Business modules own their entities; the engine only needs to load, save
and query them through an ``EntityStore``. Workflow definitions, role
partition assignments and live events are reached the same way, so the
engine never binds to a concrete persistence model.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, runtime_checkable

from approvalhub.core.workflow.definitions import WorkflowDefinition


@runtime_checkable
class ApprovableEntity(Protocol):
    """Fields of a business entity the engine reads and writes."""

    id: Any
    status: str
    level: int
    partition_value: Optional[str]
    batch_key: Optional[str]


class EntityStore(Protocol):
    """Persistence of one business entity type."""

    def new(self, data: Mapping[str, Any]) -> ApprovableEntity:
        """Build an unsaved entity from caller-supplied data."""
        ...

    def find_by_id(self, entity_id: Any) -> Optional[ApprovableEntity]:
        ...

    def save(self, entity: ApprovableEntity) -> ApprovableEntity:
        ...

    def find(
        self,
        *,
        ids: Optional[Iterable[Any]] = None,
        status: Optional[str] = None,
        batch_key: Optional[str] = None,
    ) -> List[ApprovableEntity]:
        ...

    def find_by_reference(self, fields: Iterable[str], reference: str) -> Optional[ApprovableEntity]:
        ...


class WorkflowStore(Protocol):
    """Source of provisioned workflow definitions."""

    def find_by_workflow_id(self, workflow_id: int) -> Optional[WorkflowDefinition]:
        ...


class PartitionAssignmentStore(Protocol):
    """Role to partition assignments, maintained outside the engine."""

    def is_partition_scoped(self, role: str) -> bool:
        ...

    def partitions_for(self, role: str, actor_id: Optional[str] = None) -> List[str]:
        ...


class EventSink(Protocol):
    """
    Fire-and-forget push of a payload to everyone listening for a role.

    The engine emits while the transaction is still open; sinks that reach
    the outside world should buffer until commit (see ``EventOutbox``).
    """

    def emit(self, role: str, payload: Dict[str, Any]) -> None:
        ...


class EventPublisher(Protocol):
    """Asynchronous delivery of one committed event."""

    async def publish(self, role: str, payload: Dict[str, Any]) -> None:
        ...


class InMemoryWorkflowStore:
    """Workflow store backed by a dict, for definitions kept in code (e.g. loaded with ``load_definitions``)."""

    def __init__(self, definitions: Optional[Iterable[WorkflowDefinition]] = None):
        self._definitions: Dict[int, WorkflowDefinition] = {}
        for definition in definitions or []:
            self.put(definition)

    def put(self, definition: WorkflowDefinition) -> None:
        self._definitions[definition.id] = definition

    def find_by_workflow_id(self, workflow_id: int) -> Optional[WorkflowDefinition]:
        return self._definitions.get(workflow_id)
