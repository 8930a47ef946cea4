"""Role and partition aware access resolution.

Some roles act on a workflow regardless of partition; partition-scoped roles
only see the partitions assigned to them in the role/partition assignment
store.
"""

from typing import Iterable, List, Optional

from approvalhub.core.exceptions import AccessDenied
from approvalhub.core.workflow.definitions import LevelDef, WorkflowDefinition
from approvalhub.core.workflow.registry import WorkflowRegistry
from approvalhub.core.workflow.stores import PartitionAssignmentStore


class AccessResolver:
    """Computes which level definitions a role may act on."""

    def __init__(
        self,
        registry: WorkflowRegistry,
        assignments: Optional[PartitionAssignmentStore] = None,
    ):
        self.registry = registry
        self.assignments = assignments

    def eligible_levels(
        self,
        workflow_id: int,
        role: str,
        role_partitions: Optional[Iterable[str]] = None,
        *,
        actor_id: Optional[str] = None,
    ) -> List[LevelDef]:
        """
        Get the level definitions ``role`` may act on.

        Args:
            workflow_id: Workflow to look in
            role: Acting role
            role_partitions: Partitions explicitly granted to the actor. Only
                applied to partition-scoped roles; when omitted they are
                looked up in the assignment store.
            actor_id: Actor used for the assignment lookup

        Returns:
            Matching level definitions. May be empty when the role is
            partition-scoped and none of its partitions are routed.

        Raises:
            WorkflowNotFound: If the workflow id is unknown
            AccessDenied: If no level of the workflow is routed to the role
        """
        definition = self.registry.get(workflow_id)
        levels = definition.levels_for_role(role)
        if not levels:
            raise AccessDenied(workflow_id, role)

        partitions = self.partitions_in_scope(definition, role, role_partitions, actor_id=actor_id)
        if partitions is None:
            return levels
        return [d for d in levels if d.partition in partitions]

    def partitions_in_scope(
        self,
        definition: WorkflowDefinition,
        role: str,
        role_partitions: Optional[Iterable[str]] = None,
        *,
        actor_id: Optional[str] = None,
    ) -> Optional[set]:
        """
        Partitions restricting ``role`` on ``definition``, or None when unrestricted.

        With an assignment store only partition-scoped roles are restricted;
        ``role_partitions`` is ignored for workflow-wide roles. Without one,
        the caller's ``role_partitions`` are the only scope information.
        """
        if not definition.partitioned:
            return None
        if self.assignments is None:
            return None if role_partitions is None else {str(p) for p in role_partitions}
        if not self.assignments.is_partition_scoped(role):
            return None
        if role_partitions is not None:
            return {str(p) for p in role_partitions}
        return set(self.assignments.partitions_for(role, actor_id))

    def can_act(
        self,
        workflow_id: int,
        role: str,
        level: int,
        partition: Optional[str] = None,
        role_partitions: Optional[Iterable[str]] = None,
        *,
        actor_id: Optional[str] = None,
    ) -> bool:
        """Whether ``role`` is routed at ``(level, partition)`` within its scope."""
        try:
            levels = self.eligible_levels(workflow_id, role, role_partitions, actor_id=actor_id)
        except AccessDenied:
            return False
        definition = self.registry.get(workflow_id)
        wanted = partition if definition.partitioned else None
        return any(d.level == level and d.partition == wanted for d in levels)
