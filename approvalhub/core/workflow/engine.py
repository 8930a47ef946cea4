"""Approval engine: create, advance, reject, list pending and batch operations.

Each operation performs all of its writes (entity, signature, notification)
through the caller's session and never commits; the caller commits on
success and rolls back on error, so one call is all-or-nothing. Batch items
each run in their own SAVEPOINT.
"""

import logging
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from approvalhub.core.exceptions import (
    AccessDenied,
    AlreadyProcessed,
    EntityNotFound,
    InvalidState,
    LevelNotFound,
    ValidationError,
    WorkflowError,
    WorkflowMisconfigured,
)
from approvalhub.core.workflow.access import AccessResolver
from approvalhub.core.workflow.registry import WorkflowRegistry
from approvalhub.core.workflow.states import (
    CREATION_LEVEL,
    FIRST_LEVEL,
    TERMINAL_NOTIFICATION_STATUS,
    EntityStatus,
    MessageEvent,
    WorkflowAction,
    can_perform,
    is_guarded,
)
from approvalhub.core.workflow.stores import EntityStore
from approvalhub.services.audit import AuditTrail
from approvalhub.services.notifications import NotificationChannel

logger = logging.getLogger(__name__)

MessageBuilder = Callable[[Any, MessageEvent], str]


@dataclass
class Actor:
    """Who is acting. Identity comes from the authentication layer."""

    id: str
    name: str
    role: str
    partitions: Optional[List[str]] = None


@dataclass
class CreateResult:
    entity: Any
    notification: Any


@dataclass
class TransitionResult:
    entity: Any
    message: str
    signatures: List[Any] = field(default_factory=list)


@dataclass
class PendingItem:
    entity: Any
    history: List[Any] = field(default_factory=list)


@dataclass
class TrackingResult:
    entity: Any
    latest_signature: Optional[Any]
    progress: Dict[str, int]


@dataclass
class BatchResult:
    succeeded: List[str] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"succeeded": list(self.succeeded), "failed": list(self.failed)}


class ApprovalEngine:
    """
    Drives entities of one workflow through its level chain.

    Args:
        workflow_id: Workflow the entities travel
        entity_type: Human readable type used in messages and errors
        entities: Store of the business entities
        registry: Workflow definitions
        audit: Signature trail
        notifications: Pending records and live events
        access: Role/partition resolution (built from the registry if omitted)
        db: Session used for per-item SAVEPOINTs in batch operations
        message_builder: ``(entity, event) -> str`` for notification messages
        enforce_route_role: Only the role routed at the entity's current level
            may advance or reject it
    """

    def __init__(
        self,
        *,
        workflow_id: int,
        entity_type: str,
        entities: EntityStore,
        registry: WorkflowRegistry,
        audit: AuditTrail,
        notifications: NotificationChannel,
        access: Optional[AccessResolver] = None,
        db: Optional[Session] = None,
        message_builder: Optional[MessageBuilder] = None,
        enforce_route_role: bool = False,
    ):
        self.workflow_id = workflow_id
        self.entity_type = entity_type
        self.entities = entities
        self.registry = registry
        self.audit = audit
        self.notifications = notifications
        self.access = access or AccessResolver(registry)
        self.db = db
        self.message_builder = message_builder
        self.enforce_route_role = enforce_route_role

    # Helpers

    def message(self, entity: Any, event: MessageEvent) -> str:
        if self.message_builder is not None:
            try:
                return self.message_builder(entity, event)
            except Exception:
                logger.exception(
                    "Message builder failed for %s %s (%s)", self.entity_type, entity.id, event.value
                )
        return default_message(self.entity_type, event)

    def _load(self, entity_id: Any) -> Any:
        entity = self.entities.find_by_id(entity_id)
        if entity is None:
            raise EntityNotFound(self.entity_type, entity_id)
        return entity

    def _check_open(self, entity: Any, action: WorkflowAction) -> None:
        if not can_perform(entity.status, action):
            raise InvalidState(self.entity_type, entity.id, entity.status)

    def _check_remarks(self, remarks: Optional[str], required: bool) -> None:
        if required and not (remarks or "").strip():
            raise ValidationError("Remarks are required")

    def _partition_of(self, entity: Any) -> Optional[str]:
        definition = self.registry.get(self.workflow_id)
        return entity.partition_value if definition.partitioned else None

    def _check_route_role(self, entity: Any, actor: Actor) -> None:
        if not self.enforce_route_role:
            return
        allowed = self.access.can_act(
            self.workflow_id,
            actor.role,
            entity.level,
            self._partition_of(entity),
            actor.partitions,
            actor_id=actor.id,
        )
        if not allowed:
            raise AccessDenied(
                self.workflow_id,
                actor.role,
                reason=(
                    f"Role {actor.role} is not routed at level {entity.level} "
                    f"of {self.entity_type} {entity.id}"
                ),
            )

    @contextmanager
    def _versioned(self, entity: Any, actor: Actor, level: int) -> Iterator[None]:
        """Turn a lost optimistic-lock race on the entity or its notification into ``AlreadyProcessed``."""
        try:
            yield
        except StaleDataError as e:
            logger.warning(
                "Concurrent update of %s %s at level %s", self.entity_type, entity.id, level
            )
            raise AlreadyProcessed(self.entity_type, entity.id, level, actor.role) from e

    def _save(self, entity: Any, actor: Actor, level: int) -> Any:
        with self._versioned(entity, actor, level):
            return self.entities.save(entity)

    @contextmanager
    def _item_scope(self) -> Iterator[None]:
        scope = self.db.begin_nested() if self.db is not None else nullcontext()
        with scope:
            yield

    # Operations

    def create_entity(
        self,
        data: Mapping[str, Any],
        actor: Actor,
        remarks: Optional[str] = None,
        *,
        require_remarks: bool = False,
    ) -> CreateResult:
        """
        Persist a new entity at level 1 and open its pending notification.

        Raises:
            WorkflowNotFound: If the workflow id is unknown
            ValidationError: If a partitioned workflow gets no partition value,
                or remarks are required but missing
            WorkflowMisconfigured: If no level-1 route exists for the partition
        """
        self._check_remarks(remarks, require_remarks)
        definition = self.registry.get(self.workflow_id)
        values = dict(data)

        partition = values.pop("partition_value", None)
        if definition.partitioned:
            if partition in (None, ""):
                raise ValidationError(
                    f"{self.entity_type} needs a partition value (workflow {self.workflow_id} is partitioned)"
                )
            partition = str(partition)
        else:
            partition = None

        route = definition.route(FIRST_LEVEL, partition)
        if route is None:
            raise WorkflowMisconfigured(self.workflow_id, partition)

        values.update(
            status=EntityStatus.VERIFICATION.value,
            level=FIRST_LEVEL,
            partition_value=partition,
        )
        entity = self.entities.save(self.entities.new(values))

        self.audit.append(
            self.workflow_id,
            entity.id,
            action=WorkflowAction.CREATE,
            role=actor.role,
            level=CREATION_LEVEL,
            remarks=remarks or f"{self.entity_type} Created",
            actor_id=actor.id,
            actor_name=actor.name,
            entity_type=self.entity_type,
        )

        notification = self.notifications.open(
            self.workflow_id,
            entity.id,
            route,
            self.message(entity, MessageEvent.CREATED),
            partition_value=partition,
        )
        self.notifications.emit(
            route.role, 1,
            event=MessageEvent.CREATED.value,
            workflow_id=self.workflow_id,
            entity_id=str(entity.id),
        )

        logger.info(
            "%s %s created by %s, routed to role %s at level %s",
            self.entity_type, entity.id, actor.id, route.role, route.level,
        )
        return CreateResult(entity=entity, notification=notification)

    def advance_entity(
        self,
        entity_id: Any,
        actor: Actor,
        remarks: Optional[str] = None,
        *,
        require_remarks: bool = False,
    ) -> TransitionResult:
        """
        Sign the entity at its current level and move it on.

        The entity goes to the next level when the chain has one, otherwise
        it is approved.

        Raises:
            ValidationError: If remarks are required but missing
            EntityNotFound: If the entity does not exist
            InvalidState: If the entity is already approved or rejected
            AccessDenied: If route-role enforcement is on and the role is not routed here
            AlreadyProcessed: If the role already advanced the entity at this level
            WorkflowNotFound: If the workflow id is unknown
        """
        self._check_remarks(remarks, require_remarks)
        entity = self._load(entity_id)
        self._check_open(entity, WorkflowAction.ADVANCE)
        self._check_route_role(entity, actor)

        level = entity.level
        partition = self._partition_of(entity)

        if is_guarded(WorkflowAction.ADVANCE) and self.audit.has_entry(
            self.workflow_id, entity.id, level, actor.role, WorkflowAction.ADVANCE
        ):
            logger.warning(
                "%s %s already advanced at level %s by role %s",
                self.entity_type, entity.id, level, actor.role,
            )
            raise AlreadyProcessed(self.entity_type, entity.id, level, actor.role)

        self.audit.append(
            self.workflow_id,
            entity.id,
            action=WorkflowAction.ADVANCE,
            role=actor.role,
            level=level,
            remarks=remarks,
            actor_id=actor.id,
            actor_name=actor.name,
            entity_type=self.entity_type,
        )

        try:
            next_route = self.registry.resolve(self.workflow_id, level + 1, partition)
        except LevelNotFound:
            next_route = None

        if next_route is not None:
            entity.level = next_route.level
            self._save(entity, actor, level)
            with self._versioned(entity, actor, level):
                self.notifications.move(
                    self.workflow_id,
                    entity.id,
                    next_route,
                    self.message(entity, MessageEvent.NEXT_LEVEL),
                    partition_value=partition,
                )
            self.notifications.emit(
                next_route.role, 1,
                event=MessageEvent.NEXT_LEVEL.value,
                workflow_id=self.workflow_id,
                entity_id=str(entity.id),
            )
            message = f"{self.entity_type} moved to next level"
            logger.info(
                "%s %s moved from level %s to %s (role %s)",
                self.entity_type, entity.id, level, next_route.level, next_route.role,
            )
        else:
            entity.status = EntityStatus.APPROVED.value
            self._save(entity, actor, level)
            with self._versioned(entity, actor, level):
                self.notifications.close(
                    self.workflow_id,
                    entity.id,
                    TERMINAL_NOTIFICATION_STATUS[EntityStatus.APPROVED],
                    self.message(entity, MessageEvent.APPROVED),
                )
            message = f"{self.entity_type} approved successfully"
            logger.info("%s %s approved at level %s by %s", self.entity_type, entity.id, level, actor.id)

        return TransitionResult(
            entity=entity,
            message=message,
            signatures=self.audit.history(self.workflow_id, entity.id),
        )

    def reject_entity(
        self,
        entity_id: Any,
        actor: Actor,
        remarks: Optional[str] = None,
        meta: Optional[Mapping[str, Any]] = None,
        *,
        require_remarks: bool = False,
    ) -> TransitionResult:
        """
        Reject the entity at its current level.

        ``meta["specific_field"]`` names an extra entity attribute that
        mirrors the status and is set to ``"Rejected"`` as well.

        Raises:
            ValidationError: If remarks are required but missing, or the
                mirror field does not exist on the entity
            EntityNotFound: If the entity does not exist
            InvalidState: If the entity is already approved or rejected
            AccessDenied: If route-role enforcement is on and the role is not routed here
        """
        self._check_remarks(remarks, require_remarks)
        entity = self._load(entity_id)
        self._check_open(entity, WorkflowAction.REJECT)
        self._check_route_role(entity, actor)

        level = entity.level
        specific_field = (meta or {}).get("specific_field")
        if specific_field and not hasattr(entity, specific_field):
            raise ValidationError(f"{self.entity_type} has no field {specific_field}")

        self.audit.append(
            self.workflow_id,
            entity.id,
            action=WorkflowAction.REJECT,
            role=actor.role,
            level=level,
            remarks=remarks,
            actor_id=actor.id,
            actor_name=actor.name,
            entity_type=self.entity_type,
        )

        entity.status = EntityStatus.REJECTED.value
        if specific_field:
            setattr(entity, specific_field, EntityStatus.REJECTED.value)
        self._save(entity, actor, level)

        with self._versioned(entity, actor, level):
            self.notifications.close(
                self.workflow_id,
                entity.id,
                TERMINAL_NOTIFICATION_STATUS[EntityStatus.REJECTED],
                self.message(entity, MessageEvent.REJECTED),
            )

        logger.info("%s %s rejected at level %s by %s", self.entity_type, entity.id, level, actor.id)
        return TransitionResult(
            entity=entity,
            message=f"{self.entity_type} rejected successfully",
            signatures=self.audit.history(self.workflow_id, entity.id),
        )

    def list_pending_for_role(
        self,
        role: str,
        actor_partitions: Optional[List[str]] = None,
        *,
        actor_id: Optional[str] = None,
        strict: bool = False,
    ) -> List[PendingItem]:
        """
        Entities awaiting ``role``, each with its ordered signature history.

        A role with no route in the workflow gets an empty list, or
        ``AccessDenied`` when ``strict`` is set.
        """
        try:
            levels = self.access.eligible_levels(
                self.workflow_id, role, actor_partitions, actor_id=actor_id
            )
        except AccessDenied:
            if strict:
                raise
            logger.debug("Role %s has no route in workflow %s", role, self.workflow_id)
            return []

        notifications = self.notifications.pending_at(
            self.workflow_id, role, [d.key for d in levels]
        )
        if not notifications:
            return []

        entities = self.entities.find(
            ids=[n.entity_id for n in notifications],
            status=EntityStatus.VERIFICATION.value,
        )
        by_id = {str(e.id): e for e in entities}
        histories = self.audit.histories(self.workflow_id, by_id.keys())

        items = []
        for notification in notifications:
            entity = by_id.get(notification.entity_id)
            if entity is None:
                logger.warning(
                    "Pending notification %s points at missing or closed %s %s",
                    notification.id, self.entity_type, notification.entity_id,
                )
                continue
            items.append(PendingItem(entity=entity, history=histories.get(str(entity.id), [])))
        return items

    def track_entity(
        self,
        entity: Any,
        role: str,
        actor_partitions: Optional[List[str]] = None,
        *,
        actor_id: Optional[str] = None,
    ) -> TrackingResult:
        """
        Where an entity stands in its chain, for anyone routed in the workflow.

        Progress counts the levels of the entity's partition chain already
        signed off: every level once approved, the levels below the current
        one otherwise.

        Raises:
            AccessDenied: If no level is routed to ``role``, or the role is
                partition-scoped and the entity's partition is outside its scope
            WorkflowNotFound: If the workflow id is unknown
        """
        definition = self.registry.get(self.workflow_id)
        self.access.eligible_levels(self.workflow_id, role, actor_partitions, actor_id=actor_id)

        partition = self._partition_of(entity)
        scope = self.access.partitions_in_scope(definition, role, actor_partitions, actor_id=actor_id)
        if scope is not None and partition not in scope:
            raise AccessDenied(
                self.workflow_id,
                role,
                reason=f"Role {role} has no access to partition {partition} of workflow {self.workflow_id}",
            )

        total = len(definition.chains().get(partition, []))
        if entity.status == EntityStatus.APPROVED.value:
            completed = total
        else:
            completed = min(max(entity.level - FIRST_LEVEL, 0), total)

        history = self.audit.history(self.workflow_id, entity.id)
        return TrackingResult(
            entity=entity,
            latest_signature=history[-1] if history else None,
            progress={
                "totalSteps": total,
                "completedSteps": completed,
                "remainingSteps": total - completed,
                "percentage": round(completed * 100 / total) if total else 0,
            },
        )

    def _run_batch(self, batch_key: str, operation: Callable[[Any], Any]) -> BatchResult:
        result = BatchResult()
        for entity in self.entities.find(batch_key=batch_key):
            entity_id = entity.id
            try:
                with self._item_scope():
                    operation(entity_id)
                result.succeeded.append(str(entity_id))
            except WorkflowError as e:
                result.failed.append({"id": str(entity_id), "error": e.message, "code": e.code})
        logger.info(
            "Batch %s of %s: %d succeeded, %d failed",
            batch_key, self.entity_type, len(result.succeeded), len(result.failed),
        )
        return result

    def advance_batch(
        self,
        batch_key: str,
        actor: Actor,
        remarks: Optional[str] = None,
        *,
        require_remarks: bool = False,
    ) -> BatchResult:
        """Advance every entity sharing ``batch_key``; failures are collected per item."""
        return self._run_batch(
            batch_key,
            lambda entity_id: self.advance_entity(
                entity_id, actor, remarks, require_remarks=require_remarks
            ),
        )

    def reject_batch(
        self,
        batch_key: str,
        actor: Actor,
        remarks: Optional[str] = None,
        meta: Optional[Mapping[str, Any]] = None,
        *,
        require_remarks: bool = False,
    ) -> BatchResult:
        """Reject every entity sharing ``batch_key``; failures are collected per item."""
        return self._run_batch(
            batch_key,
            lambda entity_id: self.reject_entity(
                entity_id, actor, remarks, meta, require_remarks=require_remarks
            ),
        )


def default_message(entity_type: str, event: MessageEvent, reference: Optional[str] = None) -> str:
    """Notification text used when a document type brings no builder of its own."""
    name = f"{entity_type} {reference}" if reference else entity_type
    if event == MessageEvent.CREATED:
        return f"New {entity_type} Created" + (f": {reference}" if reference else "")
    if event == MessageEvent.NEXT_LEVEL:
        return f"{name} moved to next level of verification"
    if event == MessageEvent.APPROVED:
        return f"{name} has been approved"
    if event == MessageEvent.REJECTED:
        return f"{name} has been rejected"
    return f"{name} {event}"
