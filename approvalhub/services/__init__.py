"""Persistence-backed services used by the approval engine."""

from approvalhub.services.audit import AuditTrail
from approvalhub.services.notifications import NotificationChannel
from approvalhub.services.events import (
    InMemoryEventBus,
    RedisEventSink,
    WebhookEventSink,
    CompositeEventSink,
    EventOutbox,
    build_event_sink,
)
from approvalhub.services.stores import (
    SqlAlchemyEntityStore,
    SqlAlchemyWorkflowStore,
    SqlAlchemyAssignmentStore,
)
from approvalhub.services.workflows import WorkflowAdmin

__all__ = [
    "AuditTrail",
    "NotificationChannel",
    "InMemoryEventBus",
    "RedisEventSink",
    "WebhookEventSink",
    "CompositeEventSink",
    "EventOutbox",
    "build_event_sink",
    "SqlAlchemyEntityStore",
    "SqlAlchemyWorkflowStore",
    "SqlAlchemyAssignmentStore",
    "WorkflowAdmin",
]
