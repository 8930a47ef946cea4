"""Approval workflow statuses and actions.

State Machine Diagram:

    create
      │
    ┌─▼───────────────┐  advance (next level exists)
    │ VERIFICATION    │◄──────────────┐
    │ level = L       │───────────────┘  level = L + 1
    └──┬───────────┬──┘
       │ advance   │ reject
       │ (chain    │
       │ exhausted)│
    ┌──▼─────┐ ┌───▼──────┐
    │APPROVED│ │ REJECTED │   terminal, level frozen
    └────────┘ └──────────┘

Level 0 is reserved for the creation signature; level definitions start at 1.
"""

from enum import Enum
from typing import Dict, NamedTuple, Optional, Set


CREATION_LEVEL = 0
FIRST_LEVEL = 1


class EntityStatus(str, Enum):
    """Statuses of an entity driven through a workflow."""

    VERIFICATION = "Verification"  # Awaiting action at entity.level
    APPROVED = "Approved"          # Chain exhausted
    REJECTED = "Rejected"          # Rejected at entity.level


class NotificationStatus(str, Enum):
    """Statuses of the single live notification record of an entity."""

    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class WorkflowAction(str, Enum):
    """Actions recorded in the signature trail."""

    CREATE = "created"
    ADVANCE = "advanced"
    REJECT = "rejected"


class MessageEvent(str, Enum):
    """Events a notification message is built for."""

    CREATED = "created"
    NEXT_LEVEL = "next_level"
    APPROVED = "approved"
    REJECTED = "rejected"


class ActionRule(NamedTuple):
    """Which statuses an action accepts and which status it may produce."""
    action: WorkflowAction
    from_status: Optional[EntityStatus]
    to_status: EntityStatus
    guarded: bool = False


ACTION_RULES: list[ActionRule] = [
    ActionRule(WorkflowAction.CREATE, None, EntityStatus.VERIFICATION),
    ActionRule(WorkflowAction.ADVANCE, EntityStatus.VERIFICATION, EntityStatus.VERIFICATION, guarded=True),
    ActionRule(WorkflowAction.ADVANCE, EntityStatus.VERIFICATION, EntityStatus.APPROVED, guarded=True),
    ActionRule(WorkflowAction.REJECT, EntityStatus.VERIFICATION, EntityStatus.REJECTED),
]

VALID_ACTIONS: Dict[Optional[EntityStatus], Set[WorkflowAction]] = {}
for rule in ACTION_RULES:
    VALID_ACTIONS.setdefault(rule.from_status, set()).add(rule.action)


TERMINAL_STATUSES: Set[EntityStatus] = {
    EntityStatus.APPROVED,
    EntityStatus.REJECTED,
}

# Notification status mirroring a terminal entity status
TERMINAL_NOTIFICATION_STATUS: Dict[EntityStatus, NotificationStatus] = {
    EntityStatus.APPROVED: NotificationStatus.APPROVED,
    EntityStatus.REJECTED: NotificationStatus.REJECTED,
}


def is_terminal(status) -> bool:
    """Check whether an entity status (enum or raw string) is terminal."""
    try:
        return EntityStatus(status) in TERMINAL_STATUSES
    except ValueError:
        return False


def can_perform(status, action: WorkflowAction) -> bool:
    """Check if an action is valid for an entity in the given status."""
    try:
        key = EntityStatus(status) if status is not None else None
    except ValueError:
        return False
    return action in VALID_ACTIONS.get(key, set())


def is_guarded(action: WorkflowAction) -> bool:
    """Whether the duplicate-approval guard runs before the action."""
    return any(rule.guarded for rule in ACTION_RULES if rule.action == action)
