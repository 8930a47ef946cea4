"""Error taxonomy for the approval workflow engine.

Every engine failure is a ``WorkflowError`` subclass carrying a stable
``code`` and the HTTP status the API layer maps it to. Errors are raised to
the immediate caller; the engine never retries.
"""

from typing import Any, Optional


class WorkflowError(Exception):
    """Base class for all approval workflow errors."""

    code = "workflow_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "detail": self.message}


class WorkflowNotFound(WorkflowError):
    """Raised when no definition exists for a workflow id."""

    code = "workflow_not_found"
    status_code = 404

    def __init__(self, workflow_id: int):
        super().__init__(f"Workflow {workflow_id} not found")
        self.workflow_id = workflow_id


class WorkflowMisconfigured(WorkflowError):
    """Raised when a workflow cannot route a new entity (no level-1 route)."""

    code = "workflow_misconfigured"
    status_code = 500

    def __init__(self, workflow_id: int, partition: Optional[str] = None):
        where = f" for partition {partition}" if partition is not None else ""
        super().__init__(f"Workflow {workflow_id} has no level 1 route{where}")
        self.workflow_id = workflow_id
        self.partition = partition


class LevelNotFound(WorkflowError):
    """No level definition matches. Signals chain exhaustion to the engine."""

    code = "level_not_found"
    status_code = 404

    def __init__(self, workflow_id: int, level: int, partition: Optional[str] = None):
        where = f" (partition {partition})" if partition is not None else ""
        super().__init__(f"Workflow {workflow_id} has no level {level}{where}")
        self.workflow_id = workflow_id
        self.level = level
        self.partition = partition


class EntityNotFound(WorkflowError):
    code = "entity_not_found"
    status_code = 404

    def __init__(self, entity_type: str, entity_id: Any):
        super().__init__(f"{entity_type} {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class InvalidState(WorkflowError):
    """Raised when operating on an entity that already reached a terminal status."""

    code = "invalid_state"
    status_code = 409

    def __init__(self, entity_type: str, entity_id: Any, status: str):
        super().__init__(f"{entity_type} {entity_id} is already {status}")
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.status = status


class AlreadyProcessed(WorkflowError):
    """Raised when a role tries to act twice on the same entity at the same level."""

    code = "already_processed"
    status_code = 409

    def __init__(self, entity_type: str, entity_id: Any, level: int, role: str):
        super().__init__(
            f"This {entity_type} has already been processed at your role level"
            f" (level {level}, role {role})"
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.level = level
        self.role = role


class AccessDenied(WorkflowError):
    """Raised when a role has no route in a workflow."""

    code = "access_denied"
    status_code = 403

    def __init__(self, workflow_id: int, role: str, reason: Optional[str] = None):
        super().__init__(
            reason or f"Access denied: no level of workflow {workflow_id} is routed to role {role}"
        )
        self.workflow_id = workflow_id
        self.role = role


class ValidationError(WorkflowError):
    code = "validation_error"
    status_code = 400


class WorkflowLocked(WorkflowError):
    """Raised when a definition change would strand items that are still pending."""

    code = "workflow_locked"
    status_code = 409

    def __init__(self, message: str, locked: Optional[list[dict[str, Any]]] = None):
        super().__init__(message)
        self.locked = locked or []

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["locked"] = self.locked
        return data


class DocumentTypeNotFound(WorkflowError):
    """Raised when no business module registered the requested document type."""

    code = "document_type_not_found"
    status_code = 404

    def __init__(self, key: str):
        super().__init__(f"Unknown document type {key}")
        self.key = key
