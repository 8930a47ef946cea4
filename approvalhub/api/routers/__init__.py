"""API routers for ApprovalHub."""

from . import approvals
from . import notifications
from . import workflows

__all__ = [
    "approvals",
    "notifications",
    "workflows",
]
