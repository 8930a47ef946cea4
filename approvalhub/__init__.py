"""ApprovalHub - multi-level approval workflow engine."""

__version__ = "0.3.0"
