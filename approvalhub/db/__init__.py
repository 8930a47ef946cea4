"""Database layer for ApprovalHub."""
