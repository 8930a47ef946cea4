"""Initial schema: workflows, signatures, notifications, role partitions

Revision ID: 0001
Revises:
Create Date: 2026-10-19

This migration:
1. Creates the workflow definition tables
2. Creates the approval signature (audit) table with its duplicate guard
3. Creates the live notification table (version-checked)
4. Creates roles and role/partition assignments
5. Installs triggers that make approval_signatures append-only
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the approval engine tables."""

    op.create_table(
        "workflows",
        sa.Column("id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("partitioned", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "workflow_levels",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("workflow_id", sa.Integer(), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(64), nullable=False),
        sa.Column("partition", sa.String(64), nullable=True),
        sa.Column("approval_limit", sa.Numeric(18, 2), nullable=True),
        sa.ForeignKeyConstraint(["workflow_id"], ["workflows.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workflow_id", "level", "partition", name="uq_workflow_levels_route"),
    )
    op.create_index("ix_workflow_levels_workflow_id", "workflow_levels", ["workflow_id"])
    op.create_index("ix_workflow_levels_role", "workflow_levels", ["role"])

    op.create_table(
        "approval_signatures",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("workflow_id", sa.Integer(), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("role", sa.String(64), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("actor_id", sa.String(64), nullable=True),
        sa.Column("actor_name", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "workflow_id", "entity_id", "level", "role", "action",
            name="uq_approval_signatures_step",
        ),
    )
    op.create_index("ix_approval_signatures_workflow_id", "approval_signatures", ["workflow_id"])
    op.create_index("ix_approval_signatures_entity_id", "approval_signatures", ["entity_id"])
    op.create_index("ix_approval_signatures_created_at", "approval_signatures", ["created_at"])
    op.create_index(
        "ix_approval_signatures_entity_history",
        "approval_signatures",
        ["workflow_id", "entity_id", "level", "created_at"],
    )

    op.create_table(
        "approval_notifications",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("workflow_id", sa.Integer(), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("role", sa.String(64), nullable=False),
        sa.Column("partition_value", sa.String(64), nullable=True),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workflow_id", "entity_id", name="uq_approval_notifications_entity"),
    )
    op.create_index("ix_approval_notifications_workflow_id", "approval_notifications", ["workflow_id"])
    op.create_index("ix_approval_notifications_entity_id", "approval_notifications", ["entity_id"])
    op.create_index("ix_approval_notifications_role", "approval_notifications", ["role"])
    op.create_index("ix_approval_notifications_partition_value", "approval_notifications", ["partition_value"])
    op.create_index("ix_approval_notifications_status", "approval_notifications", ["status"])
    op.create_index("ix_approval_notifications_created_at", "approval_notifications", ["created_at"])

    op.create_table(
        "roles",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("partition_scoped", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "role_partition_assignments",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("role_id", sa.String(64), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("partition_value", sa.String(64), nullable=False),
        sa.Column("assigned_by", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("role_id", "actor_id", "partition_value", name="uq_role_partition_assignment"),
    )
    op.create_index("ix_role_partition_assignments_role_id", "role_partition_assignments", ["role_id"])
    op.create_index("ix_role_partition_assignments_actor_id", "role_partition_assignments", ["actor_id"])

    _create_immutability_triggers()


def _create_immutability_triggers() -> None:
    dialect = op.get_bind().dialect.name

    if dialect == "postgresql":
        op.execute("""
            CREATE OR REPLACE FUNCTION prevent_approval_signature_change()
            RETURNS TRIGGER AS $trigger$
            BEGIN
                RAISE EXCEPTION 'Approval signatures are immutable. Record ID: %', OLD.id;
            END;
            $trigger$ LANGUAGE plpgsql;
        """)
        op.execute("""
            CREATE TRIGGER approval_signatures_prevent_update
            BEFORE UPDATE ON approval_signatures
            FOR EACH ROW
            EXECUTE FUNCTION prevent_approval_signature_change();
        """)
        op.execute("""
            CREATE TRIGGER approval_signatures_prevent_delete
            BEFORE DELETE ON approval_signatures
            FOR EACH ROW
            EXECUTE FUNCTION prevent_approval_signature_change();
        """)
    elif dialect == "sqlite":
        op.execute("""
            CREATE TRIGGER approval_signatures_prevent_update
            BEFORE UPDATE ON approval_signatures
            BEGIN
                SELECT RAISE(ABORT, 'Approval signatures are immutable');
            END;
        """)
        op.execute("""
            CREATE TRIGGER approval_signatures_prevent_delete
            BEFORE DELETE ON approval_signatures
            BEGIN
                SELECT RAISE(ABORT, 'Approval signatures are immutable');
            END;
        """)


def downgrade() -> None:
    """Drop the approval engine tables."""
    dialect = op.get_bind().dialect.name

    # Drop triggers
    if dialect == "postgresql":
        op.execute("DROP TRIGGER IF EXISTS approval_signatures_prevent_update ON approval_signatures;")
        op.execute("DROP TRIGGER IF EXISTS approval_signatures_prevent_delete ON approval_signatures;")
        op.execute("DROP FUNCTION IF EXISTS prevent_approval_signature_change();")
    elif dialect == "sqlite":
        op.execute("DROP TRIGGER IF EXISTS approval_signatures_prevent_update;")
        op.execute("DROP TRIGGER IF EXISTS approval_signatures_prevent_delete;")

    op.drop_index("ix_role_partition_assignments_actor_id", table_name="role_partition_assignments")
    op.drop_index("ix_role_partition_assignments_role_id", table_name="role_partition_assignments")
    op.drop_table("role_partition_assignments")
    op.drop_table("roles")

    op.drop_index("ix_approval_notifications_created_at", table_name="approval_notifications")
    op.drop_index("ix_approval_notifications_status", table_name="approval_notifications")
    op.drop_index("ix_approval_notifications_partition_value", table_name="approval_notifications")
    op.drop_index("ix_approval_notifications_role", table_name="approval_notifications")
    op.drop_index("ix_approval_notifications_entity_id", table_name="approval_notifications")
    op.drop_index("ix_approval_notifications_workflow_id", table_name="approval_notifications")
    op.drop_table("approval_notifications")

    op.drop_index("ix_approval_signatures_entity_history", table_name="approval_signatures")
    op.drop_index("ix_approval_signatures_created_at", table_name="approval_signatures")
    op.drop_index("ix_approval_signatures_entity_id", table_name="approval_signatures")
    op.drop_index("ix_approval_signatures_workflow_id", table_name="approval_signatures")
    op.drop_table("approval_signatures")

    op.drop_index("ix_workflow_levels_role", table_name="workflow_levels")
    op.drop_index("ix_workflow_levels_workflow_id", table_name="workflow_levels")
    op.drop_table("workflow_levels")
    op.drop_table("workflows")
