"""init channels, hierarchies, designations and agents

Revision ID: 202610010001
Revises:
Create Date: 2026-10-01
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "202610010001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("channel_id", sa.String(), nullable=True),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource", sa.String(), nullable=False),
        sa.Column("method", sa.String(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_channel_id", "audit_logs", ["channel_id"])
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_ts", "audit_logs", ["ts"])

    op.create_table(
        "channels",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        *_timestamps(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_channels_name", "channels", ["name"])
    op.create_index("ix_channels_code", "channels", ["code"], unique=True)
    op.create_index("ix_channels_status", "channels", ["status"])
    op.create_index("ix_channels_is_deleted", "channels", ["is_deleted"])
    op.create_index("ix_channels_created_at", "channels", ["created_at"])
    op.create_index("ix_channels_updated_at", "channels", ["updated_at"])

    op.create_table(
        "roles",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("channel_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("channel_id", "code", name="uq_roles_channel_code"),
    )
    op.create_index("ix_roles_channel_id", "roles", ["channel_id"])
    op.create_index("ix_roles_name", "roles", ["name"])
    op.create_index("ix_roles_code", "roles", ["code"])
    op.create_index("ix_roles_status", "roles", ["status"])
    op.create_index("ix_roles_is_deleted", "roles", ["is_deleted"])
    op.create_index("ix_roles_created_at", "roles", ["created_at"])

    op.create_table(
        "hierarchies",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("channel_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("level_code", sa.String(), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("parent_id", sa.String(), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(), nullable=False),
        *_timestamps(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"]),
        sa.ForeignKeyConstraint(["parent_id"], ["hierarchies.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_hierarchies_channel_id", "hierarchies", ["channel_id"])
    op.create_index("ix_hierarchies_level_code", "hierarchies", ["level_code"])
    op.create_index("ix_hierarchies_level", "hierarchies", ["level"])
    op.create_index("ix_hierarchies_parent_id", "hierarchies", ["parent_id"])
    op.create_index("ix_hierarchies_status", "hierarchies", ["status"])
    op.create_index("ix_hierarchies_is_deleted", "hierarchies", ["is_deleted"])
    op.create_index("ix_hierarchies_created_at", "hierarchies", ["created_at"])
    op.create_index("ix_hierarchies_updated_at", "hierarchies", ["updated_at"])
    op.create_index("ix_hierarchies_channel_level", "hierarchies", ["channel_id", "level"])
    op.create_index("ix_hierarchies_channel_parent", "hierarchies", ["channel_id", "parent_id"])
    op.create_index("ix_hierarchies_parent_order", "hierarchies", ["parent_id", "order"])
    op.create_index(
        "uq_hierarchies_channel_level_code_live",
        "hierarchies",
        ["channel_id", "level_code"],
        unique=True,
        sqlite_where=sa.text("is_deleted = 0"),
        postgresql_where=sa.text("is_deleted = false"),
    )

    op.create_table(
        "designations",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("channel_id", sa.String(), nullable=False),
        sa.Column("role_id", sa.String(), nullable=False),
        sa.Column("hierarchy_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("designation_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"]),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
        sa.ForeignKeyConstraint(["hierarchy_id"], ["hierarchies.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("channel_id", "code", name="uq_designations_channel_code"),
    )
    op.create_index("ix_designations_channel_id", "designations", ["channel_id"])
    op.create_index("ix_designations_role_id", "designations", ["role_id"])
    op.create_index("ix_designations_hierarchy_id", "designations", ["hierarchy_id"])
    op.create_index("ix_designations_name", "designations", ["name"])
    op.create_index("ix_designations_code", "designations", ["code"])
    op.create_index("ix_designations_status", "designations", ["status"])
    op.create_index("ix_designations_is_deleted", "designations", ["is_deleted"])
    op.create_index("ix_designations_created_at", "designations", ["created_at"])
    op.create_index("ix_designations_channel_hierarchy", "designations", ["channel_id", "hierarchy_id"])
    op.create_index("ix_designations_channel_name", "designations", ["channel_id", "name"])

    op.create_table(
        "agents",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=True),
        sa.Column("channel_id", sa.String(), nullable=False),
        sa.Column("designation_id", sa.String(), nullable=False),
        sa.Column("agent_code", sa.String(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("last_name", sa.String(), nullable=True),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("agent_status", sa.String(), nullable=False),
        sa.Column("team_lead_id", sa.String(), nullable=True),
        sa.Column("reporting_manager_id", sa.String(), nullable=True),
        *_timestamps(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["channel_id"], ["channels.id"]),
        sa.ForeignKeyConstraint(["designation_id"], ["designations.id"]),
        sa.ForeignKeyConstraint(["team_lead_id"], ["agents.id"]),
        sa.ForeignKeyConstraint(["reporting_manager_id"], ["agents.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_agents_user_id", "agents", ["user_id"])
    op.create_index("ix_agents_channel_id", "agents", ["channel_id"])
    op.create_index("ix_agents_designation_id", "agents", ["designation_id"])
    op.create_index("ix_agents_agent_code", "agents", ["agent_code"], unique=True)
    op.create_index("ix_agents_email", "agents", ["email"])
    op.create_index("ix_agents_agent_status", "agents", ["agent_status"])
    op.create_index("ix_agents_team_lead_id", "agents", ["team_lead_id"])
    op.create_index("ix_agents_reporting_manager_id", "agents", ["reporting_manager_id"])
    op.create_index("ix_agents_is_deleted", "agents", ["is_deleted"])
    op.create_index("ix_agents_created_at", "agents", ["created_at"])
    op.create_index("ix_agents_updated_at", "agents", ["updated_at"])
    op.create_index("ix_agents_designation_status", "agents", ["designation_id", "agent_status"])


def downgrade() -> None:
    op.drop_table("agents")
    op.drop_table("designations")
    op.drop_index("uq_hierarchies_channel_level_code_live", table_name="hierarchies")
    op.drop_table("hierarchies")
    op.drop_table("roles")
    op.drop_table("channels")
    op.drop_table("audit_logs")
