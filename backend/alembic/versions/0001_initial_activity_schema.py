"""Initial schema - workspaces, membership, activity ledgers, quotas.

Revision ID: 0001
Revises: (none)
Create Date: 2026-10-19

Run with:
    alembic upgrade head
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def _archive_columns() -> list[sa.Column]:
    return [
        sa.Column("archived", sa.Boolean(), server_default="false", index=True),
        sa.Column("archive_start_date", sa.DateTime()),
        sa.Column("archive_end_date", sa.DateTime()),
    ]


def upgrade() -> None:
    # ── Workspaces ───────────────────────────────────────────

    op.create_table(
        "workspaces",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("name", sa.String(255)),
        sa.Column("batch_id", sa.Integer(), index=True),
        sa.Column("activity_key_hash", sa.String(64), unique=True, index=True),
        sa.Column("api_key_hash", sa.String(64), unique=True, index=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "workspace_configs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id"), nullable=False, index=True),
        sa.Column("key", sa.String(100), nullable=False),
        sa.Column("value", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("workspace_id", "key", name="uq_workspace_config_key"),
    )

    # ── Users and membership ─────────────────────────────────

    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("username", sa.String(100), index=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "workspace_members",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id"), nullable=False, index=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("is_admin", sa.Boolean(), server_default="false"),
        sa.Column("rank_id", sa.BigInteger()),
        sa.Column("join_date", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("workspace_id", "user_id", name="uq_workspace_member"),
    )

    op.create_table(
        "roles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id"), nullable=False, index=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("permissions", sa.JSON(), server_default="[]"),
    )

    op.create_table(
        "role_members",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("role_id", sa.String(36), sa.ForeignKey("roles.id"), nullable=False, index=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.UniqueConstraint("role_id", "user_id", name="uq_role_member"),
    )

    op.create_table(
        "departments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id"), nullable=False, index=True),
        sa.Column("name", sa.String(100), nullable=False),
    )

    op.create_table(
        "department_members",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("department_id", sa.String(36), sa.ForeignKey("departments.id"), nullable=False, index=True),
        sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id"), nullable=False, index=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.UniqueConstraint("department_id", "user_id", name="uq_department_member"),
    )

    # ── Activity ledgers ─────────────────────────────────────

    op.create_table(
        "activity_sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), nullable=False, index=True),
        sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id"), nullable=False, index=True),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime()),
        sa.Column("active", sa.Boolean(), server_default="true"),
        sa.Column("idle_time", sa.Integer(), server_default="0"),
        sa.Column("messages", sa.Integer(), server_default="0"),
        sa.Column("universe_id", sa.BigInteger()),
        sa.Column("session_message", sa.Text()),
        *_archive_columns(),
    )
    op.create_index(
        "ix_activity_sessions_ws_user_active",
        "activity_sessions",
        ["workspace_id", "user_id", "active"],
    )
    op.create_index(
        "uq_activity_sessions_one_open",
        "activity_sessions",
        ["workspace_id", "user_id"],
        unique=True,
        postgresql_where=sa.text("active AND NOT archived"),
        sqlite_where=sa.text("active AND NOT archived"),
    )

    op.create_table(
        "activity_adjustments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), nullable=False, index=True),
        sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id"), nullable=False, index=True),
        sa.Column("actor_id", sa.BigInteger(), nullable=False),
        sa.Column("minutes", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False, index=True),
        *_archive_columns(),
    )

    op.create_table(
        "activity_resets",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id"), nullable=False),
        sa.Column("reset_at", sa.DateTime(), nullable=False),
        sa.Column("previous_period_start", sa.DateTime(), nullable=False),
        sa.Column("previous_period_end", sa.DateTime(), nullable=False),
        sa.Column("reset_by_id", sa.BigInteger()),
        sa.Column("auto_reset_date", sa.Date()),
    )
    op.create_index(
        "ix_activity_resets_ws_reset_at", "activity_resets", ["workspace_id", "reset_at"]
    )
    op.create_index(
        "uq_activity_resets_auto_day",
        "activity_resets",
        ["workspace_id", "auto_reset_date"],
        unique=True,
    )

    op.create_table(
        "activity_history",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id"), nullable=False),
        sa.Column("period_start", sa.DateTime(), nullable=False),
        sa.Column("period_end", sa.DateTime(), nullable=False, index=True),
        sa.Column("minutes", sa.Integer(), server_default="0"),
        sa.Column("messages", sa.Integer(), server_default="0"),
        sa.Column("sessions_hosted", sa.Integer(), server_default="0"),
        sa.Column("sessions_attended", sa.Integer(), server_default="0"),
        sa.Column("idle_time", sa.Integer(), server_default="0"),
        sa.Column("wall_posts", sa.Integer(), server_default="0"),
        sa.Column("quota_progress", sa.JSON(), server_default="{}"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_activity_history_ws_user", "activity_history", ["workspace_id", "user_id"])

    # ── Schedule and engagement ──────────────────────────────

    op.create_table(
        "scheduled_sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id"), nullable=False, index=True),
        sa.Column("owner_id", sa.BigInteger(), index=True),
        sa.Column("session_type", sa.String(50)),
        sa.Column("date", sa.DateTime(), nullable=False, index=True),
        *_archive_columns(),
    )

    op.create_table(
        "session_participants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("session_id", sa.String(36), sa.ForeignKey("scheduled_sessions.id"), nullable=False, index=True),
        sa.Column("user_id", sa.BigInteger(), nullable=False, index=True),
        sa.Column("role_name", sa.String(100), server_default=""),
        *_archive_columns(),
    )

    op.create_table(
        "wall_posts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id"), nullable=False, index=True),
        sa.Column("author_id", sa.BigInteger(), nullable=False, index=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), index=True),
    )

    op.create_table(
        "ally_visits",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id"), nullable=False, index=True),
        sa.Column("host_id", sa.BigInteger()),
        sa.Column("participants", sa.JSON(), server_default="[]"),
        sa.Column("time", sa.DateTime(), nullable=False, index=True),
    )

    # ── Quotas ───────────────────────────────────────────────

    op.create_table(
        "quotas",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id"), nullable=False, index=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("value", sa.Integer(), server_default="0"),
        sa.Column("completion_type", sa.String(30)),
        sa.Column("session_type", sa.String(50)),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "quota_roles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("quota_id", sa.String(36), sa.ForeignKey("quotas.id"), nullable=False, index=True),
        sa.Column("role_id", sa.String(36), sa.ForeignKey("roles.id"), nullable=False, index=True),
        sa.UniqueConstraint("quota_id", "role_id", name="uq_quota_role"),
    )

    op.create_table(
        "quota_departments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("quota_id", sa.String(36), sa.ForeignKey("quotas.id"), nullable=False, index=True),
        sa.Column("department_id", sa.String(36), sa.ForeignKey("departments.id"), nullable=False, index=True),
        sa.UniqueConstraint("quota_id", "department_id", name="uq_quota_department"),
    )

    op.create_table(
        "user_quota_completions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("quota_id", sa.String(36), sa.ForeignKey("quotas.id"), nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False, index=True),
        sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id"), nullable=False, index=True),
        sa.Column("completed", sa.Boolean(), server_default="false"),
        sa.Column("completed_at", sa.DateTime()),
        sa.Column("completed_by", sa.BigInteger()),
        sa.Column("notes", sa.Text()),
        *_archive_columns(),
        sa.UniqueConstraint("quota_id", "user_id", "workspace_id", name="uq_quota_completion"),
    )

    # ── Audit ────────────────────────────────────────────────

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("workspace_id", sa.Integer(), sa.ForeignKey("workspaces.id"), nullable=False, index=True),
        sa.Column("user_id", sa.BigInteger(), index=True),
        sa.Column("action", sa.String(50), nullable=False, index=True),
        sa.Column("entity", sa.String(100)),
        sa.Column("details", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), nullable=False, index=True),
    )


def downgrade() -> None:
    for table in (
        "audit_logs",
        "user_quota_completions",
        "quota_departments",
        "quota_roles",
        "quotas",
        "ally_visits",
        "wall_posts",
        "session_participants",
        "scheduled_sessions",
        "activity_history",
        "activity_resets",
        "activity_adjustments",
        "activity_sessions",
        "department_members",
        "departments",
        "role_members",
        "roles",
        "workspace_members",
        "users",
        "workspace_configs",
        "workspaces",
    ):
        op.drop_table(table)
