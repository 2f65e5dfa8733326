"""Aggregate model imports for Alembic auto-detection."""

# ── Workspace / membership ───────────────────────────────────
from crewtime.models.workspace import Workspace, WorkspaceConfig
from crewtime.models.member import (
    Department, DepartmentMember, Role, RoleMember, User, WorkspaceMember,
)

# ── Activity ledgers and history ─────────────────────────────
from crewtime.models.activity import (
    ActivityAdjustment, ActivityHistory, ActivityReset, ActivitySession,
)

# ── Quotas ───────────────────────────────────────────────────
from crewtime.models.quota import Quota, QuotaDepartment, QuotaRole, UserQuotaCompletion

# ── Schedule / engagement ────────────────────────────────────
from crewtime.models.schedule import AllyVisit, ScheduledSession, SessionParticipant, WallPost

# ── Audit ────────────────────────────────────────────────────
from crewtime.models.audit_log import AuditLog

__all__ = [
    "Workspace", "WorkspaceConfig",
    "User", "WorkspaceMember", "Role", "RoleMember", "Department", "DepartmentMember",
    "ActivitySession", "ActivityAdjustment", "ActivityReset", "ActivityHistory",
    "Quota", "QuotaRole", "QuotaDepartment", "UserQuotaCompletion",
    "ScheduledSession", "SessionParticipant", "WallPost", "AllyVisit",
    "AuditLog",
]
