"""Permission strings used by the activity engine.

Design:
  - Permissions are granted through workspace Roles (`Role.permissions`,
    a JSON list of strings).  A member's effective set is the union over
    every role they hold in that workspace.
  - Workspace admins (`WorkspaceMember.is_admin`) pass every check.
  - Unknown strings stored on a role are ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ── Known permissions ───────────────────────────────────────

VIEW_ACTIVITY = "view_activity"                    # staff overview, history
MANAGE_ACTIVITY = "manage_activity"                # create adjustments
RESET_ACTIVITY = "reset_activity"                  # manual period reset
SIGNOFF_CUSTOM_QUOTAS = "signoff_custom_quotas"    # manager signoff / revert

ALL_PERMISSIONS: set[str] = {
    VIEW_ACTIVITY,
    MANAGE_ACTIVITY,
    RESET_ACTIVITY,
    SIGNOFF_CUSTOM_QUOTAS,
}


# ── Resolution ──────────────────────────────────────────────

def resolve_permissions(role_permissions: list[list[str] | None]) -> list[str]:
    """Union the permission lists of every held role.

    Returns a sorted list of known permissions.
    """
    effective: set[str] = set()
    for perms in role_permissions:
        for perm in perms or []:
            if perm in ALL_PERMISSIONS:
                effective.add(perm)
    return sorted(effective)


def has_permission(user_permissions: list[str] | set[str] | frozenset[str], required: str) -> bool:
    """Check whether a permission set satisfies a requirement."""
    return required in user_permissions


@dataclass(frozen=True)
class Actor:
    """The authenticated member acting inside one workspace."""

    user_id: int
    workspace_id: int
    is_admin: bool = False
    permissions: frozenset[str] = field(default_factory=frozenset)

    def can(self, permission: str) -> bool:
        return self.is_admin or has_permission(self.permissions, permission)
