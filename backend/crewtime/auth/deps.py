"""FastAPI dependencies for authentication and authorization.

Dependencies:
  get_current_user_id      → decode the bearer JWT, return the user id
  get_current_member       → resolve the caller's membership in the path
                             workspace as an Actor
  get_workspace            → the path workspace (caller must be a member)
  require_permission(...)  → restrict to members holding ALL listed
                             permissions (admins always pass)
  get_signal_workspace     → workspace authenticated by its activity key
  get_api_workspace        → workspace authenticated by its API key
  verify_cron_secret       → shared-secret check for cron triggers
"""

import secrets

from fastapi import Depends, Header, Path, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crewtime.auth.jwt import decode_token
from crewtime.auth.keys import hash_key, keys_match
from crewtime.auth.permissions import Actor, resolve_permissions
from crewtime.config import settings
from crewtime.database import get_db
from crewtime.middleware.exceptions import (
    AuthError,
    InternalError,
    PermissionDeniedError,
    ResourceNotFoundError,
    ValidationError,
)
from crewtime.models.member import Role, RoleMember, WorkspaceMember
from crewtime.models.workspace import Workspace

bearer_scheme = HTTPBearer(auto_error=False)


# ── Member JWT ──────────────────────────────────────────────

async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> int:
    if credentials is None:
        raise AuthError("Missing bearer token")
    payload = decode_token(credentials.credentials)
    sub = payload.get("sub")
    if not sub or payload.get("type") != "access":
        raise AuthError("Invalid or expired token")
    try:
        return int(sub)
    except (TypeError, ValueError):
        raise AuthError("Invalid or expired token")


async def resolve_actor(
    db: AsyncSession, workspace_id: int, user_id: int
) -> Actor | None:
    """Load a member's admin flag and role permissions.  None if not a member."""
    result = await db.execute(
        select(WorkspaceMember).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.user_id == user_id,
        )
    )
    member = result.scalar_one_or_none()
    if member is None:
        return None

    perm_rows = await db.execute(
        select(Role.permissions)
        .join(RoleMember, RoleMember.role_id == Role.id)
        .where(Role.workspace_id == workspace_id, RoleMember.user_id == user_id)
    )
    permissions = resolve_permissions([row[0] for row in perm_rows.all()])

    return Actor(
        user_id=user_id,
        workspace_id=workspace_id,
        is_admin=bool(member.is_admin),
        permissions=frozenset(permissions),
    )


async def get_current_member(
    workspace_id: int = Path(...),
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    actor = await resolve_actor(db, workspace_id, user_id)
    if actor is None:
        raise PermissionDeniedError("Not a member of this workspace")
    return actor


async def get_workspace(
    actor: Actor = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
) -> Workspace:
    """The path workspace, for a caller already resolved as a member."""
    workspace = await db.get(Workspace, actor.workspace_id)
    if workspace is None:
        raise ResourceNotFoundError("Workspace", str(actor.workspace_id))
    return workspace


def require_permission(*perms: str):
    """Dependency factory - restrict to members who hold ALL listed permissions.

    Usage:
        @router.post("/reset")
        async def reset(actor: Actor = Depends(require_permission(RESET_ACTIVITY))):
            ...
    """
    async def _check(actor: Actor = Depends(get_current_member)) -> Actor:
        missing = [p for p in perms if not actor.can(p)]
        if missing:
            raise PermissionDeniedError(f"Missing permissions: {', '.join(missing)}")
        return actor

    return _check


# ── Workspace keys ──────────────────────────────────────────

def _strip_bearer(value: str) -> str:
    if value.lower().startswith("bearer "):
        return value[7:].strip()
    return value.strip()


async def get_signal_workspace(
    authorization: str | None = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> Workspace:
    """Authenticate a game-server signal by the workspace activity key."""
    if not authorization:
        raise ValidationError("Authorization key missing")
    result = await db.execute(
        select(Workspace).where(
            Workspace.activity_key_hash == hash_key(_strip_bearer(authorization))
        )
    )
    workspace = result.scalar_one_or_none()
    if workspace is None:
        raise AuthError()
    return workspace


async def get_api_workspace(
    workspace_id: int = Path(...),
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Workspace:
    """Authenticate a public API call by the workspace API key."""
    if credentials is None:
        raise AuthError("Missing API key")
    workspace = await db.get(Workspace, workspace_id)
    if workspace is None or not keys_match(credentials.credentials, workspace.api_key_hash):
        raise AuthError("Invalid API key")
    return workspace


# ── Cron ────────────────────────────────────────────────────

async def verify_cron_secret(request: Request) -> None:
    if not settings.cron_secret:
        raise InternalError("CRON_SECRET not configured")

    provided = request.headers.get("x-cron-secret") or request.headers.get("authorization")
    if not provided or not secrets.compare_digest(
        _strip_bearer(provided), settings.cron_secret
    ):
        raise AuthError()
