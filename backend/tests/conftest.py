"""Pytest configuration and fixtures for Crewtime tests.

Tests run against a throwaway SQLite file (aiosqlite) so that several
sessions can be open at once, as they are during cron fan-out.  The
directory and notifier are replaced with in-memory fakes.
"""

import os
import tempfile

_TEST_DIR = tempfile.mkdtemp(prefix="crewtime-tests-")

# Settings are read at import time, so configure the environment first.
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/test.db"
os.environ["DEBUG"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["CRON_DELAY_SECONDS"] = "0"
os.environ["MULTI_CONTAINER"] = "false"
os.environ["CRON_SEQUENTIAL"] = "false"
os.environ["NOTIFICATION_WEBHOOK_URL"] = ""

from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

import crewtime.models  # noqa: E402,F401
from crewtime.auth.jwt import create_access_token  # noqa: E402
from crewtime.auth.keys import hash_key  # noqa: E402
from crewtime.database import Base, async_session, engine  # noqa: E402
from crewtime.main import app  # noqa: E402
from crewtime.middleware.exceptions import ExternalDependencyError  # noqa: E402
from crewtime.models.member import Role, RoleMember, User, WorkspaceMember  # noqa: E402
from crewtime.models.workspace import Workspace  # noqa: E402
from crewtime.services.cron import wait_for_background  # noqa: E402
from crewtime.services.directory import DirectoryMember, DirectoryRole, get_directory  # noqa: E402
from crewtime.services.leaderboard import ActivityViews, get_views  # noqa: E402
from crewtime.services.notifications import Notifier, get_notifier  # noqa: E402

ACTIVITY_KEY = "ct_test_activity_key"
API_KEY = "ct_test_api_key"


# ── Fakes ────────────────────────────────────────────────────────

class FakeDirectory:
    """In-memory stand-in for DirectoryClient.

    roles:   {group_id: [DirectoryRole]}
    members: {group_id: [DirectoryMember]}
    ranks:   {(group_id, user_id): rank}
    """

    def __init__(self):
        self.roles: dict[int, list[DirectoryRole]] = {}
        self.members: dict[int, list[DirectoryMember]] = {}
        self.ranks: dict[tuple[int, int], int] = {}
        self.down = False
        self.calls: list[str] = []

    def _check(self, call: str):
        self.calls.append(call)
        if self.down:
            raise ExternalDependencyError("directory", "connection refused")

    async def get_roles(self, group_id: int) -> list[DirectoryRole]:
        self._check(f"roles:{group_id}")
        return list(self.roles.get(group_id, []))

    async def get_rank_map(self, group_id: int) -> dict[int, int]:
        return {r.id: r.rank for r in await self.get_roles(group_id)}

    async def get_members(self, group_id: int) -> list[DirectoryMember]:
        self._check(f"members:{group_id}")
        return list(self.members.get(group_id, []))

    async def get_user_rank(self, group_id: int, user_id: int) -> int:
        self._check(f"rank:{group_id}:{user_id}")
        return self.ranks.get((group_id, user_id), 0)

    async def aclose(self) -> None:
        pass


class RecordingNotifier(Notifier):
    """Notifier that records events instead of delivering them."""

    def __init__(self):
        super().__init__(webhook_url="")
        self.events: list[dict] = []

    def emit(self, event: str, workspace_id: int, payload: dict | None = None) -> None:
        self.events.append({"event": event, "workspace_id": workspace_id, "payload": payload or {}})

    def named(self, event: str) -> list[dict]:
        return [e for e in self.events if e["event"] == event]


# ── Database ─────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def tables() -> AsyncGenerator[None, None]:
    """Fresh schema per test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await wait_for_background()
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(tables) -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


@pytest.fixture
def directory() -> FakeDirectory:
    return FakeDirectory()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def views() -> ActivityViews:
    return ActivityViews()


@pytest_asyncio.fixture
async def client(tables, directory, notifier, views) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with the directory, notifier and views faked."""
    app.dependency_overrides[get_directory] = lambda: directory
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_views] = lambda: views

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    await views.wait_for_refreshes()
    app.dependency_overrides.clear()


# ── Test Data Helpers ────────────────────────────────────────────

async def create_workspace(
    db: AsyncSession,
    workspace_id: int = 1001,
    name: str = "Test Group",
    batch_id: int = 1,
    activity_key: str | None = ACTIVITY_KEY,
    api_key: str | None = API_KEY,
) -> Workspace:
    workspace = Workspace(
        id=workspace_id,
        name=name,
        batch_id=batch_id,
        activity_key_hash=hash_key(activity_key) if activity_key else None,
        api_key_hash=hash_key(api_key) if api_key else None,
    )
    db.add(workspace)
    await db.commit()
    return workspace


async def add_member(
    db: AsyncSession,
    workspace: Workspace,
    user_id: int,
    username: str | None = None,
    *,
    is_admin: bool = False,
    rank_id: int | None = None,
    permissions: list[str] | None = None,
    role: Role | None = None,
) -> WorkspaceMember:
    """Create the user (if new) and their membership.

    `permissions` creates a dedicated role granting them; `role` attaches
    an existing role.
    """
    if await db.get(User, user_id) is None:
        db.add(User(id=user_id, username=username or f"user{user_id}"))
    member = WorkspaceMember(
        workspace_id=workspace.id, user_id=user_id, is_admin=is_admin, rank_id=rank_id
    )
    db.add(member)
    await db.flush()

    if permissions:
        perm_role = Role(
            workspace_id=workspace.id, name=f"perms-{user_id}", permissions=permissions
        )
        db.add(perm_role)
        await db.flush()
        db.add(RoleMember(role_id=perm_role.id, user_id=user_id))
    if role is not None:
        db.add(RoleMember(role_id=role.id, user_id=user_id))
    await db.commit()
    return member


def auth_headers(user_id: int) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


def signal_headers(key: str = ACTIVITY_KEY) -> dict:
    return {"Authorization": key}


def api_headers(key: str = API_KEY) -> dict:
    return {"Authorization": f"Bearer {key}"}


def cron_headers(secret: str = "test-cron-secret") -> dict:
    return {"x-cron-secret": secret}


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "api: HTTP endpoint tests")
    config.addinivalue_line("markers", "cache: Read cache tests")
    config.addinivalue_line("markers", "cron: Cron fan-out and batching")
    config.addinivalue_line("markers", "integration: Service tests against the database")
