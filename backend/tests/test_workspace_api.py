"""Member-facing routes: staff overview, adjustments, history, reset and quotas."""

from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from crewtime.auth.permissions import (
    MANAGE_ACTIVITY,
    RESET_ACTIVITY,
    SIGNOFF_CUSTOM_QUOTAS,
    VIEW_ACTIVITY,
)
from crewtime.models.activity import ActivitySession
from crewtime.models.member import Role, RoleMember, User
from crewtime.models.quota import Quota, QuotaRole
from crewtime.utils.clock import utcnow

from conftest import add_member, auth_headers, create_workspace

BASE = "/api/workspaces/1001"

PLAYER = 1
VIEWER = 2
MANAGER = 3
RESETTER = 4
OUTSIDER = 99


@pytest_asyncio.fixture
async def workspace(db_session: AsyncSession):
    """PLAYER has half an hour of play; the others hold one permission each."""
    ws = await create_workspace(db_session)
    await add_member(db_session, ws, PLAYER, "player")
    await add_member(db_session, ws, VIEWER, "viewer", permissions=[VIEW_ACTIVITY])
    await add_member(
        db_session, ws, MANAGER, "manager",
        permissions=[VIEW_ACTIVITY, MANAGE_ACTIVITY, SIGNOFF_CUSTOM_QUOTAS],
    )
    await add_member(db_session, ws, RESETTER, "resetter", permissions=[RESET_ACTIVITY])

    start = utcnow() - timedelta(hours=3)
    db_session.add(
        ActivitySession(
            user_id=PLAYER, workspace_id=ws.id, start_time=start,
            end_time=start + timedelta(minutes=30), active=False, idle_time=0, messages=7,
        )
    )
    await db_session.commit()
    return ws


@pytest.mark.api
@pytest.mark.asyncio
class TestMembership:

    async def test_requires_token(self, client: AsyncClient, workspace):
        response = await client.get(f"{BASE}/activity/users")
        assert response.status_code == 401

    async def test_rejects_garbage_token(self, client: AsyncClient, workspace):
        response = await client.get(
            f"{BASE}/activity/users", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401

    async def test_non_member_forbidden(self, client: AsyncClient, workspace):
        response = await client.get(f"{BASE}/activity/users", headers=auth_headers(OUTSIDER))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "PERMISSION_DENIED"

    async def test_member_of_other_workspace_forbidden(
        self, client: AsyncClient, db_session: AsyncSession, workspace
    ):
        other = await create_workspace(db_session, 2002, activity_key="a2", api_key="p2")
        await add_member(db_session, other, 50, permissions=[VIEW_ACTIVITY])

        response = await client.get(f"{BASE}/activity/users", headers=auth_headers(50))
        assert response.status_code == 403


@pytest.mark.api
@pytest.mark.asyncio
class TestStaffOverview:

    async def test_requires_view_permission(self, client: AsyncClient, workspace):
        response = await client.get(f"{BASE}/activity/users", headers=auth_headers(PLAYER))
        assert response.status_code == 403

    async def test_lists_staff(self, client: AsyncClient, workspace):
        response = await client.get(f"{BASE}/activity/users", headers=auth_headers(VIEWER))

        assert response.status_code == 200
        staff = response.json()["staff"]
        assert staff[0] == {"user_id": PLAYER, "username": "player", "minutes": 30, "position": 1}
        assert len(staff) == 4

    async def test_adjustment_refreshes_overview(self, client: AsyncClient, workspace):
        first = await client.get(f"{BASE}/activity/users", headers=auth_headers(MANAGER))
        assert first.json()["staff"][0]["user_id"] == PLAYER

        created = await client.post(
            f"{BASE}/activity/adjustments",
            json={"user_id": VIEWER, "minutes": 45, "reason": "event hosting"},
            headers=auth_headers(MANAGER),
        )
        assert created.status_code == 201

        second = await client.get(f"{BASE}/activity/users", headers=auth_headers(MANAGER))
        top = second.json()["staff"][0]
        assert (top["user_id"], top["minutes"]) == (VIEWER, 45)


@pytest.mark.api
@pytest.mark.asyncio
class TestAdjustments:

    async def test_requires_manage_permission(self, client: AsyncClient, workspace):
        response = await client.post(
            f"{BASE}/activity/adjustments",
            json={"user_id": PLAYER, "minutes": 10},
            headers=auth_headers(VIEWER),
        )
        assert response.status_code == 403

    async def test_zero_minutes_rejected(self, client: AsyncClient, workspace):
        response = await client.post(
            f"{BASE}/activity/adjustments",
            json={"user_id": PLAYER, "minutes": 0},
            headers=auth_headers(MANAGER),
        )
        assert response.status_code == 422

    async def test_create_and_list(self, client: AsyncClient, workspace):
        created = await client.post(
            f"{BASE}/activity/adjustments",
            json={"user_id": PLAYER, "minutes": -10, "reason": "AFK farming"},
            headers=auth_headers(MANAGER),
        )
        body = created.json()
        assert body["minutes"] == -10
        assert body["actor_id"] == MANAGER

        listed = await client.get(
            f"{BASE}/activity/adjustments?user_id={PLAYER}", headers=auth_headers(VIEWER)
        )
        assert [a["id"] for a in listed.json()] == [body["id"]]

    async def test_non_member_target_not_found(
        self, client: AsyncClient, db_session: AsyncSession, workspace
    ):
        response = await client.post(
            f"{BASE}/activity/adjustments",
            json={"user_id": OUTSIDER, "minutes": 10},
            headers=auth_headers(MANAGER),
        )

        assert response.status_code == 404
        assert await db_session.get(User, OUTSIDER) is None
        listed = await client.get(f"{BASE}/activity/adjustments", headers=auth_headers(VIEWER))
        assert listed.json() == []


@pytest.mark.api
@pytest.mark.asyncio
class TestResetAndHistory:

    async def test_reset_requires_permission(self, client: AsyncClient, workspace):
        response = await client.post(f"{BASE}/activity/reset", headers=auth_headers(MANAGER))
        assert response.status_code == 403

    async def test_manual_reset_snapshots_history(self, client: AsyncClient, workspace, notifier):
        response = await client.post(f"{BASE}/activity/reset", headers=auth_headers(RESETTER))

        assert response.status_code == 200
        assert response.json()["history_rows"] == 1
        assert len(notifier.named("reset_performed")) == 1

        overview = await client.get(f"{BASE}/activity/users", headers=auth_headers(VIEWER))
        assert all(s["minutes"] == 0 for s in overview.json()["staff"])

        own = await client.get(f"{BASE}/activity/history", headers=auth_headers(PLAYER))
        rows = own.json()
        assert len(rows) == 1
        assert (rows[0]["user_id"], rows[0]["minutes"], rows[0]["messages"]) == (PLAYER, 30, 7)

    async def test_history_access(self, client: AsyncClient, workspace):
        await client.post(f"{BASE}/activity/reset", headers=auth_headers(RESETTER))

        others = await client.get(
            f"{BASE}/activity/history?user_id={PLAYER}", headers=auth_headers(RESETTER)
        )
        assert others.status_code == 403

        own_empty = await client.get(f"{BASE}/activity/history", headers=auth_headers(RESETTER))
        assert own_empty.json() == []

        everyone = await client.get(f"{BASE}/activity/history", headers=auth_headers(VIEWER))
        assert [r["user_id"] for r in everyone.json()] == [PLAYER]


@pytest.mark.api
@pytest.mark.asyncio
class TestQuotaRoutes:

    @pytest_asyncio.fixture
    async def quotas(self, db_session: AsyncSession, workspace):
        staff = Role(workspace_id=workspace.id, name="Staff", permissions=[])
        db_session.add(staff)
        await db_session.flush()
        quotas = {
            "mins": Quota(workspace_id=workspace.id, name="Playtime", type="mins", value=60),
            "self": Quota(
                workspace_id=workspace.id, name="Read handbook", type="custom",
                completion_type="user_complete",
            ),
            "mgr": Quota(
                workspace_id=workspace.id, name="Evaluation", type="custom",
                completion_type="manager_signoff",
            ),
        }
        db_session.add_all(quotas.values())
        await db_session.flush()
        for quota in quotas.values():
            db_session.add(QuotaRole(quota_id=quota.id, role_id=staff.id))
        await db_session.commit()
        db_session.add(RoleMember(role_id=staff.id, user_id=PLAYER))
        await db_session.commit()
        return {key: quota.id for key, quota in quotas.items()}

    async def test_progress(self, client: AsyncClient, quotas):
        response = await client.get(f"{BASE}/quotas/me", headers=auth_headers(PLAYER))

        assert response.status_code == 200
        by_name = {q["name"]: q for q in response.json()}
        assert list(by_name) == ["Evaluation", "Playtime", "Read handbook"]
        assert by_name["Playtime"]["percentage"] == 50.0
        assert by_name["Playtime"]["progress"] == {"kind": "metric", "target": 60, "current": 30}
        assert by_name["Read handbook"]["completed"] is False

    async def test_member_without_quotas(self, client: AsyncClient, quotas):
        response = await client.get(f"{BASE}/quotas/me", headers=auth_headers(VIEWER))
        assert response.json() == []

    async def test_self_completion(self, client: AsyncClient, quotas):
        done = await client.post(
            f"{BASE}/quotas/{quotas['self']}/complete",
            json={"notes": "read it twice"},
            headers=auth_headers(PLAYER),
        )
        assert done.status_code == 200
        assert done.json()["completed_by"] == PLAYER

        progress = await client.get(f"{BASE}/quotas/me", headers=auth_headers(PLAYER))
        handbook = next(q for q in progress.json() if q["name"] == "Read handbook")
        assert handbook["completed"] is True
        assert handbook["percentage"] == 100.0

        undone = await client.post(
            f"{BASE}/quotas/{quotas['self']}/uncomplete", headers=auth_headers(PLAYER)
        )
        assert undone.json()["completed"] is False

    async def test_signoff_quota_cannot_be_self_completed(self, client: AsyncClient, quotas):
        response = await client.post(
            f"{BASE}/quotas/{quotas['mgr']}/complete", headers=auth_headers(PLAYER)
        )
        assert response.status_code == 400

    async def test_complete_for_someone_else(self, client: AsyncClient, quotas):
        response = await client.post(
            f"{BASE}/quotas/{quotas['self']}/complete",
            json={"target_user_id": VIEWER},
            headers=auth_headers(PLAYER),
        )
        assert response.status_code == 403

    async def test_signoff_flow(self, client: AsyncClient, quotas):
        denied = await client.post(
            f"{BASE}/quotas/{quotas['mgr']}/signoff",
            json={"user_id": PLAYER},
            headers=auth_headers(PLAYER),
        )
        assert denied.status_code == 403

        signed = await client.post(
            f"{BASE}/quotas/{quotas['mgr']}/signoff",
            json={"user_id": PLAYER, "notes": "solid week"},
            headers=auth_headers(MANAGER),
        )
        assert signed.status_code == 200
        assert (signed.json()["user_id"], signed.json()["completed_by"]) == (PLAYER, MANAGER)

        own_revert = await client.post(
            f"{BASE}/quotas/{quotas['mgr']}/uncomplete", headers=auth_headers(PLAYER)
        )
        assert own_revert.status_code == 403

        reverted = await client.post(
            f"{BASE}/quotas/{quotas['mgr']}/uncomplete",
            json={"user_id": PLAYER},
            headers=auth_headers(MANAGER),
        )
        assert reverted.json()["completed"] is False

    async def test_unknown_quota(self, client: AsyncClient, quotas):
        response = await client.post(
            f"{BASE}/quotas/does-not-exist/complete", headers=auth_headers(PLAYER)
        )
        assert response.status_code == 404
