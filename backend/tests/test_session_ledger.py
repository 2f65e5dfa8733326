"""Session ledger: start / end / bulk-close semantics."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crewtime.database import async_session
from crewtime.middleware.exceptions import ConflictError, ResourceNotFoundError
from crewtime.models.activity import ActivitySession
from crewtime.models.member import User
from crewtime.services import session_ledger
from crewtime.services.reset import perform_reset
from crewtime.utils.clock import utcnow

from conftest import RecordingNotifier, add_member, create_workspace


@pytest.mark.integration
@pytest.mark.asyncio
class TestStartEnd:

    async def test_start_creates_user_and_active_session(self, db_session: AsyncSession):
        ws = await create_workspace(db_session)
        session = await session_ledger.start_session(db_session, ws, 42, universe_id=777)

        assert session.active is True
        assert session.end_time is None
        assert "777" in session.session_message
        assert await db_session.get(User, 42) is not None

    async def test_second_start_conflicts(self, db_session: AsyncSession):
        ws = await create_workspace(db_session)
        await session_ledger.start_session(db_session, ws, 42)

        with pytest.raises(ConflictError) as exc_info:
            await session_ledger.start_session(db_session, ws, 42)
        assert exc_info.value.error_code == "SESSION_ACTIVE"

        rows = await db_session.execute(select(ActivitySession).where(ActivitySession.user_id == 42))
        assert len(rows.scalars().all()) == 1

    async def test_same_user_in_two_workspaces(self, db_session: AsyncSession):
        ws1 = await create_workspace(db_session)
        ws2 = await create_workspace(db_session, workspace_id=2002, activity_key="k2", api_key="a2")
        await session_ledger.start_session(db_session, ws1, 42)
        await session_ledger.start_session(db_session, ws2, 42)

        assert await session_ledger.get_active_session(db_session, ws1.id, 42) is not None
        assert await session_ledger.get_active_session(db_session, ws2.id, 42) is not None

    async def test_end_closes_and_notifies(self, db_session: AsyncSession):
        ws = await create_workspace(db_session)
        notifier = RecordingNotifier()
        await session_ledger.start_session(db_session, ws, 42)

        ended = await session_ledger.end_session(
            db_session, ws, 42, idle_time=3, messages=17, notifier=notifier
        )
        assert ended.active is False
        assert ended.end_time is not None
        assert ended.idle_time == 3
        assert ended.messages == 17

        [event] = notifier.named("session_ended")
        assert event["workspace_id"] == ws.id
        assert event["payload"]["user_id"] == 42
        assert event["payload"]["messages"] == 17

    async def test_end_without_session_is_not_found(self, db_session: AsyncSession):
        ws = await create_workspace(db_session)
        with pytest.raises(ResourceNotFoundError):
            await session_ledger.end_session(db_session, ws, 42)


@pytest.mark.integration
@pytest.mark.asyncio
class TestBulkClose:

    async def test_bulk_close_counts_only_active(self, db_session: AsyncSession):
        ws = await create_workspace(db_session)
        for uid in (1, 2, 3):
            await session_ledger.start_session(db_session, ws, uid)
        await session_ledger.end_session(db_session, ws, 3)

        assert await session_ledger.bulk_close_sessions(db_session, ws) == 2
        assert await session_ledger.list_active_sessions(db_session, ws.id) == []
        assert await session_ledger.bulk_close_sessions(db_session, ws) == 0

    async def test_late_end_after_bulk_close_updates_counters(self, db_session: AsyncSession):
        ws = await create_workspace(db_session)
        notifier = RecordingNotifier()
        await session_ledger.start_session(db_session, ws, 42)
        await session_ledger.bulk_close_sessions(db_session, ws)
        db_session.expire_all()

        ended = await session_ledger.end_session(
            db_session, ws, 42, idle_time=4, messages=9, notifier=notifier
        )
        assert ended.idle_time == 4
        assert ended.messages == 9
        assert len(notifier.named("session_ended")) == 1

    async def test_late_end_outside_window_is_not_found(self, db_session: AsyncSession):
        ws = await create_workspace(db_session)
        session = await session_ledger.start_session(db_session, ws, 42)
        session.active = False
        session.end_time = utcnow() - session_ledger.RECENT_END_WINDOW - timedelta(seconds=5)
        await db_session.commit()

        with pytest.raises(ResourceNotFoundError):
            await session_ledger.end_session(db_session, ws, 42)


@pytest.mark.integration
@pytest.mark.asyncio
class TestSingleActiveSession:

    async def test_concurrent_starts_leave_one_active(self, db_session: AsyncSession):
        ws = await create_workspace(db_session)
        await add_member(db_session, ws, 42)

        async def start():
            async with async_session() as db:
                return await session_ledger.start_session(db, ws, 42)

        outcomes = await asyncio.gather(*(start() for _ in range(3)), return_exceptions=True)

        started = [o for o in outcomes if isinstance(o, ActivitySession)]
        conflicts = [o for o in outcomes if isinstance(o, ConflictError)]
        assert len(started) == 1
        assert len(conflicts) == 2
        assert {c.error_code for c in conflicts} == {"SESSION_ACTIVE"}
        assert len(await session_ledger.list_active_sessions(db_session, ws.id)) == 1

    async def test_unique_index_backs_the_check(self, db_session: AsyncSession, monkeypatch):
        ws = await create_workspace(db_session)
        await session_ledger.start_session(db_session, ws, 42)

        # the pre-insert lookup missed a session another request just wrote
        async def nothing_active(db, workspace_id, user_id):
            return None

        monkeypatch.setattr(session_ledger, "get_active_session", nothing_active)

        with pytest.raises(ConflictError) as exc_info:
            await session_ledger.start_session(db_session, ws, 42)
        assert exc_info.value.error_code == "SESSION_ACTIVE"

        rows = await db_session.execute(select(ActivitySession).where(ActivitySession.user_id == 42))
        assert len(rows.scalars().all()) == 1


@pytest.mark.integration
@pytest.mark.asyncio
class TestArchivedSessions:

    async def test_end_after_reset_leaves_archived_row_alone(self, db_session: AsyncSession):
        ws = await create_workspace(db_session)
        notifier = RecordingNotifier()
        session = await session_ledger.start_session(db_session, ws, 42)
        await perform_reset(db_session, ws, reset_by=7)

        with pytest.raises(ResourceNotFoundError):
            await session_ledger.end_session(
                db_session, ws, 42, idle_time=3, messages=9, notifier=notifier
            )

        db_session.expire_all()
        archived = await db_session.get(ActivitySession, session.id)
        assert archived.archived is True
        assert archived.end_time is None
        assert (archived.idle_time, archived.messages) == (0, 0)
        assert notifier.named("session_ended") == []

    async def test_rejoin_after_reset_starts_new_session(self, db_session: AsyncSession):
        ws = await create_workspace(db_session)
        first = await session_ledger.start_session(db_session, ws, 42)
        await perform_reset(db_session, ws, reset_by=7)

        second = await session_ledger.start_session(db_session, ws, 42)

        assert second.id != first.id
        assert [s.id for s in await session_ledger.list_active_sessions(db_session, ws.id)] == [
            second.id
        ]

    async def test_bulk_close_skips_archived(self, db_session: AsyncSession):
        ws = await create_workspace(db_session)
        await session_ledger.start_session(db_session, ws, 42)
        await perform_reset(db_session, ws, reset_by=7)

        assert await session_ledger.bulk_close_sessions(db_session, ws) == 0
