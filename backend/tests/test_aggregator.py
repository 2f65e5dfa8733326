"""Time aggregation over the session and adjustment ledgers."""

import random
from collections import Counter
from datetime import datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from crewtime.models.activity import ActivityAdjustment, ActivityReset, ActivitySession
from crewtime.models.schedule import AllyVisit, ScheduledSession, SessionParticipant, WallPost
from crewtime.services import aggregator
from crewtime.services.aggregator import MemberStats

from conftest import add_member, create_workspace

T0 = datetime(2026, 3, 2, 12, 0, 0)


def _session(user_id=1, start=T0, minutes=60, idle=0, workspace_id=1001, **kw):
    return ActivitySession(
        user_id=user_id,
        workspace_id=workspace_id,
        start_time=start,
        end_time=start + timedelta(minutes=minutes) if minutes is not None else None,
        active=minutes is None,
        idle_time=idle,
        **kw,
    )


@pytest.mark.unit
class TestEffectiveTime:

    def test_duration_minus_idle(self):
        assert aggregator.session_effective_ms(_session(minutes=60, idle=15)) == 45 * 60_000

    def test_idle_ignored_when_disabled(self):
        s = _session(minutes=60, idle=15)
        assert aggregator.session_effective_ms(s, idle_enabled=False) == 60 * 60_000

    def test_idle_exceeding_duration_is_negative(self):
        rng = random.Random(20260302)
        for _ in range(50):
            duration = rng.randint(0, 120)
            idle = duration + rng.randint(1, 120)
            ms = aggregator.session_effective_ms(_session(minutes=duration, idle=idle))
            assert ms == (duration - idle) * 60_000
            assert ms < 0

    def test_sub_minute_precision(self):
        s = ActivitySession(
            user_id=1, workspace_id=1, start_time=T0,
            end_time=T0 + timedelta(seconds=89, milliseconds=500), idle_time=0,
        )
        assert aggregator.session_effective_ms(s) == 89_500
        assert aggregator.ms_to_seconds(89_500) == 89
        assert aggregator.ms_to_minutes(89_500) == 1
        assert aggregator.ms_to_minutes(91_000) == 2

    def test_negative_conversions(self):
        assert aggregator.ms_to_minutes(-45 * 60_000) == -45
        assert aggregator.ms_to_seconds(-1_500) == -2

    @pytest.mark.parametrize(
        "ms,minutes",
        [
            (30_000, 1),
            (90_000, 2),
            (150_000, 3),
            (149_999, 2),
            (-30_000, 0),
            (-150_000, -2),
        ],
    )
    def test_half_minutes_round_up(self, ms, minutes):
        assert aggregator.ms_to_minutes(ms) == minutes


@pytest.mark.unit
class TestRanking:

    def test_descending_with_username_then_id_tiebreak(self):
        totals = {3: 1000, 1: 5000, 2: 1000, 4: 1000}
        names = {1: "zed", 2: "bob", 3: "Alice", 4: None}
        ordered = aggregator.rank_totals(totals, names)
        assert [user_id for user_id, _ in ordered] == [1, 4, 3, 2]


@pytest.mark.unit
class TestMemberStats:

    def test_session_type_filter(self):
        stats = MemberStats(
            hosted_by_type=Counter({"training": 2, "shift": 1, None: 1}),
            attended_by_type=Counter({"training": 3}),
        )
        assert stats.sessions_hosted() == 4
        assert stats.sessions_hosted("all") == 4
        assert stats.sessions_hosted("training") == 2
        assert stats.sessions_attended("shift") == 0
        assert stats.sessions_logged("training") == 5

    def test_has_activity(self):
        assert not MemberStats().has_activity
        assert MemberStats(wall_posts=1).has_activity
        assert MemberStats(effective_ms=-60_000).has_activity


@pytest.mark.integration
@pytest.mark.asyncio
class TestLedgerReads:

    async def test_period_start_defaults_to_epoch(self, db_session: AsyncSession):
        ws = await create_workspace(db_session)
        assert await aggregator.current_period_start(db_session, ws.id) == aggregator.PERIOD_EPOCH

    async def test_period_start_is_latest_reset(self, db_session: AsyncSession):
        ws = await create_workspace(db_session)
        for day in (1, 8):
            db_session.add(ActivityReset(
                workspace_id=ws.id,
                reset_at=datetime(2026, 3, day),
                previous_period_start=datetime(2026, 2, 1),
                previous_period_end=datetime(2026, 3, day),
            ))
        await db_session.commit()
        assert await aggregator.current_period_start(db_session, ws.id) == datetime(2026, 3, 8)

    async def test_window_sum(self, db_session: AsyncSession):
        ws = await create_workspace(db_session)
        db_session.add_all([
            _session(user_id=1, minutes=60, idle=10),                       # 50
            _session(user_id=1, start=T0 + timedelta(hours=2), minutes=30),  # 30
            _session(user_id=1, start=T0 + timedelta(hours=3), minutes=None),  # open
            _session(user_id=1, start=T0 - timedelta(days=10), minutes=90),  # before window
            _session(user_id=2, minutes=20, archived=True),                 # archived
            _session(user_id=2, minutes=5, idle=30),                        # -25
            _session(user_id=9, minutes=60, workspace_id=2002),             # other workspace
            ActivityAdjustment(
                user_id=1, workspace_id=ws.id, actor_id=99, minutes=-20,
                created_at=T0 + timedelta(hours=1),
            ),
            ActivityAdjustment(
                user_id=3, workspace_id=ws.id, actor_id=99, minutes=15,
                created_at=T0 + timedelta(hours=1),
            ),
        ])
        await create_workspace(db_session, workspace_id=2002, activity_key="k2", api_key="a2")

        start, end = T0 - timedelta(hours=1), T0 + timedelta(days=1)
        totals = await aggregator.effective_ms_by_user(db_session, ws.id, start, end)
        assert {uid: aggregator.ms_to_minutes(ms) for uid, ms in totals.items()} == {
            1: 60, 2: -25, 3: 15,
        }

        no_idle = await aggregator.effective_ms_by_user(
            db_session, ws.id, start, end, idle_enabled=False
        )
        assert aggregator.ms_to_minutes(no_idle[1]) == 70

        only_two = await aggregator.effective_ms_by_user(db_session, ws.id, start, end, user_ids=[2])
        assert set(only_two) == {2}

    async def test_member_period_stats(self, db_session: AsyncSession):
        ws = await create_workspace(db_session)
        for uid in (1, 2, 3):
            await add_member(db_session, ws, uid)

        training = ScheduledSession(
            workspace_id=ws.id, owner_id=1, session_type="training", date=T0
        )
        shift = ScheduledSession(workspace_id=ws.id, owner_id=2, session_type="shift", date=T0)
        db_session.add_all([training, shift])
        await db_session.flush()
        db_session.add_all([
            SessionParticipant(session_id=training.id, user_id=2, role_name="Co-Host"),
            SessionParticipant(session_id=training.id, user_id=3, role_name="Trainee"),
            SessionParticipant(session_id=training.id, user_id=1, role_name="Host"),
            SessionParticipant(session_id=shift.id, user_id=3, role_name="Staff"),
            WallPost(workspace_id=ws.id, author_id=3, created_at=T0),
            WallPost(workspace_id=ws.id, author_id=3, created_at=T0),
            AllyVisit(workspace_id=ws.id, host_id=1, participants=[3, "2"], time=T0),
            _session(user_id=3, minutes=45, idle=5, messages=12),
        ])
        await db_session.commit()

        stats = await aggregator.member_period_stats(
            db_session, ws.id, T0 - timedelta(hours=1), T0 + timedelta(hours=2)
        )
        assert stats[1].sessions_hosted() == 1
        assert stats[1].sessions_attended() == 0
        assert stats[2].sessions_hosted() == 2          # owns shift, co-hosts training
        assert stats[2].sessions_hosted("training") == 1
        assert stats[3].sessions_attended() == 2
        assert stats[3].sessions_attended("shift") == 1
        assert stats[3].wall_posts == 2
        assert stats[3].minutes == 40
        assert stats[3].messages == 12
        assert stats[3].idle_time == 5
        assert {uid: s.alliance_visits for uid, s in stats.items()} == {1: 1, 2: 1, 3: 1}
