"""Pydantic schemas for session signals, adjustments, history and the staff view."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ── Session signals ──────────────────────────────────────────

class SessionSignal(BaseModel):
    """Body of POST /api/activity/session (sent by the game server)."""
    model_config = ConfigDict(populate_by_name=True)

    userid: int = Field(gt=0)
    placeid: int | None = None
    idle_time: int | None = Field(default=None, ge=0, alias="idleTime")
    messages: int | None = Field(default=None, ge=0)


class SignalResult(BaseModel):
    success: bool = True
    recorded: bool = True
    detail: str | None = None


class BulkEndResult(BaseModel):
    success: bool = True
    closed: int


class SessionOut(BaseModel):
    id: str
    user_id: int
    start_time: datetime
    end_time: datetime | None
    active: bool
    idle_time: int
    messages: int
    universe_id: int | None = None
    session_message: str | None = None

    model_config = {"from_attributes": True}


# ── Adjustments ──────────────────────────────────────────────

class AdjustmentCreate(BaseModel):
    user_id: int
    minutes: int
    reason: str | None = Field(default=None, max_length=500)

    @field_validator("minutes")
    @classmethod
    def minutes_non_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("minutes must be non-zero")
        return v


class AdjustmentOut(BaseModel):
    id: str
    user_id: int
    actor_id: int
    minutes: int
    reason: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


# ── History ──────────────────────────────────────────────────

class HistoryOut(BaseModel):
    id: str
    user_id: int
    period_start: datetime
    period_end: datetime
    minutes: int
    messages: int
    sessions_hosted: int
    sessions_attended: int
    idle_time: int
    wall_posts: int
    quota_progress: dict

    model_config = {"from_attributes": True}


# ── Staff overview ───────────────────────────────────────────

class StaffEntry(BaseModel):
    user_id: int
    username: str | None
    minutes: int
    position: int


class ActiveUser(BaseModel):
    user_id: int
    username: str | None
    start_time: datetime


class ActivityOverview(BaseModel):
    period_start: datetime
    active_users: list[ActiveUser] = []
    staff: list[StaffEntry] = []


# ── Manual reset ─────────────────────────────────────────────

class ResetOut(BaseModel):
    success: bool = True
    reset_id: str
    period_start: datetime
    period_end: datetime
    history_rows: int
