"""Pydantic schemas for per-workspace configuration values.

Both are stored as JSON under a WorkspaceConfig key:
    activity                 → ActivityConfig
    activity_reset_schedule  → ResetSchedule
"""

from typing import Literal

from pydantic import BaseModel

# Index matches datetime.weekday()
WEEKDAYS = (
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
)

Weekday = Literal[
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
]
ResetFrequency = Literal["weekly", "biweekly", "monthly"]


class ActivityConfig(BaseModel):
    idle_time_enabled: bool = True
    # Minimum directory rank shown on the leaderboard
    leaderboard_rank: int | None = None
    # Signals from users at or below this rank are ignored
    tracking_rank: int | None = None

    model_config = {"extra": "ignore"}


class ResetSchedule(BaseModel):
    enabled: bool = False
    day: Weekday | None = None
    frequency: ResetFrequency = "weekly"

    model_config = {"extra": "ignore"}
