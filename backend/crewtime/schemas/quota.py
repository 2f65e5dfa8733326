"""Pydantic schemas for quota progress and completion requests.

Progress is a tagged union on ``kind``:
    MetricProgress   - minutes / session counts / visits against a target
    CustomProgress   - manually completed or signed-off quotas

The same shapes are stored in ActivityHistory.quota_progress.
"""

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class MetricProgress(BaseModel):
    kind: Literal["metric"] = "metric"
    target: int
    current: int

    @property
    def percentage(self) -> float:
        """Display value, clamped to [0, 100]."""
        if self.target <= 0:
            return 100.0
        return max(0.0, min(100.0, self.current / self.target * 100))

    @property
    def completed(self) -> bool:
        if self.target <= 0:
            return True
        return self.current / self.target * 100 >= 100


class CustomProgress(BaseModel):
    kind: Literal["custom"] = "custom"
    completed: bool = False
    completed_at: datetime | None = None
    completed_by: int | None = None
    notes: str | None = None

    @property
    def percentage(self) -> float:
        return 100.0 if self.completed else 0.0


Progress = Annotated[Union[MetricProgress, CustomProgress], Field(discriminator="kind")]


class QuotaProgressOut(BaseModel):
    quota_id: str
    name: str
    type: str
    value: int
    completion_type: str | None = None
    session_type: str | None = None
    percentage: float
    completed: bool
    progress: Progress


# ── Completion requests ──────────────────────────────────────

class CompleteRequest(BaseModel):
    # Must be the caller; accepted so clients can be explicit
    target_user_id: int | None = None
    notes: str | None = Field(default=None, max_length=1000)


class SignoffRequest(BaseModel):
    user_id: int
    notes: str | None = Field(default=None, max_length=1000)


class UncompleteRequest(BaseModel):
    user_id: int | None = None


class CompletionOut(BaseModel):
    id: str
    quota_id: str
    user_id: int
    completed: bool
    completed_at: datetime | None
    completed_by: int | None
    notes: str | None

    model_config = {"from_attributes": True}
