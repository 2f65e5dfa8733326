"""Pydantic schemas for cron trigger responses."""

from pydantic import BaseModel, ConfigDict, Field


class WorkspaceResetResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    workspace_id: int = Field(serialization_alias="workspaceId")
    workspace_name: str = Field(serialization_alias="workspaceName")
    success: bool
    error: str | None = None


class ResetCronOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    results: list[WorkspaceResetResult] = []
    reset_count: int = Field(default=0, serialization_alias="resetCount")


class RankSyncCronOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    started: int
    workspaces: list[int] = []
    batch_id: int | None = Field(default=None, serialization_alias="batchId")
