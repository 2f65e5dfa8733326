"""Public leaderboard router (API-key authenticated).

Endpoints:
    GET /api/public/v1/workspace/{workspace_id}/leaderboard?userId=
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import async_sessionmaker

from crewtime.auth.deps import get_api_workspace
from crewtime.database import get_session_factory
from crewtime.models.workspace import Workspace
from crewtime.schemas.leaderboard import LeaderboardOut
from crewtime.services.directory import DirectoryClient, get_directory
from crewtime.services.leaderboard import ActivityViews, get_views

router = APIRouter()


@router.get("/{workspace_id}/leaderboard", response_model=LeaderboardOut)
async def get_leaderboard(
    user_id: int | None = Query(default=None, alias="userId"),
    workspace: Workspace = Depends(get_api_workspace),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    directory: DirectoryClient = Depends(get_directory),
    views: ActivityViews = Depends(get_views),
):
    """Top three by playtime and by session count, plus the viewer's own row."""
    return await views.leaderboard(session_factory, workspace.id, directory, viewer_id=user_id)
