"""Quotas router - progress and custom-quota completion.

Endpoints (prefix /api/workspaces/{workspace_id}/quotas):
    GET  /me                       Own progress for the current period
    POST /{quota_id}/complete      Complete own user_complete quota
    POST /{quota_id}/signoff       Sign off a member's manager_signoff quota
    POST /{quota_id}/uncomplete    Revert a completion
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from crewtime.auth.deps import get_current_member, get_workspace
from crewtime.auth.permissions import Actor
from crewtime.database import get_db
from crewtime.models.workspace import Workspace
from crewtime.schemas.quota import (
    CompleteRequest,
    CompletionOut,
    QuotaProgressOut,
    SignoffRequest,
    UncompleteRequest,
)
from crewtime.services import quota_evaluator
from crewtime.services.notifications import Notifier, get_notifier

router = APIRouter()


@router.get("/me", response_model=list[QuotaProgressOut])
async def my_quotas(
    workspace: Workspace = Depends(get_workspace),
    actor: Actor = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    return await quota_evaluator.evaluate_member_quotas(db, workspace, actor.user_id)


@router.post("/{quota_id}/complete", response_model=CompletionOut)
async def complete_quota(
    quota_id: str,
    body: CompleteRequest | None = None,
    actor: Actor = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    body = body or CompleteRequest()
    completion = await quota_evaluator.complete(
        db, quota_id, actor,
        target_user_id=body.target_user_id, notes=body.notes, notifier=notifier,
    )
    return CompletionOut.model_validate(completion)


@router.post("/{quota_id}/signoff", response_model=CompletionOut)
async def signoff_quota(
    quota_id: str,
    body: SignoffRequest,
    actor: Actor = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    completion = await quota_evaluator.signoff(
        db, quota_id, body.user_id, actor, notes=body.notes, notifier=notifier
    )
    return CompletionOut.model_validate(completion)


@router.post("/{quota_id}/uncomplete", response_model=CompletionOut)
async def uncomplete_quota(
    quota_id: str,
    body: UncompleteRequest | None = None,
    actor: Actor = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    body = body or UncompleteRequest()
    completion = await quota_evaluator.uncomplete(
        db, quota_id, actor, target_user_id=body.user_id
    )
    return CompletionOut.model_validate(completion)
