"""Analysis trigger and status endpoints.

Endpoints:
    trigger_analysis(conversation_id, payload, ...): Enqueue (or short-circuit) an analysis run.
    get_analysis_status(conversation_id, ...): Current analysis status of a conversation.
"""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Response, status
from sqlmodel.ext.asyncio.session import AsyncSession

from hive_analysis.api.dependencies import get_current_user_id, get_executor, get_scheduler
from hive_analysis.core.config import get_settings
from hive_analysis.core.errors import AnalysisAuthorizationError, ConversationNotFoundError
from hive_analysis.db.session import get_session
from hive_analysis.schemas import AnalysisStatusResponse, TriggerAnalysisRequest, TriggerAnalysisResponse
from hive_analysis.services.conversations import authorize_member, count_responses, get_conversation
from hive_analysis.services.executor import AnalysisJobExecutor
from hive_analysis.services.scheduler import AnalysisJobScheduler

_LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["analysis"])


@router.post(
    "/{conversation_id}/analyze",
    response_model=TriggerAnalysisResponse,
    response_model_by_alias=True,
    response_model_exclude={"job_id"},
    response_model_exclude_none=True,
)
async def trigger_analysis(
    conversation_id: UUID,
    response: Response,
    background_tasks: BackgroundTasks,
    payload: Optional[TriggerAnalysisRequest] = Body(default=None),
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    scheduler: AnalysisJobScheduler = Depends(get_scheduler),
    executor: AnalysisJobExecutor = Depends(get_executor),
) -> TriggerAnalysisResponse:
    try:
        result = await scheduler.trigger(session, conversation_id, user_id, payload, require_admin=True)
    except ConversationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found") from exc
    except AnalysisAuthorizationError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    if result.status == "queued" and result.job_id is not None:
        background_tasks.add_task(executor.execute, result.job_id)
        _LOGGER.info("Scheduled analysis job %s for conversation %s", result.job_id, conversation_id)
        response.status_code = status.HTTP_202_ACCEPTED
    return result.to_response()


@router.get(
    "/{conversation_id}/analysis-status",
    response_model=AnalysisStatusResponse,
    response_model_by_alias=True,
)
async def get_analysis_status(
    conversation_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> AnalysisStatusResponse:
    try:
        conversation = await get_conversation(session, conversation_id)
        await authorize_member(session, conversation, user_id)
    except ConversationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found") from exc
    except AnalysisAuthorizationError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    return AnalysisStatusResponse(
        conversation_id=conversation.id,
        analysis_status=conversation.analysis_status,
        analysis_error=conversation.analysis_error,
        analysis_updated_at=conversation.analysis_updated_at,
        analysis_response_count=conversation.analysis_response_count,
        response_count=await count_responses(session, conversation_id),
        threshold=get_settings().analysis_min_responses,
    )
