"""Consensus and agreement read endpoints.

Endpoints:
    get_response_consensus(conversation_id, ...): Per-response vote breakdown.
    get_consolidated_consensus(conversation_id, ...): Consolidated statements then unconsolidated responses.
    get_agreement_summaries(conversation_id, ...): Top agreement and divisive responses.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlmodel.ext.asyncio.session import AsyncSession

from hive_analysis.api.dependencies import get_current_user_id
from hive_analysis.core.config import get_settings
from hive_analysis.core.errors import AnalysisAuthorizationError, ConversationNotFoundError
from hive_analysis.db.session import get_session
from hive_analysis.models import ConsolidatedStatement, FeedbackVote
from hive_analysis.schemas import AgreementSummariesResponse, AgreementSummarySchema, ConsensusItemSchema
from hive_analysis.services.consensus import (
    AgreementSummaryOptions,
    ConsensusBucket,
    ConsensusResponse,
    ConsensusVote,
    compute_agreement_summaries,
    compute_consolidated_consensus,
    compute_response_consensus,
)
from hive_analysis.services.consolidation import StatementConsolidator
from hive_analysis.services.conversations import authorize_member, get_conversation, load_responses

router = APIRouter(prefix="/conversations", tags=["consensus"])


async def _require_member(session: AsyncSession, conversation_id: UUID, user_id: UUID) -> None:
    try:
        conversation = await get_conversation(session, conversation_id)
        await authorize_member(session, conversation, user_id)
    except ConversationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found") from exc
    except AnalysisAuthorizationError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


async def _load_votes(session: AsyncSession, conversation_id: UUID) -> list[ConsensusVote]:
    result = await session.exec(select(FeedbackVote).where(FeedbackVote.conversation_id == conversation_id))
    return [ConsensusVote(response_id=row.response_id, feedback=row.feedback) for row in result.scalars()]


async def _load_responses(session: AsyncSession, conversation_id: UUID) -> list[ConsensusResponse]:
    return [ConsensusResponse(id=row.id, response_text=row.text) for row in await load_responses(session, conversation_id)]


@router.get(
    "/{conversation_id}/consensus",
    response_model=list[ConsensusItemSchema],
    response_model_by_alias=True,
)
async def get_response_consensus(
    conversation_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> list[ConsensusItemSchema]:
    await _require_member(session, conversation_id, user_id)
    items = compute_response_consensus(
        await _load_responses(session, conversation_id),
        await _load_votes(session, conversation_id),
    )
    return [ConsensusItemSchema.model_validate(item) for item in items]


@router.get(
    "/{conversation_id}/consensus/consolidated",
    response_model=list[ConsensusItemSchema],
    response_model_by_alias=True,
)
async def get_consolidated_consensus(
    conversation_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> list[ConsensusItemSchema]:
    await _require_member(session, conversation_id, user_id)

    statements = await session.exec(
        select(ConsolidatedStatement)
        .where(ConsolidatedStatement.conversation_id == conversation_id)
        .order_by(ConsolidatedStatement.created_at, ConsolidatedStatement.id)
    )
    buckets = [
        ConsensusBucket(
            bucket_id=str(row.id),
            consolidated_statement=row.synthesized_statement,
            response_ids=list(row.combined_response_ids),
        )
        for row in statements.scalars()
    ]
    unconsolidated = [
        ConsensusResponse(id=row.id, response_text=row.text)
        for row in await StatementConsolidator.load_unconsolidated(session, conversation_id)
    ]
    items = compute_consolidated_consensus(buckets, unconsolidated, await _load_votes(session, conversation_id))
    return [ConsensusItemSchema.model_validate(item) for item in items]


@router.get(
    "/{conversation_id}/agreement-summaries",
    response_model=AgreementSummariesResponse,
    response_model_by_alias=True,
)
async def get_agreement_summaries(
    conversation_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> AgreementSummariesResponse:
    await _require_member(session, conversation_id, user_id)
    settings = get_settings()
    summaries = compute_agreement_summaries(
        await _load_responses(session, conversation_id),
        await _load_votes(session, conversation_id),
        AgreementSummaryOptions(min_votes=settings.consensus_min_votes, max_per_type=settings.consensus_max_per_type),
    )
    return AgreementSummariesResponse(
        agreement=[AgreementSummarySchema.model_validate(item) for item in summaries.agreement],
        divisive=[AgreementSummarySchema.model_validate(item) for item in summaries.divisive],
    )
