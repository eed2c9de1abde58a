"""Conversation lookups, authorisation, and analysis status transitions.

Functions:
    get_conversation(session, conversation_id): Load a conversation or raise ConversationNotFoundError.
    authorize_member(session, conversation, user_id, require_admin): Enforce hive membership.
    count_responses(session, conversation_id): Number of responses in the conversation.
    count_analyzed_responses(session, conversation_id): Responses with a cluster assignment.
    load_responses(session, conversation_id, only_unassigned): Responses in submission order.
    set_analysis_status(session, conversation, status, ...): Persist a status transition.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlmodel.ext.asyncio.session import AsyncSession

from hive_analysis.core.errors import AnalysisAuthorizationError, ConversationNotFoundError
from hive_analysis.models import Conversation, HiveMember, Response


async def get_conversation(session: AsyncSession, conversation_id: UUID) -> Conversation:
    conversation = await session.get(Conversation, conversation_id, populate_existing=True)
    if conversation is None:
        raise ConversationNotFoundError("Conversation not found", {"conversation_id": conversation_id})
    return conversation


async def authorize_member(
    session: AsyncSession,
    conversation: Conversation,
    user_id: UUID,
    *,
    require_admin: bool = False,
) -> HiveMember:
    member = await session.get(HiveMember, (conversation.hive_id, user_id))
    if member is None:
        raise AnalysisAuthorizationError(
            "User is not a member of this hive",
            {"conversation_id": conversation.id, "user_id": user_id},
        )
    if require_admin and member.role != "admin":
        raise AnalysisAuthorizationError(
            "Only hive admins can trigger analysis",
            {"conversation_id": conversation.id, "user_id": user_id},
        )
    return member


async def count_responses(session: AsyncSession, conversation_id: UUID) -> int:
    result = await session.exec(
        select(func.count()).select_from(Response).where(Response.conversation_id == conversation_id)
    )
    return int(result.scalar_one())


async def count_analyzed_responses(session: AsyncSession, conversation_id: UUID) -> int:
    result = await session.exec(
        select(func.count())
        .select_from(Response)
        .where(Response.conversation_id == conversation_id, Response.cluster_index.is_not(None))
    )
    return int(result.scalar_one())


async def load_responses(
    session: AsyncSession,
    conversation_id: UUID,
    *,
    only_unassigned: bool = False,
) -> list[Response]:
    stmt = select(Response).where(Response.conversation_id == conversation_id)
    if only_unassigned:
        stmt = stmt.where(Response.cluster_index.is_(None))
    result = await session.exec(stmt.order_by(Response.created_at, Response.id))
    return list(result.scalars().all())


async def set_analysis_status(
    session: AsyncSession,
    conversation: Conversation,
    status: str,
    *,
    error: Optional[str] = None,
    response_count: Optional[int] = None,
    commit: bool = True,
) -> Conversation:
    conversation.analysis_status = status
    conversation.analysis_error = error
    if response_count is not None:
        conversation.analysis_response_count = response_count
    conversation.analysis_updated_at = datetime.utcnow()
    session.add(conversation)
    if commit:
        await session.commit()
    return conversation
