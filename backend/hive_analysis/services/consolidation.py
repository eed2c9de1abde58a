"""Synthesis and persistence of consolidated statements.

Each similarity group with at least two members is condensed into one
statement by the synthesis collaborator. The group, its members, and the
statement (with ordered response ids and an ``"id: text | id: text"``
provenance string) are written with delete-then-insert semantics so a
conversation never holds a mix of old and new groupings.

Classes:
    SynthesisContext: Texts and cluster index handed to the synthesiser for one group.
    ConsolidationDraft: A group with its synthesised statement, ready to persist.
    StatementConsolidator: Builds contexts, runs synthesis, and replaces stored rows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from hive_analysis.core.config import get_settings
from hive_analysis.core.errors import PersistenceError
from hive_analysis.models import (
    ConsolidatedStatement,
    Response,
    ResponseGroup,
    ResponseGroupMember,
)
from hive_analysis.services.contracts import StatementSynthesisService
from hive_analysis.services.conversations import load_responses
from hive_analysis.services.embeddings import load_response_embeddings
from hive_analysis.services.similarity import (
    GroupableResponse,
    GroupingParams,
    SimilarityGroup,
    SimilarityGrouper,
)
from hive_analysis.utils.text import format_provenance

_LOGGER = logging.getLogger(__name__)

MIN_CONSOLIDATION_SIZE = 2


@dataclass(slots=True)
class SynthesisContext:
    cluster_index: int
    response_ids: list[int]
    texts: list[str]


@dataclass(slots=True)
class ConsolidationDraft:
    group: SimilarityGroup
    statement: str
    provenance: str


class StatementConsolidator:
    def __init__(
        self,
        synthesizer: StatementSynthesisService,
        *,
        params: GroupingParams | None = None,
        prompt_version: Optional[str] = None,
    ) -> None:
        self._synthesizer = synthesizer
        self.params = params or GroupingParams.from_settings()
        self.prompt_version = prompt_version or get_settings().synthesis_prompt_version

    @staticmethod
    def filter_eligible(groups: Sequence[SimilarityGroup]) -> list[SimilarityGroup]:
        return [group for group in groups if group.size >= MIN_CONSOLIDATION_SIZE]

    @staticmethod
    def unconsolidated_ids(response_ids: Sequence[int], groups: Sequence[SimilarityGroup]) -> list[int]:
        grouped = {member for group in groups if group.size >= MIN_CONSOLIDATION_SIZE for member in group.member_ids}
        return [response_id for response_id in response_ids if response_id not in grouped]

    @staticmethod
    def build_context(group: SimilarityGroup, texts_by_id: Mapping[int, str]) -> SynthesisContext:
        return SynthesisContext(
            cluster_index=group.cluster_index,
            response_ids=list(group.member_ids),
            texts=[texts_by_id[response_id] for response_id in group.member_ids],
        )

    async def synthesize(
        self,
        groups: Sequence[SimilarityGroup],
        texts_by_id: Mapping[int, str],
    ) -> list[ConsolidationDraft]:
        drafts: list[ConsolidationDraft] = []
        for group in self.filter_eligible(groups):
            context = self.build_context(group, texts_by_id)
            statement = await self._synthesizer.synthesize(context.texts)
            drafts.append(
                ConsolidationDraft(
                    group=group,
                    statement=statement,
                    provenance=format_provenance(zip(context.response_ids, context.texts)),
                )
            )
        _LOGGER.info("Synthesised %s consolidated statements", len(drafts))
        return drafts

    async def replace(
        self,
        session: AsyncSession,
        conversation_id: UUID,
        drafts: Sequence[ConsolidationDraft],
        *,
        commit: bool = False,
    ) -> list[ConsolidatedStatement]:
        """Delete stored groups and statements for the conversation, then insert ``drafts``."""

        try:
            await session.execute(
                delete(ConsolidatedStatement).where(ConsolidatedStatement.conversation_id == conversation_id)
            )
            group_ids = select(ResponseGroup.id).where(ResponseGroup.conversation_id == conversation_id)
            await session.execute(delete(ResponseGroupMember).where(ResponseGroupMember.group_id.in_(group_ids)))
            await session.execute(delete(ResponseGroup).where(ResponseGroup.conversation_id == conversation_id))
        except SQLAlchemyError as exc:
            raise PersistenceError(
                "Failed to delete consolidated statements", {"conversation_id": conversation_id}
            ) from exc

        params_json = self.params.as_json()
        statements: list[ConsolidatedStatement] = []
        try:
            records = [
                ResponseGroup(
                    conversation_id=conversation_id,
                    cluster_index=draft.group.cluster_index,
                    representative_response_id=draft.group.representative_id,
                    group_size=draft.group.size,
                    params_json=params_json,
                )
                for draft in drafts
            ]
            session.add_all(records)
            # groups must exist before members and statements reference them
            await session.flush()
            for draft, record in zip(drafts, records):
                group = draft.group
                for position, response_id in enumerate(group.member_ids):
                    session.add(ResponseGroupMember(group_id=record.id, response_id=response_id, position=position))
                statement = ConsolidatedStatement(
                    conversation_id=conversation_id,
                    group_id=record.id,
                    synthesized_statement=draft.statement,
                    combined_response_ids=list(group.member_ids),
                    combined_responses=draft.provenance,
                    model_used=getattr(self._synthesizer, "chat_model", "unknown"),
                    prompt_version=self.prompt_version,
                )
                session.add(statement)
                statements.append(statement)
            await session.flush()
            if commit:
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(
                "Failed to insert consolidated statements",
                {"conversation_id": conversation_id, "count": len(drafts)},
            ) from exc

        _LOGGER.info("Stored %s consolidated statements for conversation %s", len(statements), conversation_id)
        return statements

    async def rebuild(
        self,
        session: AsyncSession,
        conversation_id: UUID,
        grouper: SimilarityGrouper | None = None,
    ) -> list[ConsolidatedStatement]:
        """Recompute groups and statements from stored embeddings and cluster assignments."""

        grouper = grouper or SimilarityGrouper(self.params)
        responses = [row for row in await load_responses(session, conversation_id) if row.cluster_index is not None]
        embeddings = await load_response_embeddings(session, conversation_id)
        missing = [row.id for row in responses if row.id not in embeddings]
        if missing:
            _LOGGER.warning("Skipping %s responses without stored embeddings", len(missing))

        groupable = [
            GroupableResponse(response_id=row.id, cluster_index=row.cluster_index, embedding=embeddings[row.id])
            for row in responses
            if row.id in embeddings
        ]
        result = grouper.group(groupable)
        drafts = await self.synthesize(result.groups, {row.id: row.text for row in responses})
        try:
            statements = await self.replace(session, conversation_id, drafts)
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        return statements

    @staticmethod
    async def load_unconsolidated(session: AsyncSession, conversation_id: UUID) -> list[Response]:
        """Responses of the conversation that belong to no stored group."""

        grouped = select(ResponseGroupMember.response_id).join(
            ResponseGroup, ResponseGroup.id == ResponseGroupMember.group_id
        ).where(ResponseGroup.conversation_id == conversation_id)
        result = await session.exec(
            select(Response)
            .where(Response.conversation_id == conversation_id, Response.id.not_in(grouped))
            .order_by(Response.created_at, Response.id)
        )
        return list(result.scalars().all())
