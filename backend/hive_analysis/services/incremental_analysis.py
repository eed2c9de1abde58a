"""Incremental analysis: place new responses against stored cluster models.

Only responses without a cluster assignment are embedded. Each one joins the
cluster whose stored centroid is nearest by cosine distance and is dropped at
a random point inside that cluster's spread disc on the 2D map. Centroids are
read, never updated; the next full run recomputes them.

Classes:
    IncrementalAnalysisResult: Summary of a completed run.
    IncrementalAnalysisPipeline: Runs the incremental stages for one conversation.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import UUID

import numpy as np
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from hive_analysis.core.errors import ConversationNotFoundError, IncrementalPrerequisiteError
from hive_analysis.models import AnalysisStatus, Theme
from hive_analysis.services.cluster_models import ClusterModelStore, assign_nearest, place_near_centroid
from hive_analysis.services.contracts import EmbeddingService
from hive_analysis.services.conversations import (
    count_analyzed_responses,
    get_conversation,
    load_responses,
    set_analysis_status,
)
from hive_analysis.services.embeddings import upsert_response_embeddings
from hive_analysis.services.progress import ProgressBroadcaster
from hive_analysis.services.timing import StageTimer
from hive_analysis.utils.vectors import as_matrix, l2_normalise

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class IncrementalAnalysisResult:
    conversation_id: UUID
    assigned_count: int
    analyzed_count: int
    assignments: dict[int, int] = field(default_factory=dict)
    timings: dict[str, Any] = field(default_factory=dict)


class IncrementalAnalysisPipeline:
    def __init__(
        self,
        *,
        embedder: EmbeddingService,
        broadcaster: Optional[ProgressBroadcaster] = None,
        store: Optional[ClusterModelStore] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self._embedder = embedder
        self._broadcaster = broadcaster or ProgressBroadcaster()
        self._store = store or ClusterModelStore()
        self._rng = rng or np.random.default_rng()

    async def run(self, session: AsyncSession, conversation_id: UUID) -> IncrementalAnalysisResult:
        try:
            return await self._run(session, conversation_id)
        except Exception as exc:
            await self._fail(session, conversation_id, exc)
            raise

    async def _run(self, session: AsyncSession, conversation_id: UUID) -> IncrementalAnalysisResult:
        timer = StageTimer()
        emit = self._broadcaster.publish_stage

        conversation = await get_conversation(session, conversation_id)
        models = await self._store.load(session, conversation_id)
        if not models:
            raise IncrementalPrerequisiteError(
                "No cluster models stored; run a full analysis first", {"conversation_id": conversation_id}
            )

        await set_analysis_status(session, conversation, AnalysisStatus.EMBEDDING)
        await emit(conversation_id, "starting")

        await emit(conversation_id, "fetching")
        new_responses = await load_responses(session, conversation_id, only_unassigned=True)
        await emit(conversation_id, "fetched", f"Found {len(new_responses)} new responses")
        _LOGGER.info(
            "Incremental analysis of %s: %s new responses against %s clusters",
            conversation_id,
            len(new_responses),
            len(models),
        )

        assignments: dict[int, int] = {}
        if new_responses:
            await emit(conversation_id, "embedding")
            async with timer.track("embed"):
                batch = await self._embedder.embed_texts([row.text for row in new_responses])
                vectors = l2_normalise(as_matrix(batch.vectors, expected_rows=len(new_responses)))
            await emit(conversation_id, "embedding_done")

            dims = {model.dim for model in models}
            if dims != {vectors.shape[1]}:
                raise IncrementalPrerequisiteError(
                    "Embedding dimension does not match stored cluster models",
                    {"embedding_dim": vectors.shape[1], "model_dims": sorted(dims)},
                )

            await emit(conversation_id, "clustering", "Assigning new responses to themes")
            by_index = {model.cluster_index: model for model in models}
            async with timer.track("assign"):
                for row, vector in zip(new_responses, vectors):
                    nearest = assign_nearest(vector, models)
                    x, y = place_near_centroid(by_index[nearest.cluster_index], self._rng)
                    row.cluster_index = nearest.cluster_index
                    row.x_2d = x
                    row.y_2d = y
                    row.distance_to_centroid = nearest.distance
                    session.add(row)
                    assignments[row.id] = nearest.cluster_index

            await emit(conversation_id, "saving")
            async with timer.track("persist"):
                await self._bump_theme_sizes(session, conversation_id, Counter(assignments.values()))
                await upsert_response_embeddings(session, conversation_id, [row.id for row in new_responses], vectors)
                await session.commit()

        await emit(conversation_id, "finalizing")
        analyzed = await count_analyzed_responses(session, conversation_id)
        conversation = await get_conversation(session, conversation_id)
        await set_analysis_status(session, conversation, AnalysisStatus.READY, error=None, response_count=analyzed)
        await emit(conversation_id, "complete")

        snapshot = timer.snapshot()
        _LOGGER.info(
            "Incremental analysis of %s complete: %s assigned in %.1f ms",
            conversation_id,
            len(assignments),
            snapshot["total_duration_ms"],
        )
        return IncrementalAnalysisResult(
            conversation_id=conversation_id,
            assigned_count=len(assignments),
            analyzed_count=analyzed,
            assignments=assignments,
            timings=snapshot,
        )

    async def _bump_theme_sizes(self, session: AsyncSession, conversation_id: UUID, counts: Counter) -> None:
        if not counts:
            return
        result = await session.exec(
            select(Theme).where(Theme.conversation_id == conversation_id, Theme.cluster_index.in_(list(counts)))
        )
        themes = {theme.cluster_index: theme for theme in result.scalars()}
        for cluster_index, added in counts.items():
            theme = themes.get(cluster_index)
            if theme is None:
                _LOGGER.warning("No theme row for cluster %s of %s; size not updated", cluster_index, conversation_id)
                continue
            theme.size += added
            session.add(theme)

    async def _fail(self, session: AsyncSession, conversation_id: UUID, exc: Exception) -> None:
        message = str(exc) or exc.__class__.__name__
        _LOGGER.error("Incremental analysis of %s failed: %s", conversation_id, message, exc_info=exc)
        await session.rollback()
        try:
            conversation = await get_conversation(session, conversation_id)
            await set_analysis_status(session, conversation, AnalysisStatus.ERROR, error=message)
        except (SQLAlchemyError, ConversationNotFoundError) as status_exc:
            _LOGGER.error("Could not record error status for %s: %s", conversation_id, status_exc)
            await session.rollback()
            return
        await self._broadcaster.publish_status(conversation_id, AnalysisStatus.ERROR, error=message)
