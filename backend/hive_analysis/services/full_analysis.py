"""Full analysis of a conversation: embed, cluster, project, name, consolidate, persist.

Classes:
    FullAnalysisResult: Summary of a completed run.
    FullAnalysisPipeline: Runs every stage for one conversation and flips it to ready.

Every analysis row (embeddings, cluster models, themes, response placement,
groups and statements) is written in one transaction. The ready flag is set
only after that transaction commits, so a conversation marked ready always has
cluster models an incremental run can use. On any failure the open
transaction is rolled back and the conversation is marked ``error``; rows from
earlier successful runs stay as they were.

Each response also gets an outlier score (MAD z-score of its distance to the
centroid) when its cluster is large enough to score; nobody is moved out of
their cluster.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence
from uuid import UUID

import numpy as np
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from hive_analysis.core.config import Settings, get_settings
from hive_analysis.core.errors import CollaboratorContractError, ConversationNotFoundError
from hive_analysis.models import AnalysisStatus, Response, Theme
from hive_analysis.services.cluster_models import ClusterModelStore, compute_cluster_models
from hive_analysis.services.consolidation import StatementConsolidator
from hive_analysis.services.contracts import (
    ClusteringService,
    DimensionReductionService,
    EmbeddingService,
    StatementSynthesisService,
    ThemeNamingService,
)
from hive_analysis.services.conversations import get_conversation, load_responses, set_analysis_status
from hive_analysis.services.embeddings import upsert_response_embeddings
from hive_analysis.services.openai_client import ThemeName
from hive_analysis.services.outliers import compute_outlier_scores, flag_outliers
from hive_analysis.services.progress import ProgressBroadcaster
from hive_analysis.services.similarity import GroupableResponse, SimilarityGrouper
from hive_analysis.services.timing import StageTimer
from hive_analysis.utils.text import evenly_spaced_sample
from hive_analysis.utils.vectors import as_matrix, cosine_distance, l2_normalise

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class FullAnalysisResult:
    conversation_id: UUID
    response_count: int
    cluster_count: int
    statement_count: int = 0
    flagged_clusters: list[int] = field(default_factory=list)
    outlier_response_ids: list[int] = field(default_factory=list)
    timings: dict[str, Any] = field(default_factory=dict)


def validate_cluster_labels(labels: Sequence[int], expected: int) -> list[int]:
    """Return labels as ints, enforcing one 0-based contiguous index per vector."""

    if len(labels) != expected:
        raise CollaboratorContractError(
            "Clustering returned the wrong number of labels", {"expected": expected, "received": len(labels)}
        )
    values = [int(label) for label in labels]
    distinct = set(values)
    if expected and distinct != set(range(len(distinct))):
        raise CollaboratorContractError(
            "Cluster indices must be 0-based and contiguous", {"indices": sorted(distinct)}
        )
    return values


def validate_projection(coords: np.ndarray, expected: int) -> np.ndarray:
    arr = np.asarray(coords, dtype=float)
    if arr.shape != (expected, 2):
        raise CollaboratorContractError(
            "Projection must return one 2D point per vector",
            {"expected": (expected, 2), "received": tuple(arr.shape)},
        )
    if not np.all(np.isfinite(arr)):
        raise CollaboratorContractError("Projection contains non-finite coordinates")
    return arr


class FullAnalysisPipeline:
    def __init__(
        self,
        *,
        embedder: EmbeddingService,
        clusterer: ClusteringService,
        projector: DimensionReductionService,
        theme_namer: ThemeNamingService,
        synthesizer: StatementSynthesisService,
        broadcaster: Optional[ProgressBroadcaster] = None,
        store: Optional[ClusterModelStore] = None,
        grouper: Optional[SimilarityGrouper] = None,
        consolidator: Optional[StatementConsolidator] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._embedder = embedder
        self._clusterer = clusterer
        self._projector = projector
        self._theme_namer = theme_namer
        self._broadcaster = broadcaster or ProgressBroadcaster()
        self._store = store or ClusterModelStore()
        self._grouper = grouper or SimilarityGrouper()
        self._consolidator = consolidator or StatementConsolidator(synthesizer, params=self._grouper.params)

    async def run(self, session: AsyncSession, conversation_id: UUID) -> FullAnalysisResult:
        try:
            return await self._run(session, conversation_id)
        except Exception as exc:
            await self._fail(session, conversation_id, exc)
            raise

    async def _run(self, session: AsyncSession, conversation_id: UUID) -> FullAnalysisResult:
        timer = StageTimer()
        emit = self._broadcaster.publish_stage

        conversation = await get_conversation(session, conversation_id)
        await set_analysis_status(session, conversation, AnalysisStatus.EMBEDDING)
        await emit(conversation_id, "starting")

        await emit(conversation_id, "fetching")
        async with timer.track("fetch"):
            responses = await load_responses(session, conversation_id)
        count = len(responses)
        await emit(conversation_id, "fetched", f"Found {count} responses")
        _LOGGER.info("Full analysis of conversation %s over %s responses", conversation_id, count)

        await emit(conversation_id, "embedding")
        async with timer.track("embed"):
            batch = await self._embedder.embed_texts([row.text for row in responses])
            vectors = l2_normalise(as_matrix(batch.vectors, expected_rows=count))
        await emit(conversation_id, "embedding_done")

        conversation = await set_analysis_status(session, conversation, AnalysisStatus.ANALYZING)
        await emit(conversation_id, "clustering")
        async with timer.track("cluster"):
            labels = validate_cluster_labels(await self._clusterer.cluster(vectors), count) if count else []
        async with timer.track("project"):
            coords = validate_projection(await self._projector.project_2d(vectors), count) if count else np.zeros((0, 2))

        await emit(conversation_id, "themes")
        members_by_cluster: dict[int, list[Response]] = defaultdict(list)
        for row, label in zip(responses, labels):
            members_by_cluster[label].append(row)
        themes: dict[int, ThemeName] = {}
        async with timer.track("themes"):
            for cluster_index in sorted(members_by_cluster):
                sample = evenly_spaced_sample(
                    (row.text for row in members_by_cluster[cluster_index]), self._settings.theme_sample_size
                )
                themes[cluster_index] = await self._theme_namer.name_theme(cluster_index, sample)

        await emit(conversation_id, "consolidating")
        async with timer.track("consolidate"):
            grouping = self._grouper.group(
                [
                    GroupableResponse(response_id=row.id, cluster_index=label, embedding=vector)
                    for row, label, vector in zip(responses, labels, vectors)
                ]
            )
            drafts = await self._consolidator.synthesize(grouping.groups, {row.id: row.text for row in responses})

        await emit(conversation_id, "saving")
        models = compute_cluster_models(vectors, coords, labels) if count else []
        centroids = {model.cluster_index: model.centroid for model in models}
        distances = [cosine_distance(vector, centroids[label]) for label, vector in zip(labels, vectors)]
        outlier_scores = compute_outlier_scores(
            labels, distances, min_cluster_size=self._settings.outlier_min_cluster_size
        )
        outliers = [
            responses[idx].id
            for idx in flag_outliers(
                labels,
                outlier_scores,
                threshold=self._settings.outlier_z_threshold,
                max_ratio=self._settings.outlier_max_ratio,
            )
        ]
        if outliers:
            _LOGGER.info("Conversation %s has %s outlying responses", conversation_id, len(outliers))
        async with timer.track("persist"):
            await upsert_response_embeddings(session, conversation_id, [row.id for row in responses], vectors)
            await self._store.replace(session, conversation_id, models)
            await session.execute(delete(Theme).where(Theme.conversation_id == conversation_id))
            for cluster_index, theme in themes.items():
                session.add(
                    Theme(
                        conversation_id=conversation_id,
                        cluster_index=cluster_index,
                        name=theme.name,
                        description=theme.description,
                        size=len(members_by_cluster[cluster_index]),
                    )
                )
            for row, label, point, distance, score in zip(responses, labels, coords, distances, outlier_scores):
                row.cluster_index = label
                row.x_2d = float(point[0])
                row.y_2d = float(point[1])
                row.distance_to_centroid = distance
                row.outlier_score = score
                session.add(row)
            await self._consolidator.replace(session, conversation_id, drafts)
            await session.commit()

        await emit(conversation_id, "finalizing")
        conversation = await get_conversation(session, conversation_id)
        await set_analysis_status(session, conversation, AnalysisStatus.READY, error=None, response_count=count)
        await emit(conversation_id, "complete")

        snapshot = timer.snapshot()
        _LOGGER.info(
            "Full analysis of %s complete: %s clusters, %s statements in %.1f ms",
            conversation_id,
            len(models),
            len(drafts),
            snapshot["total_duration_ms"],
        )
        return FullAnalysisResult(
            conversation_id=conversation_id,
            response_count=count,
            cluster_count=len(models),
            statement_count=len(drafts),
            flagged_clusters=list(grouping.flagged_clusters),
            outlier_response_ids=outliers,
            timings=snapshot,
        )

    async def _fail(self, session: AsyncSession, conversation_id: UUID, exc: Exception) -> None:
        message = str(exc) or exc.__class__.__name__
        _LOGGER.error("Full analysis of %s failed: %s", conversation_id, message, exc_info=exc)
        await session.rollback()
        try:
            conversation = await get_conversation(session, conversation_id)
            await set_analysis_status(session, conversation, AnalysisStatus.ERROR, error=message)
        except (SQLAlchemyError, ConversationNotFoundError) as status_exc:
            _LOGGER.error("Could not record error status for %s: %s", conversation_id, status_exc)
            await session.rollback()
            return
        await self._broadcaster.publish_status(conversation_id, AnalysisStatus.ERROR, error=message)
