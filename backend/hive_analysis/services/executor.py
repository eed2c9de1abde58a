"""Claim-and-run execution of analysis jobs.

Classes:
    AnalysisJobExecutor: Claims one job in its own session and runs the pipeline for its strategy.

Functions:
    build_default_executor(): Executor wired to the OpenAI, KMeans and UMAP collaborators.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Callable, Optional
from uuid import UUID

from sqlmodel.ext.asyncio.session import AsyncSession

from hive_analysis.core.config import Settings, get_settings
from hive_analysis.models import JobStrategy
from hive_analysis.services.full_analysis import FullAnalysisPipeline
from hive_analysis.services.incremental_analysis import IncrementalAnalysisPipeline
from hive_analysis.services.scheduler import AnalysisJobScheduler

_LOGGER = logging.getLogger(__name__)


class ExecutionOutcome(str):
    NOT_CLAIMED = "not_claimed"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SUPERSEDED = "superseded"


class AnalysisJobExecutor:
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        *,
        full_pipeline: FullAnalysisPipeline,
        incremental_pipeline: IncrementalAnalysisPipeline,
        scheduler: Optional[AnalysisJobScheduler] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._session_factory = session_factory
        self._full = full_pipeline
        self._incremental = incremental_pipeline
        self._scheduler = scheduler or AnalysisJobScheduler(self._settings)

    async def execute(self, job_id: UUID) -> str:
        lock_ttl = timedelta(minutes=self._settings.job_lock_ttl_minutes)
        async with self._session_factory() as session:
            claim = await self._scheduler.claim(session, job_id, lock_ttl)
            if not claim.claimed or claim.job is None:
                _LOGGER.info("Skipping job %s: %s", job_id, claim.reason)
                return ExecutionOutcome.NOT_CLAIMED

            job = claim.job
            conversation_id = job.conversation_id
            strategy = job.strategy
            _LOGGER.info("Running %s analysis job %s for conversation %s", strategy, job_id, conversation_id)
            try:
                if strategy == JobStrategy.INCREMENTAL:
                    await self._incremental.run(session, conversation_id)
                else:
                    await self._full.run(session, conversation_id)
            except Exception as exc:
                # pipelines record the conversation error themselves; only the job row is left
                await session.rollback()
                await self._scheduler.mark_failed(session, job_id, str(exc) or exc.__class__.__name__)
                _LOGGER.error("Analysis job %s failed", job_id)
                return ExecutionOutcome.FAILED

            if await self._scheduler.mark_succeeded(session, job_id):
                return ExecutionOutcome.SUCCEEDED
            _LOGGER.warning("Analysis job %s was superseded while running; result kept, job state untouched", job_id)
            return ExecutionOutcome.SUPERSEDED


def build_default_executor(session_factory: Optional[Callable[[], AsyncSession]] = None) -> AnalysisJobExecutor:
    from hive_analysis.services.openai_client import OpenAIService
    from hive_analysis.services.progress import ProgressBroadcaster
    from hive_analysis.services.projection import KMeansClusteringService, UMAPProjectionService

    if session_factory is None:
        from hive_analysis.db.session import SessionLocal

        session_factory = SessionLocal

    openai_service = OpenAIService()
    broadcaster = ProgressBroadcaster()
    full = FullAnalysisPipeline(
        embedder=openai_service,
        clusterer=KMeansClusteringService(),
        projector=UMAPProjectionService(),
        theme_namer=openai_service,
        synthesizer=openai_service,
        broadcaster=broadcaster,
    )
    incremental = IncrementalAnalysisPipeline(embedder=openai_service, broadcaster=broadcaster)
    return AnalysisJobExecutor(session_factory, full_pipeline=full, incremental_pipeline=incremental)
