"""Analysis job scheduling: staleness decisions, enqueueing, and claiming.

At most one job per conversation may be queued or running. Two mechanisms
enforce that: a partial unique index on ``conversation_analysis_jobs`` that
rejects a second active row, and a conditional UPDATE in :meth:`claim` that
lets exactly one executor move a job to ``running``.

Classes:
    TriggerResult: Outcome of a trigger call (queued, already running, already complete).
    ClaimResult: Outcome of a claim attempt.
    AutoAnalysisResult: Outcome of the post-submission auto trigger.
    AnalysisJobScheduler: Trigger, claim and finish analysis jobs.

Functions:
    maybe_enqueue_auto_analysis(session, conversation_id, user_id, ...): Enqueue once enough responses arrive.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from hive_analysis.core.config import Settings, get_settings
from hive_analysis.core.errors import AnalysisAuthorizationError
from hive_analysis.models import (
    AnalysisJob,
    AnalysisStatus,
    Conversation,
    ConversationType,
    JobStatus,
    JobStrategy,
)
from hive_analysis.schemas import (
    TriggerAnalysisRequest,
    TriggerAnalysisResponse,
    TriggerMode,
    TriggerStrategy,
)
from hive_analysis.services.cluster_models import ClusterModelStore
from hive_analysis.services.conversations import authorize_member, count_responses, get_conversation

_LOGGER = logging.getLogger(__name__)

NOT_CLAIMABLE = "not_queued_or_locked"


@dataclass(slots=True)
class TriggerResult:
    status: str
    current_response_count: int
    analysis_response_count: Optional[int] = None
    strategy: Optional[str] = None
    reason: Optional[str] = None
    new_responses_since_analysis: Optional[int] = None
    job_id: Optional[UUID] = None

    def to_response(self) -> TriggerAnalysisResponse:
        return TriggerAnalysisResponse(
            status=self.status,
            strategy=self.strategy,
            reason=self.reason,
            current_response_count=self.current_response_count,
            analysis_response_count=self.analysis_response_count,
            new_responses_since_analysis=self.new_responses_since_analysis,
            job_id=self.job_id,
        )


@dataclass(slots=True)
class ClaimResult:
    claimed: bool
    job: Optional[AnalysisJob] = None
    reason: Optional[str] = None


@dataclass(slots=True)
class AutoAnalysisResult:
    triggered: bool
    status: str
    reason: Optional[str] = None
    job_id: Optional[UUID] = None
    strategy: Optional[str] = None


def _claimable_clause(cutoff: datetime):
    return or_(
        and_(AnalysisJob.status == JobStatus.QUEUED, AnalysisJob.locked_at.is_(None)),
        and_(AnalysisJob.status.in_(JobStatus.ACTIVE), AnalysisJob.locked_at < cutoff),
        and_(AnalysisJob.status == JobStatus.RUNNING, AnalysisJob.locked_at.is_(None)),
    )


class AnalysisJobScheduler:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        store: Optional[ClusterModelStore] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store or ClusterModelStore()
        self._clock = clock

    def job_age_minutes(self, job: AnalysisJob, now: datetime) -> float:
        """Queued jobs age from creation; running jobs age from their lock."""

        if job.status == JobStatus.RUNNING:
            reference = job.locked_at or job.created_at
        else:
            reference = job.created_at
        return (now - reference).total_seconds() / 60.0

    def is_stale_job(self, job: AnalysisJob, now: datetime) -> bool:
        ttl = (
            self._settings.running_job_ttl_minutes
            if job.status == JobStatus.RUNNING
            else self._settings.queued_job_ttl_minutes
        )
        return self.job_age_minutes(job, now) > ttl

    def decide_strategy(
        self,
        request: TriggerAnalysisRequest,
        *,
        conversation_stale: bool,
        new_count: int,
        has_models: bool,
    ) -> str:
        if request.strategy == TriggerStrategy.INCREMENTAL:
            return JobStrategy.INCREMENTAL
        if request.strategy == TriggerStrategy.FULL:
            return JobStrategy.FULL
        if request.mode == TriggerMode.REGENERATE:
            return JobStrategy.FULL
        if conversation_stale and 0 < new_count < self._settings.incremental_threshold and has_models:
            return JobStrategy.INCREMENTAL
        return JobStrategy.FULL

    async def trigger(
        self,
        session: AsyncSession,
        conversation_id: UUID,
        user_id: UUID,
        request: Optional[TriggerAnalysisRequest] = None,
        *,
        require_admin: bool = False,
    ) -> TriggerResult:
        request = request or TriggerAnalysisRequest()
        conversation = await get_conversation(session, conversation_id)
        await authorize_member(session, conversation, user_id, require_admin=require_admin)

        current = await count_responses(session, conversation_id)
        analyzed = conversation.analysis_response_count

        if conversation.type != ConversationType.UNDERSTAND:
            return TriggerResult(
                status="already_complete",
                reason="wrong_type",
                current_response_count=current,
                analysis_response_count=analyzed,
            )
        if current < self._settings.analysis_min_responses:
            return TriggerResult(
                status="already_complete",
                reason="below_threshold",
                current_response_count=current,
                analysis_response_count=analyzed,
            )

        is_ready = conversation.analysis_status == AnalysisStatus.READY
        new_count = max(0, current - (analyzed or 0))
        is_fresh = is_ready and (analyzed or 0) >= current
        if is_fresh and request.mode != TriggerMode.REGENERATE:
            return TriggerResult(
                status="already_complete",
                reason="fresh",
                current_response_count=current,
                analysis_response_count=analyzed,
                new_responses_since_analysis=0,
            )

        now = self._clock()
        active = await self._active_job(session, conversation_id)
        if active is not None:
            stale = self.is_stale_job(active, now)
            if not stale and request.mode != TriggerMode.REGENERATE:
                return TriggerResult(
                    status="already_running",
                    reason="in_progress",
                    current_response_count=current,
                    analysis_response_count=analyzed,
                    new_responses_since_analysis=new_count,
                    job_id=active.id,
                )
            if stale:
                message = (
                    f"stale_job_retired (age={int(self.job_age_minutes(active, now))}min, mode={request.mode.value})"
                )
            else:
                message = "superseded by regenerate request"
            await self._retire(session, active.id, message, now)

        conversation_stale = is_ready and new_count > 0
        has_models = await self._store.has_models(session, conversation_id)
        strategy = self.decide_strategy(
            request, conversation_stale=conversation_stale, new_count=new_count, has_models=has_models
        )

        job = AnalysisJob(
            conversation_id=conversation_id,
            status=JobStatus.QUEUED,
            strategy=strategy,
            created_by=user_id,
            created_at=now,
            updated_at=now,
        )
        session.add(job)
        conversation.analysis_status = AnalysisStatus.NOT_STARTED
        conversation.analysis_error = None
        session.add(conversation)
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            _LOGGER.info("Concurrent trigger for %s lost the enqueue race", conversation_id)
            return TriggerResult(
                status="already_running",
                reason="in_progress",
                current_response_count=current,
                analysis_response_count=analyzed,
                new_responses_since_analysis=new_count,
            )

        _LOGGER.info("Queued %s analysis job %s for conversation %s", strategy, job.id, conversation_id)
        return TriggerResult(
            status="queued",
            strategy=strategy,
            reason="stale" if conversation_stale else None,
            current_response_count=current,
            analysis_response_count=analyzed,
            new_responses_since_analysis=new_count,
            job_id=job.id,
        )

    async def claim(
        self,
        session: AsyncSession,
        job_id: UUID,
        lock_ttl: Optional[timedelta] = None,
    ) -> ClaimResult:
        """Atomically take ownership of a job; only one caller can succeed."""

        ttl = lock_ttl or timedelta(minutes=self._settings.job_lock_ttl_minutes)
        now = self._clock()
        stmt = (
            update(AnalysisJob)
            .where(AnalysisJob.id == job_id, _claimable_clause(now - ttl))
            .values(
                status=JobStatus.RUNNING,
                locked_at=now,
                attempts=AnalysisJob.attempts + 1,
                updated_at=now,
            )
        )
        result = await session.execute(stmt)
        await session.commit()
        if result.rowcount != 1:
            _LOGGER.info("Job %s was not claimable", job_id)
            return ClaimResult(claimed=False, reason=NOT_CLAIMABLE)

        job = await session.get(AnalysisJob, job_id, populate_existing=True)
        _LOGGER.info("Claimed job %s (attempt %s)", job_id, job.attempts if job else "?")
        return ClaimResult(claimed=True, job=job)

    async def mark_succeeded(self, session: AsyncSession, job_id: UUID) -> bool:
        return await self._finish(session, job_id, JobStatus.SUCCEEDED, None)

    async def mark_failed(self, session: AsyncSession, job_id: UUID, error: str) -> bool:
        return await self._finish(session, job_id, JobStatus.FAILED, error)

    async def find_claimable_job(self, session: AsyncSession, lock_ttl: Optional[timedelta] = None) -> Optional[UUID]:
        ttl = lock_ttl or timedelta(minutes=self._settings.job_lock_ttl_minutes)
        result = await session.exec(
            select(AnalysisJob.id)
            .where(_claimable_clause(self._clock() - ttl))
            .order_by(AnalysisJob.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _active_job(self, session: AsyncSession, conversation_id: UUID) -> Optional[AnalysisJob]:
        result = await session.exec(
            select(AnalysisJob)
            .where(AnalysisJob.conversation_id == conversation_id, AnalysisJob.status.in_(JobStatus.ACTIVE))
            .order_by(AnalysisJob.created_at.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def _retire(self, session: AsyncSession, job_id: UUID, message: str, now: datetime) -> None:
        await session.execute(
            update(AnalysisJob)
            .where(AnalysisJob.id == job_id, AnalysisJob.status.in_(JobStatus.ACTIVE))
            .values(status=JobStatus.FAILED, last_error=message, locked_at=None, updated_at=now)
        )
        await session.commit()
        _LOGGER.info("Retired job %s: %s", job_id, message)

    async def _finish(self, session: AsyncSession, job_id: UUID, status: str, error: Optional[str]) -> bool:
        now = self._clock()
        result = await session.execute(
            update(AnalysisJob)
            .where(AnalysisJob.id == job_id, AnalysisJob.status == JobStatus.RUNNING)
            .values(status=status, last_error=error, locked_at=None, updated_at=now)
        )
        await session.commit()
        if result.rowcount != 1:
            _LOGGER.warning("Job %s is no longer running; %s not recorded", job_id, status)
            return False
        return True


async def maybe_enqueue_auto_analysis(
    session: AsyncSession,
    conversation_id: UUID,
    user_id: UUID,
    *,
    scheduler: Optional[AnalysisJobScheduler] = None,
    threshold: Optional[int] = None,
) -> AutoAnalysisResult:
    """Enqueue analysis after a response is stored, once the conversation qualifies."""

    scheduler = scheduler or AnalysisJobScheduler()
    minimum = threshold if threshold is not None else get_settings().analysis_min_responses

    conversation = await session.get(Conversation, conversation_id, populate_existing=True)
    if conversation is None:
        return AutoAnalysisResult(triggered=False, status="skipped", reason="not_found")
    if conversation.type != ConversationType.UNDERSTAND:
        return AutoAnalysisResult(triggered=False, status="skipped", reason="wrong_type")

    current = await count_responses(session, conversation_id)
    if current < minimum:
        return AutoAnalysisResult(triggered=False, status="skipped", reason="below_threshold")
    if conversation.analysis_status == AnalysisStatus.READY and (conversation.analysis_response_count or 0) >= current:
        return AutoAnalysisResult(triggered=False, status="already_complete", reason="fresh")

    try:
        result = await scheduler.trigger(session, conversation_id, user_id, TriggerAnalysisRequest())
    except AnalysisAuthorizationError:
        return AutoAnalysisResult(triggered=False, status="skipped", reason="not_member")
    except SQLAlchemyError:
        _LOGGER.exception("Auto analysis enqueue failed for %s", conversation_id)
        await session.rollback()
        return AutoAnalysisResult(triggered=False, status="skipped", reason="enqueue_failed")

    return AutoAnalysisResult(
        triggered=result.status == "queued",
        status=result.status,
        reason=result.reason,
        job_id=result.job_id,
        strategy=result.strategy,
    )
