import asyncio
from datetime import datetime, timedelta
from uuid import uuid4

import numpy as np
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from hive_analysis.core.errors import AnalysisAuthorizationError, ConversationNotFoundError
from hive_analysis.models import AnalysisJob, AnalysisStatus, Conversation, ConversationType, JobStatus, JobStrategy
from hive_analysis.schemas import TriggerAnalysisRequest, TriggerMode, TriggerStrategy
from hive_analysis.services.cluster_models import ClusterModelDraft, ClusterModelStore
from hive_analysis.services.scheduler import NOT_CLAIMABLE, AnalysisJobScheduler, maybe_enqueue_auto_analysis

from .fakes import add_member, add_responses, seed_conversation

NOW = datetime(2024, 6, 1, 9, 0, 0)
TWENTY = [f"idea {idx}" for idx in range(20)]


def _scheduler() -> AnalysisJobScheduler:
    return AnalysisJobScheduler(clock=lambda: NOW)


async def _store_models(session, conversation_id) -> None:
    draft = ClusterModelDraft(
        cluster_index=0, centroid=np.array([1.0, 0.0]), centroid_x=0.0, centroid_y=0.0, spread_radius=1.0
    )
    await ClusterModelStore().replace(session, conversation_id, [draft], commit=True)


async def _insert_job(session, conversation_id, status, *, age_minutes=0, locked_minutes=None) -> AnalysisJob:
    job = AnalysisJob(
        conversation_id=conversation_id,
        status=status,
        strategy=JobStrategy.FULL,
        created_by=uuid4(),
        created_at=NOW - timedelta(minutes=age_minutes),
        updated_at=NOW - timedelta(minutes=age_minutes),
        locked_at=None if locked_minutes is None else NOW - timedelta(minutes=locked_minutes),
    )
    session.add(job)
    await session.commit()
    return job


async def _jobs(session, conversation_id) -> list[AnalysisJob]:
    result = await session.exec(
        select(AnalysisJob)
        .where(AnalysisJob.conversation_id == conversation_id)
        .order_by(AnalysisJob.created_at)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_trigger_queues_full_job_for_new_conversation(session):
    conversation, _, admin_id = await seed_conversation(session, TWENTY)

    result = await _scheduler().trigger(session, conversation.id, admin_id, require_admin=True)

    assert (result.status, result.strategy, result.reason) == ("queued", JobStrategy.FULL, None)
    assert result.current_response_count == 20
    assert result.new_responses_since_analysis == 20
    jobs = await _jobs(session, conversation.id)
    assert [(job.id, job.status, job.created_by) for job in jobs] == [(result.job_id, JobStatus.QUEUED, admin_id)]
    stored = await session.get(Conversation, conversation.id, populate_existing=True)
    assert stored.analysis_status == AnalysisStatus.NOT_STARTED


@pytest.mark.asyncio
async def test_trigger_short_circuits(session):
    scheduler = _scheduler()

    decide, _, decide_admin = await seed_conversation(session, TWENTY, conversation_type=ConversationType.DECIDE)
    result = await scheduler.trigger(session, decide.id, decide_admin)
    assert (result.status, result.reason) == ("already_complete", "wrong_type")

    small, _, small_admin = await seed_conversation(session, TWENTY[:19])
    result = await scheduler.trigger(session, small.id, small_admin)
    assert (result.status, result.reason, result.current_response_count) == ("already_complete", "below_threshold", 19)

    fresh, _, fresh_admin = await seed_conversation(
        session, TWENTY, analysis_status=AnalysisStatus.READY, analysis_response_count=20
    )
    result = await scheduler.trigger(session, fresh.id, fresh_admin)
    assert (result.status, result.reason, result.new_responses_since_analysis) == ("already_complete", "fresh", 0)

    for conversation in (decide, small, fresh):
        assert await _jobs(session, conversation.id) == []


@pytest.mark.asyncio
async def test_trigger_reports_active_job(session):
    conversation, _, admin_id = await seed_conversation(session, TWENTY)
    scheduler = _scheduler()
    first = await scheduler.trigger(session, conversation.id, admin_id)

    second = await scheduler.trigger(session, conversation.id, admin_id)

    assert (second.status, second.reason, second.job_id) == ("already_running", "in_progress", first.job_id)
    assert second.new_responses_since_analysis == 20
    assert len(await _jobs(session, conversation.id)) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("current", "with_models", "expected"),
    [(25, True, JobStrategy.INCREMENTAL), (35, True, JobStrategy.FULL), (25, False, JobStrategy.FULL)],
)
async def test_auto_strategy_depends_on_new_responses_and_models(session, current, with_models, expected):
    conversation, _, admin_id = await seed_conversation(
        session, TWENTY, analysis_status=AnalysisStatus.READY, analysis_response_count=20
    )
    await add_responses(session, conversation.id, [f"late idea {idx}" for idx in range(current - 20)], offset=100)
    if with_models:
        await _store_models(session, conversation.id)

    result = await _scheduler().trigger(session, conversation.id, admin_id)

    assert (result.status, result.strategy, result.reason) == ("queued", expected, "stale")
    assert result.new_responses_since_analysis == current - 20
    assert result.analysis_response_count == 20


@pytest.mark.asyncio
async def test_explicit_strategy_and_regenerate(session):
    conversation, _, admin_id = await seed_conversation(
        session, TWENTY, analysis_status=AnalysisStatus.READY, analysis_response_count=20
    )
    await _store_models(session, conversation.id)
    scheduler = _scheduler()

    regenerate = await scheduler.trigger(
        session, conversation.id, admin_id, TriggerAnalysisRequest(mode=TriggerMode.REGENERATE)
    )
    assert (regenerate.status, regenerate.strategy) == ("queued", JobStrategy.FULL)

    # a regenerate request supersedes the job that is still queued
    forced = await scheduler.trigger(
        session,
        conversation.id,
        admin_id,
        TriggerAnalysisRequest(mode=TriggerMode.REGENERATE, strategy=TriggerStrategy.INCREMENTAL),
    )
    assert (forced.status, forced.strategy) == ("queued", JobStrategy.INCREMENTAL)

    jobs = {job.id: job for job in await _jobs(session, conversation.id)}
    assert jobs[regenerate.job_id].status == JobStatus.FAILED
    assert jobs[regenerate.job_id].last_error == "superseded by regenerate request"
    assert jobs[forced.job_id].status == JobStatus.QUEUED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "age", "locked", "expected_error"),
    [
        (JobStatus.QUEUED, 61, None, "stale_job_retired (age=61min, mode=manual)"),
        (JobStatus.RUNNING, 90, 31, "stale_job_retired (age=31min, mode=manual)"),
    ],
)
async def test_stale_jobs_are_retired_before_enqueue(session, status, age, locked, expected_error):
    conversation, _, admin_id = await seed_conversation(session, TWENTY)
    stale = await _insert_job(session, conversation.id, status, age_minutes=age, locked_minutes=locked)

    result = await _scheduler().trigger(session, conversation.id, admin_id)

    assert result.status == "queued"
    jobs = {job.id: job for job in await _jobs(session, conversation.id)}
    assert jobs[stale.id].status == JobStatus.FAILED
    assert jobs[stale.id].last_error == expected_error
    assert jobs[stale.id].locked_at is None
    assert jobs[result.job_id].status == JobStatus.QUEUED


@pytest.mark.asyncio
async def test_running_job_within_ttl_blocks_trigger(session):
    conversation, _, admin_id = await seed_conversation(session, TWENTY)
    running = await _insert_job(session, conversation.id, JobStatus.RUNNING, age_minutes=120, locked_minutes=10)

    result = await _scheduler().trigger(session, conversation.id, admin_id)

    assert (result.status, result.job_id) == ("already_running", running.id)


@pytest.mark.asyncio
async def test_lost_enqueue_race_reports_in_progress(session, monkeypatch):
    conversation, _, admin_id = await seed_conversation(session, TWENTY)
    await _insert_job(session, conversation.id, JobStatus.QUEUED)
    scheduler = _scheduler()

    async def _no_active_job(*args, **kwargs):
        return None

    monkeypatch.setattr(scheduler, "_active_job", _no_active_job)

    result = await scheduler.trigger(session, conversation.id, admin_id)

    assert (result.status, result.reason, result.job_id) == ("already_running", "in_progress", None)
    assert len(await _jobs(session, conversation.id)) == 1


@pytest.mark.asyncio
async def test_trigger_authorisation(session):
    conversation, _, _ = await seed_conversation(session, TWENTY)
    member_id = await add_member(session, conversation)
    scheduler = _scheduler()

    with pytest.raises(AnalysisAuthorizationError):
        await scheduler.trigger(session, conversation.id, uuid4())
    with pytest.raises(AnalysisAuthorizationError):
        await scheduler.trigger(session, conversation.id, member_id, require_admin=True)
    with pytest.raises(ConversationNotFoundError):
        await scheduler.trigger(session, uuid4(), member_id)

    result = await scheduler.trigger(session, conversation.id, member_id)
    assert result.status == "queued"


@pytest.mark.asyncio
async def test_claim_semantics(session):
    conversation, _, _ = await seed_conversation(session, TWENTY)
    job = await _insert_job(session, conversation.id, JobStatus.QUEUED)
    scheduler = _scheduler()

    first = await scheduler.claim(session, job.id)
    assert first.claimed
    assert (first.job.status, first.job.attempts, first.job.locked_at) == (JobStatus.RUNNING, 1, NOW)

    second = await scheduler.claim(session, job.id)
    assert (second.claimed, second.reason) == (False, NOT_CLAIMABLE)

    # a lock older than the TTL can be taken over
    later = AnalysisJobScheduler(clock=lambda: NOW + timedelta(minutes=31))
    takeover = await later.claim(session, job.id)
    assert takeover.claimed
    assert takeover.job.attempts == 2

    assert await later.mark_succeeded(session, job.id)
    assert not await later.mark_failed(session, job.id, "too late")
    assert not (await later.claim(session, job.id)).claimed

    finished = (await _jobs(session, conversation.id))[0]
    assert (finished.status, finished.last_error, finished.locked_at) == (JobStatus.SUCCEEDED, None, None)


@pytest.mark.asyncio
async def test_find_claimable_job_returns_oldest(session):
    first, _, _ = await seed_conversation(session, TWENTY)
    second, _, _ = await seed_conversation(session, TWENTY)
    older = await _insert_job(session, second.id, JobStatus.QUEUED, age_minutes=5)
    await _insert_job(session, first.id, JobStatus.QUEUED, age_minutes=1)
    scheduler = _scheduler()

    assert await scheduler.find_claimable_job(session) == older.id
    await scheduler.claim(session, older.id)
    assert await scheduler.find_claimable_job(session) != older.id


@pytest.mark.asyncio
async def test_concurrent_claims_have_one_winner(file_engine):
    factory = async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as setup:
        conversation, _, _ = await seed_conversation(setup, TWENTY)
        job = await _insert_job(setup, conversation.id, JobStatus.QUEUED)

    scheduler = _scheduler()

    async def _claim():
        async with factory() as claim_session:
            return await scheduler.claim(claim_session, job.id)

    results = await asyncio.gather(*(_claim() for _ in range(4)))

    assert sum(result.claimed for result in results) == 1
    async with factory() as check:
        stored = await check.get(AnalysisJob, job.id)
        assert (stored.status, stored.attempts) == (JobStatus.RUNNING, 1)


@pytest.mark.asyncio
async def test_auto_enqueue_outcomes(session):
    missing = await maybe_enqueue_auto_analysis(session, uuid4(), uuid4())
    assert (missing.triggered, missing.status, missing.reason) == (False, "skipped", "not_found")

    decide, _, decide_admin = await seed_conversation(session, TWENTY, conversation_type=ConversationType.DECIDE)
    result = await maybe_enqueue_auto_analysis(session, decide.id, decide_admin)
    assert (result.status, result.reason) == ("skipped", "wrong_type")

    conversation, _, _ = await seed_conversation(session, TWENTY[:19])
    member_id = await add_member(session, conversation)
    result = await maybe_enqueue_auto_analysis(session, conversation.id, member_id)
    assert (result.status, result.reason) == ("skipped", "below_threshold")

    await add_responses(session, conversation.id, ["the twentieth idea"], offset=100)
    outsider = await maybe_enqueue_auto_analysis(session, conversation.id, uuid4())
    assert (outsider.status, outsider.reason) == ("skipped", "not_member")

    queued = await maybe_enqueue_auto_analysis(session, conversation.id, member_id, scheduler=_scheduler())
    assert (queued.triggered, queued.status, queued.strategy) == (True, "queued", JobStrategy.FULL)
    assert queued.job_id is not None

    again = await maybe_enqueue_auto_analysis(session, conversation.id, member_id, scheduler=_scheduler())
    assert (again.triggered, again.status, again.reason) == (False, "already_running", "in_progress")

    fresh, _, fresh_admin = await seed_conversation(
        session, TWENTY, analysis_status=AnalysisStatus.READY, analysis_response_count=20
    )
    result = await maybe_enqueue_auto_analysis(session, fresh.id, fresh_admin)
    assert (result.status, result.reason) == ("already_complete", "fresh")
