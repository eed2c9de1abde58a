import numpy as np
import pytest
from sqlalchemy import select

from hive_analysis.core.errors import IncrementalPrerequisiteError
from hive_analysis.models import AnalysisStatus, Conversation, Response, ResponseEmbedding, Theme
from hive_analysis.services.cluster_models import ClusterModelStore
from hive_analysis.services.incremental_analysis import IncrementalAnalysisPipeline

from .fakes import (
    SAMPLE_TEXTS as TEXTS,
    SAMPLE_VECTORS as VECTORS,
    FakeEmbedder,
    RecordingBroadcaster,
    add_responses,
    build_full_pipeline as _pipeline,
    seed_conversation,
)

NEW_VECTORS = {**VECTORS, "more trees in parks": (0.9, 0.1, 0.0), "weekend buses": (0.0, 0.2, 0.9)}


async def _analysed_conversation(session):
    conversation, _, _ = await seed_conversation(session, TEXTS)
    await _pipeline().run(session, conversation.id)
    return conversation


@pytest.mark.asyncio
async def test_new_responses_join_nearest_cluster(session):
    conversation = await _analysed_conversation(session)
    models_before = await ClusterModelStore().load(session, conversation.id)
    new_rows = await add_responses(session, conversation.id, ["more trees in parks", "weekend buses"], offset=100)
    embedder = FakeEmbedder(NEW_VECTORS)
    broadcaster = RecordingBroadcaster()

    result = await IncrementalAnalysisPipeline(
        embedder=embedder, broadcaster=broadcaster, rng=np.random.default_rng(3)
    ).run(session, conversation.id)

    assert embedder.calls == [["more trees in parks", "weekend buses"]]
    assert result.assignments == {new_rows[0].id: 0, new_rows[1].id: 1}
    assert result.analyzed_count == 8

    stored = await session.get(Conversation, conversation.id, populate_existing=True)
    assert stored.analysis_status == AnalysisStatus.READY
    assert stored.analysis_response_count == 8

    placed = (
        await session.exec(
            select(Response).where(Response.id.in_([row.id for row in new_rows])).order_by(Response.id)
        )
    ).scalars().all()
    first, second = placed
    assert np.hypot(first.x_2d - 1.0, first.y_2d - 0.0) <= 1.1 + 1e-9
    assert np.hypot(second.x_2d - 10.0, second.y_2d - 10.0) <= 0.1 + 1e-9
    assert first.distance_to_centroid is not None

    themes = (
        await session.exec(select(Theme).where(Theme.conversation_id == conversation.id).order_by(Theme.cluster_index))
    ).scalars().all()
    assert [theme.size for theme in themes] == [4, 4]

    stored_embeddings = (
        await session.exec(select(ResponseEmbedding).where(ResponseEmbedding.conversation_id == conversation.id))
    ).scalars().all()
    assert len(stored_embeddings) == 8

    models_after = await ClusterModelStore().load(session, conversation.id)
    for before, after in zip(models_before, models_after):
        np.testing.assert_allclose(before.centroid, after.centroid)
        assert before.spread_radius == after.spread_radius

    assert broadcaster.stages[-1] == "complete"
    assert broadcaster.percents == sorted(broadcaster.percents)


@pytest.mark.asyncio
async def test_no_new_responses_still_marks_ready(session):
    conversation = await _analysed_conversation(session)
    embedder = FakeEmbedder(VECTORS)

    result = await IncrementalAnalysisPipeline(embedder=embedder, broadcaster=RecordingBroadcaster()).run(
        session, conversation.id
    )

    assert result.assigned_count == 0
    assert embedder.calls == []
    stored = await session.get(Conversation, conversation.id, populate_existing=True)
    assert stored.analysis_status == AnalysisStatus.READY


@pytest.mark.asyncio
async def test_missing_models_fail_with_error_status(session):
    conversation, _, _ = await seed_conversation(session, TEXTS)
    broadcaster = RecordingBroadcaster()

    with pytest.raises(IncrementalPrerequisiteError):
        await IncrementalAnalysisPipeline(embedder=FakeEmbedder(VECTORS), broadcaster=broadcaster).run(
            session, conversation.id
        )

    stored = await session.get(Conversation, conversation.id, populate_existing=True)
    assert stored.analysis_status == AnalysisStatus.ERROR
    assert "full analysis" in stored.analysis_error
    assert broadcaster.payloads[-1].analysis_status == AnalysisStatus.ERROR


@pytest.mark.asyncio
async def test_dimension_mismatch_is_rejected(session):
    conversation = await _analysed_conversation(session)
    await add_responses(session, conversation.id, ["four dimensional"], offset=100)

    with pytest.raises(IncrementalPrerequisiteError):
        await IncrementalAnalysisPipeline(
            embedder=FakeEmbedder(default=(1.0, 0.0, 0.0, 0.0)), broadcaster=RecordingBroadcaster()
        ).run(session, conversation.id)

    unassigned = (
        await session.exec(select(Response).where(Response.text == "four dimensional"))
    ).scalars().one()
    assert unassigned.cluster_index is None
