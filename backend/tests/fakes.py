"""Collaborator fakes and seeding helpers shared by the test modules."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Sequence
from uuid import UUID, uuid4

import numpy as np

from hive_analysis.models import (
    AnalysisStatus,
    Conversation,
    ConversationType,
    HiveMember,
    Response,
)
from hive_analysis.services.full_analysis import FullAnalysisPipeline
from hive_analysis.services.openai_client import EmbeddingBatch, ThemeName
from hive_analysis.services.progress import ProgressBroadcaster
from hive_analysis.services.similarity import GroupingParams, SimilarityGrouper

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0)


class FakeEmbedder:
    """Returns the vector registered for each text, or a default vector."""

    def __init__(self, vectors: Optional[dict[str, Sequence[float]]] = None, default: Sequence[float] = (1.0, 0.0, 0.0)) -> None:
        self.vectors = dict(vectors or {})
        self.default = list(default)
        self.calls: list[list[str]] = []

    async def embed_texts(self, texts) -> EmbeddingBatch:
        docs = list(texts)
        self.calls.append(docs)
        vectors = [list(self.vectors.get(text, self.default)) for text in docs]
        return EmbeddingBatch(vectors=vectors, model="fake-embedding", dim=len(vectors[0]) if vectors else 0)


class FailingEmbedder:
    async def embed_texts(self, texts) -> EmbeddingBatch:
        raise RuntimeError("embedding service unavailable")


class FakeClusterer:
    def __init__(self, labels: Sequence[int]) -> None:
        self.labels = list(labels)

    async def cluster(self, vectors: np.ndarray) -> list[int]:
        return list(self.labels)


class FakeProjector:
    def __init__(self, coords: Optional[Sequence[Sequence[float]]] = None) -> None:
        self.coords = coords

    async def project_2d(self, vectors: np.ndarray) -> np.ndarray:
        if self.coords is not None:
            return np.asarray(self.coords, dtype=float)
        return np.asarray(vectors, dtype=float)[:, :2]


class FakeThemeNamer:
    def __init__(self) -> None:
        self.samples: dict[int, list[str]] = {}

    async def name_theme(self, cluster_index: int, sample_texts: Sequence[str]) -> ThemeName:
        self.samples[cluster_index] = list(sample_texts)
        return ThemeName(name=f"Cluster {cluster_index}", description=f"{len(sample_texts)} sampled")


class FakeSynthesizer:
    chat_model = "fake-chat"

    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    async def synthesize(self, texts: Sequence[str]) -> str:
        self.calls.append(list(texts))
        return " + ".join(texts)


class RecordingBroadcaster(ProgressBroadcaster):
    def __init__(self) -> None:
        super().__init__(url="")
        self.payloads: list = []

    async def publish(self, conversation_id, payload) -> bool:
        self.payloads.append(payload)
        return True

    @property
    def stages(self) -> list[str]:
        return [p.progress.progress_stage for p in self.payloads if p.progress is not None]

    @property
    def percents(self) -> list[int]:
        return [p.progress.progress_percent for p in self.payloads if p.progress is not None]


async def seed_conversation(
    session,
    texts: Sequence[str],
    *,
    conversation_type: str = ConversationType.UNDERSTAND,
    analysis_status: str = AnalysisStatus.NOT_STARTED,
    analysis_response_count: Optional[int] = None,
    admin_id: Optional[UUID] = None,
) -> tuple[Conversation, list[Response], UUID]:
    admin_id = admin_id or uuid4()
    conversation = Conversation(
        hive_id=uuid4(),
        title="What should the hive focus on next?",
        type=conversation_type,
        analysis_status=analysis_status,
        analysis_response_count=analysis_response_count,
    )
    session.add(conversation)
    session.add(HiveMember(hive_id=conversation.hive_id, user_id=admin_id, role="admin"))
    await session.commit()

    responses = await add_responses(session, conversation.id, texts)
    return conversation, responses, admin_id


async def add_responses(session, conversation_id: UUID, texts: Sequence[str], *, offset: int = 0) -> list[Response]:
    responses = [
        Response(
            conversation_id=conversation_id,
            user_id=uuid4(),
            text=text,
            created_at=BASE_TIME + timedelta(seconds=offset + idx),
        )
        for idx, text in enumerate(texts)
    ]
    session.add_all(responses)
    await session.commit()
    for response in responses:
        await session.refresh(response)
    return responses


async def add_member(session, conversation: Conversation, role: str = "member") -> UUID:
    user_id = uuid4()
    session.add(HiveMember(hive_id=conversation.hive_id, user_id=user_id, role=role))
    await session.commit()
    return user_id


SAMPLE_TEXTS = ["more parks", "quieter streets", "green parks", "night buses", "late buses", "calm streets"]
E1, E2, E3 = (1.0, 0.0, 0.0), (0.0, 1.0, 0.0), (0.0, 0.0, 1.0)
SAMPLE_VECTORS = {
    "more parks": E1,
    "quieter streets": E2,
    "green parks": E1,
    "night buses": E3,
    "late buses": E3,
    "calm streets": E2,
}
SAMPLE_LABELS = [0, 0, 0, 1, 1, 1]
SAMPLE_COORDS = [(0.0, 0.0), (2.0, 0.0), (1.0, 0.0), (10.0, 10.0), (10.0, 10.0), (10.0, 10.0)]


def build_full_pipeline(
    broadcaster=None,
    embedder=None,
    labels=SAMPLE_LABELS,
    coords=SAMPLE_COORDS,
    synthesizer=None,
    theme_namer=None,
) -> FullAnalysisPipeline:
    return FullAnalysisPipeline(
        embedder=embedder or FakeEmbedder(SAMPLE_VECTORS),
        clusterer=FakeClusterer(labels),
        projector=FakeProjector(coords),
        theme_namer=theme_namer or FakeThemeNamer(),
        synthesizer=synthesizer or FakeSynthesizer(),
        broadcaster=broadcaster or RecordingBroadcaster(),
        grouper=SimilarityGrouper(GroupingParams(threshold=0.8, min_group_size=2)),
    )
