"""Collaborator protocols consumed by the analysis pipelines.

The pipelines only depend on these shapes, so tests can inject fakes and
deployments can swap the clustering or projection method without touching
the orchestration code.
"""

from __future__ import annotations

from typing import Protocol, Sequence

import numpy as np

from hive_analysis.services.openai_client import EmbeddingBatch, ThemeName


class EmbeddingService(Protocol):
    async def embed_texts(self, texts: Sequence[str]) -> EmbeddingBatch:
        """Return one vector per input text, in input order."""


class ClusteringService(Protocol):
    async def cluster(self, vectors: np.ndarray) -> list[int]:
        """Return a 0-based contiguous cluster index per row."""


class DimensionReductionService(Protocol):
    async def project_2d(self, vectors: np.ndarray) -> np.ndarray:
        """Return an ``(n, 2)`` array aligned with the input rows."""


class ThemeNamingService(Protocol):
    async def name_theme(self, cluster_index: int, sample_texts: Sequence[str]) -> ThemeName: ...


class StatementSynthesisService(Protocol):
    chat_model: str

    async def synthesize(self, texts: Sequence[str]) -> str: ...
