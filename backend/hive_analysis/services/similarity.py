"""Near-duplicate grouping of responses within each cluster.

Two responses in the same cluster are linked when their cosine similarity
reaches the threshold; each connected component of the resulting graph with
at least ``min_group_size`` members becomes a "frequently mentioned" group.

Classes:
    GroupingParams: Threshold, minimum group size and algorithm version.
    GroupableResponse: Response id, cluster index and embedding fed to the grouper.
    SimilarityGroup: One group with its representative and ordered member ids.
    GroupingResult: All groups plus the clusters flagged as large.
    SimilarityGrouper: Runs the per-cluster grouping.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import numpy as np

from hive_analysis.core.config import get_settings
from hive_analysis.utils.vectors import l2_normalise

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class GroupingParams:
    threshold: float = 0.80
    min_group_size: int = 2
    large_cluster_warning: int = 300
    algorithm_version: str = "v1.1"

    @classmethod
    def from_settings(cls) -> "GroupingParams":
        settings = get_settings()
        return cls(
            threshold=settings.similarity_threshold,
            min_group_size=settings.similarity_min_group_size,
            large_cluster_warning=settings.similarity_large_cluster_warning,
            algorithm_version=settings.similarity_algorithm_version,
        )

    def as_json(self) -> dict[str, Any]:
        return {
            "sim_threshold": self.threshold,
            "min_group_size": self.min_group_size,
            "algorithm_version": self.algorithm_version,
        }


@dataclass(slots=True)
class GroupableResponse:
    response_id: int
    cluster_index: Optional[int]
    embedding: np.ndarray


@dataclass(slots=True)
class SimilarityGroup:
    cluster_index: int
    representative_id: int
    member_ids: list[int]

    @property
    def size(self) -> int:
        return len(self.member_ids)


@dataclass(slots=True)
class GroupingResult:
    groups: list[SimilarityGroup] = field(default_factory=list)
    flagged_clusters: list[int] = field(default_factory=list)


class SimilarityGrouper:
    def __init__(self, params: GroupingParams | None = None) -> None:
        self.params = params or GroupingParams.from_settings()

    def group(self, responses: Sequence[GroupableResponse]) -> GroupingResult:
        by_cluster: dict[int, list[GroupableResponse]] = defaultdict(list)
        for response in responses:
            if response.cluster_index is None:
                continue
            by_cluster[response.cluster_index].append(response)

        result = GroupingResult()
        for cluster_index in sorted(by_cluster):
            members = by_cluster[cluster_index]
            if len(members) > self.params.large_cluster_warning:
                _LOGGER.warning(
                    "Cluster %s has %s responses; pairwise grouping is quadratic above %s",
                    cluster_index,
                    len(members),
                    self.params.large_cluster_warning,
                )
                result.flagged_clusters.append(cluster_index)
            result.groups.extend(self._group_cluster(cluster_index, members))
        return result

    def _group_cluster(self, cluster_index: int, members: list[GroupableResponse]) -> list[SimilarityGroup]:
        if len(members) < self.params.min_group_size:
            return []

        matrix = l2_normalise(np.vstack([np.asarray(item.embedding, dtype=float) for item in members]))
        similarity = matrix @ matrix.T
        adjacency = similarity >= self.params.threshold
        np.fill_diagonal(adjacency, False)

        groups: list[SimilarityGroup] = []
        for component in _connected_components(adjacency):
            if len(component) < self.params.min_group_size:
                continue
            rep_position = _representative(matrix[component])
            groups.append(
                SimilarityGroup(
                    cluster_index=cluster_index,
                    representative_id=members[component[rep_position]].response_id,
                    member_ids=[members[idx].response_id for idx in component],
                )
            )
        return groups


def _connected_components(adjacency: np.ndarray) -> list[list[int]]:
    """Components via iterative DFS; each list is sorted, lists ordered by first member."""

    n = adjacency.shape[0]
    visited = np.zeros(n, dtype=bool)
    components: list[list[int]] = []
    for start in range(n):
        if visited[start]:
            continue
        component: list[int] = []
        stack = [start]
        while stack:
            node = stack.pop()
            if visited[node]:
                continue
            visited[node] = True
            component.append(node)
            stack.extend(int(idx) for idx in np.flatnonzero(adjacency[node]) if not visited[idx])
        components.append(sorted(component))
    return components


def _representative(unit_vectors: np.ndarray) -> int:
    centroid = unit_vectors.mean(axis=0)
    norm = float(np.linalg.norm(centroid))
    if norm == 0.0:
        return 0
    scores = unit_vectors @ (centroid / norm)
    # argmax returns the first maximum, so earlier members win ties.
    return int(np.argmax(scores))
