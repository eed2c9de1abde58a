"""Default clustering and 2D projection collaborators.

Classes:
    KMeansClusteringService: k-means with the elbow heuristic; labels ordered by cluster size.
    UMAPProjectionService: UMAP layout with a PCA fallback for very small inputs.

Functions:
    choose_cluster_count(inertias, k_values): Pick k at the elbow of an inertia curve.
    relabel_by_size(labels): Renumber labels so the largest cluster is 0.
    minimum_cluster_floor(n, ...): Smallest cluster count a full run should produce.
    enforce_min_clusters(vectors, labels, floor, ...): Split the largest clusters until the floor is met.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import Sequence

import numpy as np
from sklearn.cluster import KMeans
from sklearn.decomposition import PCA

from hive_analysis.core.config import get_settings

_LOGGER = logging.getLogger(__name__)


def choose_cluster_count(inertias: Sequence[float], k_values: Sequence[int]) -> int:
    """Return the k whose inertia lies furthest from the first-to-last chord."""

    if not k_values:
        return 1
    if len(k_values) < 3:
        return int(k_values[0])

    xs = np.asarray(k_values, dtype=float)
    ys = np.asarray(inertias, dtype=float)
    x1, y1, x2, y2 = xs[0], ys[0], xs[-1], ys[-1]
    denom = float(np.hypot(y2 - y1, x2 - x1))
    if denom == 0.0:
        return int(k_values[0])
    distances = np.abs((y2 - y1) * xs - (x2 - x1) * ys + x2 * y1 - y2 * x1) / denom
    return int(xs[int(np.argmax(distances))])


def relabel_by_size(labels: Sequence[int]) -> list[int]:
    counts = Counter(int(label) for label in labels)
    # Ties keep the lower original label first.
    order = sorted(counts, key=lambda label: (-counts[label], label))
    mapping = {label: idx for idx, label in enumerate(order)}
    return [mapping[int(label)] for label in labels]


def minimum_cluster_floor(
    n: int,
    *,
    small: int = 3,
    large: int = 5,
    large_above: int = 40,
    forced_min_size: int = 2,
) -> int:
    """Target cluster count for ``n`` vectors, capped so no forced cluster is tinier than ``forced_min_size``."""

    target = small if n <= large_above else large
    return max(0, min(target, n, n // max(1, forced_min_size)))


def enforce_min_clusters(
    vectors: np.ndarray,
    labels: Sequence[int],
    floor: int,
    *,
    forced_min_size: int = 2,
    random_state: int = 42,
) -> list[int]:
    """Split the largest splittable cluster in two until ``floor`` clusters exist.

    A cluster is splittable when it has at least ``2 * forced_min_size``
    members and a 2-means fit actually separates it. Returns labels ordered by
    size; fewer than ``floor`` clusters when nothing is left to split.
    """

    current = [int(label) for label in labels]
    unsplittable: set[int] = set()
    while len(set(current)) < floor:
        sizes = Counter(current)
        eligible = [
            label
            for label, size in sizes.items()
            if size >= 2 * forced_min_size and label not in unsplittable
        ]
        if not eligible:
            _LOGGER.info("Cluster floor %s not reached: no cluster left to split", floor)
            break
        target = min(eligible, key=lambda label: (-sizes[label], label))
        positions = [idx for idx, label in enumerate(current) if label == target]
        halves = KMeans(n_clusters=2, n_init=10, random_state=random_state).fit_predict(vectors[positions])
        if len(set(halves.tolist())) < 2:
            unsplittable.add(target)
            continue
        new_label = max(current) + 1
        for idx, half in zip(positions, halves):
            if half == 1:
                current[idx] = new_label
        _LOGGER.info(
            "Split cluster %s (size %s) to meet floor %s -> [%s, %s]",
            target,
            len(positions),
            floor,
            int((halves == 0).sum()),
            int((halves == 1).sum()),
        )
    return relabel_by_size(current)


class KMeansClusteringService:
    def __init__(
        self,
        *,
        min_cluster_size: int | None = None,
        max_clusters: int | None = None,
        random_state: int | None = None,
        enforce_floor: bool = True,
    ) -> None:
        settings = get_settings()
        self.min_cluster_size = min_cluster_size or settings.cluster_min_size
        self.max_clusters = max_clusters or settings.cluster_max_clusters
        self.random_state = settings.projection_seed if random_state is None else random_state
        self.enforce_floor = enforce_floor
        self._settings = settings

    async def cluster(self, vectors: np.ndarray) -> list[int]:
        return await asyncio.to_thread(self._cluster_sync, np.asarray(vectors, dtype=float))

    def _cluster_sync(self, vectors: np.ndarray) -> list[int]:
        n = vectors.shape[0]
        if n == 0:
            return []
        labels = self._elbow_labels(vectors)
        if not self.enforce_floor:
            return labels
        floor = minimum_cluster_floor(
            n,
            small=self._settings.cluster_floor_small,
            large=self._settings.cluster_floor_large,
            large_above=self._settings.cluster_floor_large_above,
            forced_min_size=self._settings.cluster_forced_min_size,
        )
        if len(set(labels)) >= floor:
            return labels
        return enforce_min_clusters(
            vectors,
            labels,
            floor,
            forced_min_size=self._settings.cluster_forced_min_size,
            random_state=self.random_state,
        )

    def _elbow_labels(self, vectors: np.ndarray) -> list[int]:
        n = vectors.shape[0]
        upper = min(self.max_clusters, n // max(1, self.min_cluster_size), n // 3)
        if upper < 2:
            return [0] * n

        k_values = list(range(1, upper + 1))
        fits: dict[int, KMeans] = {}
        inertias: list[float] = []
        for k in k_values:
            model = KMeans(n_clusters=k, n_init=10, random_state=self.random_state)
            model.fit(vectors)
            fits[k] = model
            inertias.append(float(model.inertia_))

        chosen = choose_cluster_count(inertias, k_values)
        _LOGGER.info("KMeans selected k=%s for %s vectors", chosen, n)
        return relabel_by_size(fits[chosen].labels_.tolist())


class UMAPProjectionService:
    def __init__(
        self,
        *,
        n_neighbors: int | None = None,
        min_dist: float | None = None,
        random_state: int | None = None,
    ) -> None:
        settings = get_settings()
        self.n_neighbors = n_neighbors or settings.umap_n_neighbors
        self.min_dist = settings.umap_min_dist if min_dist is None else min_dist
        self.random_state = settings.projection_seed if random_state is None else random_state

    async def project_2d(self, vectors: np.ndarray) -> np.ndarray:
        return await asyncio.to_thread(self._project_sync, np.asarray(vectors, dtype=float))

    def _project_sync(self, vectors: np.ndarray) -> np.ndarray:
        n = vectors.shape[0]
        if n == 0:
            return np.zeros((0, 2), dtype=float)
        if n == 1:
            return np.zeros((1, 2), dtype=float)
        if n < 4:
            return self._pca(vectors)

        import umap  # heavy import, deferred until a layout is needed

        reducer = umap.UMAP(
            n_components=2,
            n_neighbors=max(2, min(self.n_neighbors, n - 1)),
            min_dist=self.min_dist,
            metric="cosine",
            random_state=self.random_state,
        )
        coords = reducer.fit_transform(vectors)
        return np.asarray(coords, dtype=float)

    def _pca(self, vectors: np.ndarray) -> np.ndarray:
        components = min(2, vectors.shape[0], vectors.shape[1])
        coords = PCA(n_components=components, random_state=self.random_state).fit_transform(vectors)
        if coords.shape[1] < 2:
            coords = np.column_stack([coords, np.zeros(coords.shape[0])])
        return np.asarray(coords, dtype=float)
