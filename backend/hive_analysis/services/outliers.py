"""Per-cluster outlier scoring from distances to the cluster centroid.

Scores are modified z-scores over the median absolute deviation (MAD):
``0.6745 * |d - median| / MAD``. Clusters with fewer than ``min_cluster_size``
members are not scored. Responses are never moved out of their cluster; the
score is stored alongside the placement and high scorers are reported.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Optional, Sequence

import numpy as np

MAD_SCALE = 0.6745


def mad_z_scores(distances: Sequence[float]) -> np.ndarray:
    values = np.asarray(distances, dtype=float)
    if values.size == 0:
        return values
    median = float(np.median(values))
    mad = float(np.median(np.abs(values - median)))
    if mad == 0.0:
        return np.zeros_like(values)
    return MAD_SCALE * np.abs(values - median) / mad


def compute_outlier_scores(
    labels: Sequence[int],
    distances: Sequence[float],
    *,
    min_cluster_size: int = 6,
) -> list[Optional[float]]:
    """Return one score per position; ``None`` for members of small clusters."""

    if len(labels) != len(distances):
        raise ValueError("labels and distances must have the same length")

    positions: dict[int, list[int]] = defaultdict(list)
    for idx, label in enumerate(labels):
        positions[int(label)].append(idx)

    scores: list[Optional[float]] = [None] * len(labels)
    for members in positions.values():
        if len(members) < min_cluster_size:
            continue
        for idx, score in zip(members, mad_z_scores([distances[i] for i in members])):
            scores[idx] = float(score)
    return scores


def flag_outliers(
    labels: Sequence[int],
    scores: Sequence[Optional[float]],
    *,
    threshold: float = 3.5,
    max_ratio: float = 0.20,
) -> list[int]:
    """Positions scoring above ``threshold``, at most ``floor(size * max_ratio)`` per cluster.

    When a cluster has more candidates than its cap, the highest scores win.
    """

    sizes: dict[int, int] = defaultdict(int)
    candidates: dict[int, list[int]] = defaultdict(list)
    for idx, (label, score) in enumerate(zip(labels, scores)):
        sizes[int(label)] += 1
        if score is not None and score > threshold:
            candidates[int(label)].append(idx)

    flagged: list[int] = []
    for label, members in candidates.items():
        cap = int(sizes[label] * max_ratio)
        members.sort(key=lambda idx: (-scores[idx], idx))
        flagged.extend(members[:cap])
    return sorted(flagged)
