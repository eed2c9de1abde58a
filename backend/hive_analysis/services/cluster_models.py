"""Cluster model computation and persistence.

A cluster model is what incremental analysis needs to place a new response
without re-running the full pipeline: the mean embedding of the cluster, the
mean of its 2D points, and how far those points spread from that mean.

Classes:
    ClusterModelDraft: In-memory cluster model prior to persistence.
    ClusterAssignment: Nearest-centroid result for one vector.
    ClusterModelStore: Replace/load helpers over ``conversation_cluster_models``.

Functions:
    compute_cluster_models(vectors, coords_2d, labels): Derive one draft per cluster.
    assign_nearest(vector, models): Pick the centroid with the smallest cosine distance.
    place_near_centroid(model, rng): Sample a 2D point inside the cluster's spread disc.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence
from uuid import UUID

import numpy as np
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from hive_analysis.core.errors import PersistenceError
from hive_analysis.models import ClusterModel
from hive_analysis.utils.vectors import CENTROID_DTYPE, cosine_distance, pack_vector, unpack_vector

_LOGGER = logging.getLogger(__name__)

SPREAD_PADDING = 1.1
MIN_SPREAD_RADIUS = 0.1


@dataclass(slots=True)
class ClusterModelDraft:
    cluster_index: int
    centroid: np.ndarray
    centroid_x: float
    centroid_y: float
    spread_radius: float

    @property
    def dim(self) -> int:
        return int(self.centroid.shape[0])


@dataclass(slots=True)
class ClusterAssignment:
    cluster_index: int
    distance: float


def compute_cluster_models(
    vectors: np.ndarray,
    coords_2d: np.ndarray,
    labels: Sequence[int],
) -> list[ClusterModelDraft]:
    """Return one draft per distinct label, ordered by cluster index.

    The centroid is the plain arithmetic mean of the member embeddings and is
    not renormalised. The spread radius is the largest 2D distance from the 2D
    centroid, padded by 10%; a cluster whose points all coincide gets 0.1.
    """

    label_arr = np.asarray(labels, dtype=int)
    drafts: list[ClusterModelDraft] = []
    for cluster_index in sorted(set(label_arr.tolist())):
        mask = label_arr == cluster_index
        members = vectors[mask]
        points = coords_2d[mask]
        centroid = members.mean(axis=0)
        centre_2d = points.mean(axis=0)
        max_radius = float(np.max(np.linalg.norm(points - centre_2d, axis=1))) if len(points) else 0.0
        spread = max_radius * SPREAD_PADDING
        drafts.append(
            ClusterModelDraft(
                cluster_index=int(cluster_index),
                centroid=centroid.astype(float),
                centroid_x=float(centre_2d[0]),
                centroid_y=float(centre_2d[1]),
                spread_radius=spread if spread > 0 else MIN_SPREAD_RADIUS,
            )
        )
    return drafts


def assign_nearest(vector: np.ndarray, models: Sequence[ClusterModelDraft]) -> ClusterAssignment:
    """Return the closest model by cosine distance; ties go to the lowest cluster index."""

    if not models:
        raise ValueError("assign_nearest requires at least one cluster model")

    best: ClusterAssignment | None = None
    for model in sorted(models, key=lambda item: item.cluster_index):
        distance = cosine_distance(vector, model.centroid)
        if best is None or distance < best.distance:
            best = ClusterAssignment(cluster_index=model.cluster_index, distance=distance)
    return best


def place_near_centroid(model: ClusterModelDraft, rng: np.random.Generator) -> tuple[float, float]:
    angle = float(rng.uniform(0.0, 2.0 * math.pi))
    radius = float(rng.uniform(0.0, model.spread_radius))
    return (
        model.centroid_x + radius * math.cos(angle),
        model.centroid_y + radius * math.sin(angle),
    )


class ClusterModelStore:
    async def replace(
        self,
        session: AsyncSession,
        conversation_id: UUID,
        drafts: Sequence[ClusterModelDraft],
        *,
        commit: bool = False,
    ) -> None:
        """Delete the conversation's models and insert ``drafts`` in their place."""

        now = datetime.utcnow()
        try:
            await session.execute(delete(ClusterModel).where(ClusterModel.conversation_id == conversation_id))
        except SQLAlchemyError as exc:
            raise PersistenceError(
                "Failed to delete cluster models", {"conversation_id": conversation_id}
            ) from exc

        try:
            for draft in drafts:
                session.add(
                    ClusterModel(
                        conversation_id=conversation_id,
                        cluster_index=draft.cluster_index,
                        dim=draft.dim,
                        centroid_embedding=pack_vector(draft.centroid, CENTROID_DTYPE),
                        centroid_x=draft.centroid_x,
                        centroid_y=draft.centroid_y,
                        spread_radius=draft.spread_radius,
                        updated_at=now,
                    )
                )
            await session.flush()
            if commit:
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(
                "Failed to insert cluster models",
                {"conversation_id": conversation_id, "count": len(drafts)},
            ) from exc

        _LOGGER.info("Stored %s cluster models for conversation %s", len(drafts), conversation_id)

    async def load(self, session: AsyncSession, conversation_id: UUID) -> list[ClusterModelDraft]:
        result = await session.exec(
            select(ClusterModel)
            .where(ClusterModel.conversation_id == conversation_id)
            .order_by(ClusterModel.cluster_index)
        )
        return [
            ClusterModelDraft(
                cluster_index=row.cluster_index,
                centroid=unpack_vector(row.centroid_embedding, row.dim, CENTROID_DTYPE),
                centroid_x=row.centroid_x,
                centroid_y=row.centroid_y,
                spread_radius=row.spread_radius,
            )
            for row in result.scalars().all()
        ]

    async def has_models(self, session: AsyncSession, conversation_id: UUID) -> bool:
        result = await session.exec(
            select(func.count()).select_from(ClusterModel).where(ClusterModel.conversation_id == conversation_id)
        )
        return int(result.scalar_one()) > 0
