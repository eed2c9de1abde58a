"""Persistence of response embeddings.

Functions:
    upsert_response_embeddings(session, conversation_id, response_ids, vectors): Idempotent write keyed by response id.
    load_response_embeddings(session, conversation_id): Stored vectors keyed by response id.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence
from uuid import UUID

import numpy as np
from sqlalchemy import select
from sqlmodel.ext.asyncio.session import AsyncSession

from hive_analysis.models import ResponseEmbedding
from hive_analysis.utils.vectors import pack_vector, unpack_vector

_LOGGER = logging.getLogger(__name__)


async def upsert_response_embeddings(
    session: AsyncSession,
    conversation_id: UUID,
    response_ids: Sequence[int],
    vectors: np.ndarray,
) -> int:
    """Insert or overwrite one embedding row per response; returns rows written.

    A response id repeated in the input keeps its last vector.
    """

    if len(response_ids) != len(vectors):
        raise ValueError("response_ids and vectors must be the same length")

    latest: dict[int, np.ndarray] = {}
    for response_id, vector in zip(response_ids, vectors):
        if response_id in latest:
            _LOGGER.warning("Duplicate embedding for response %s in conversation %s", response_id, conversation_id)
        latest[response_id] = vector
    if not latest:
        return 0

    result = await session.exec(
        select(ResponseEmbedding).where(ResponseEmbedding.response_id.in_(list(latest)))
    )
    existing = {row.response_id: row for row in result.scalars()}

    now = datetime.utcnow()
    for response_id, vector in latest.items():
        record = existing.get(response_id)
        if record is None:
            record = ResponseEmbedding(
                response_id=response_id,
                conversation_id=conversation_id,
                dim=int(vector.shape[0]),
                vector=pack_vector(vector),
            )
        else:
            record.dim = int(vector.shape[0])
            record.vector = pack_vector(vector)
            record.updated_at = now
        session.add(record)
    await session.flush()
    return len(latest)


async def load_response_embeddings(session: AsyncSession, conversation_id: UUID) -> dict[int, np.ndarray]:
    result = await session.exec(
        select(ResponseEmbedding).where(ResponseEmbedding.conversation_id == conversation_id)
    )
    return {row.response_id: unpack_vector(row.vector, row.dim) for row in result.scalars()}
