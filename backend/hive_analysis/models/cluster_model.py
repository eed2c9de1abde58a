"""Persisted cluster model used by incremental analysis.

Classes:
    ClusterModel: Centroid in embedding space and 2D space plus the spread radius of one cluster.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Column, LargeBinary
from sqlmodel import Field, SQLModel


class ClusterModel(SQLModel, table=True):
    __tablename__ = "conversation_cluster_models"

    conversation_id: UUID = Field(foreign_key="conversations.id", primary_key=True)
    cluster_index: int = Field(primary_key=True)
    dim: int
    centroid_embedding: bytes = Field(sa_column=Column(LargeBinary, nullable=False))
    centroid_x: float
    centroid_y: float
    spread_radius: float = Field(default=0.1, ge=0.0)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
