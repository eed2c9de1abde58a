"""Response ORM model.

Classes:
    Response: A free-text answer submitted to a conversation plus its analysed placement.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import Column, Text
from sqlmodel import Field, SQLModel


class Response(SQLModel, table=True):
    __tablename__ = "conversation_responses"

    id: Optional[int] = Field(default=None, primary_key=True)
    conversation_id: UUID = Field(foreign_key="conversations.id", index=True)
    user_id: Optional[UUID] = None
    text: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(default_factory=datetime.utcnow)
    cluster_index: Optional[int] = Field(default=None, index=True)
    x_2d: Optional[float] = None
    y_2d: Optional[float] = None
    distance_to_centroid: Optional[float] = None
    outlier_score: Optional[float] = None
