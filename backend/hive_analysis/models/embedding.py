"""Response embedding persistence model.

Classes:
    ResponseEmbedding: Persists the embedding vector produced for a response along with dimensionality metadata.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Column, LargeBinary
from sqlmodel import Field, SQLModel


class ResponseEmbedding(SQLModel, table=True):
    __tablename__ = "response_embeddings"

    response_id: int = Field(foreign_key="conversation_responses.id", primary_key=True)
    conversation_id: UUID = Field(foreign_key="conversations.id", index=True)
    dim: int
    vector: bytes = Field(sa_column=Column(LargeBinary, nullable=False))
    updated_at: datetime = Field(default_factory=datetime.utcnow)
