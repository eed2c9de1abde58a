"""Similarity group ORM models.

Classes:
    ResponseGroup: A "frequently mentioned" group of near-duplicate responses inside one cluster.
    ResponseGroupMember: Membership rows linking responses to their group.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class ResponseGroup(SQLModel, table=True):
    __tablename__ = "conversation_response_groups"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    conversation_id: UUID = Field(foreign_key="conversations.id", index=True)
    cluster_index: int
    representative_response_id: int = Field(foreign_key="conversation_responses.id")
    group_size: int
    params_json: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ResponseGroupMember(SQLModel, table=True):
    __tablename__ = "conversation_response_group_members"

    group_id: UUID = Field(foreign_key="conversation_response_groups.id", primary_key=True)
    response_id: int = Field(foreign_key="conversation_responses.id", primary_key=True)
    position: int = 0
