"""Conversation and hive membership ORM models.

Classes:
    AnalysisStatus: Valid values of Conversation.analysis_status.
    ConversationType: Conversation kinds; only UNDERSTAND is analysable.
    Conversation: A discussion whose responses are clustered and consolidated.
    HiveMember: Membership row used to authorise analysis triggers.

Functions:
    set_updated_at(_, __, target): SQLAlchemy event hook that maintains the `updated_at` timestamp.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, Text, event
from sqlmodel import Field, SQLModel


class AnalysisStatus(str):
    NOT_STARTED = "not_started"
    EMBEDDING = "embedding"
    ANALYZING = "analyzing"
    READY = "ready"
    ERROR = "error"


class ConversationType(str):
    UNDERSTAND = "understand"
    DECIDE = "decide"


class Conversation(SQLModel, table=True):
    __tablename__ = "conversations"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    hive_id: UUID = Field(index=True)
    title: str = ""
    type: str = Field(default=ConversationType.UNDERSTAND)
    analysis_status: str = Field(default=AnalysisStatus.NOT_STARTED)
    analysis_response_count: Optional[int] = None
    analysis_error: Optional[str] = Field(default=None, sa_column=Column(Text))
    analysis_updated_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class HiveMember(SQLModel, table=True):
    __tablename__ = "hive_members"

    hive_id: UUID = Field(primary_key=True)
    user_id: UUID = Field(primary_key=True)
    role: str = Field(default="member")


@event.listens_for(Conversation, "before_update", propagate=True)
def set_updated_at(_, __, target):
    target.updated_at = datetime.utcnow()
