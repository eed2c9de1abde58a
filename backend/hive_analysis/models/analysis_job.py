"""Analysis job ORM model.

Classes:
    JobStatus: Job lifecycle states; ACTIVE lists the states covered by the one-active-job index.
    JobStrategy: Incremental or full analysis.
    AnalysisJob: A queued/running/finished analysis request for one conversation.

The partial unique index on ``conversation_id`` (restricted to active states)
is what guarantees at most one queued or running job per conversation.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, Index, Text, text
from sqlmodel import Field, SQLModel


class JobStatus(str):
    QUEUED = "queued"
    RUNNING = "running"
    FAILED = "failed"
    SUCCEEDED = "succeeded"

    ACTIVE = ("queued", "running")


class JobStrategy(str):
    INCREMENTAL = "incremental"
    FULL = "full"


_ACTIVE_PREDICATE = text("status IN ('queued', 'running')")


class AnalysisJob(SQLModel, table=True):
    __tablename__ = "conversation_analysis_jobs"
    __table_args__ = (
        Index(
            "ix_analysis_jobs_one_active_per_conversation",
            "conversation_id",
            unique=True,
            sqlite_where=_ACTIVE_PREDICATE,
            postgresql_where=_ACTIVE_PREDICATE,
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    conversation_id: UUID = Field(foreign_key="conversations.id", index=True)
    status: str = Field(default=JobStatus.QUEUED, index=True)
    strategy: str = Field(default=JobStrategy.FULL)
    created_by: UUID
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    locked_at: Optional[datetime] = None
    attempts: int = 0
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text))
