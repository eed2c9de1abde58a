"""Feedback vote ORM model.

Classes:
    FeedbackValue: Recognised vote values.
    FeedbackVote: One agree/pass/disagree vote per (user, response).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class FeedbackValue(str):
    AGREE = "agree"
    PASS = "pass"
    DISAGREE = "disagree"


class FeedbackVote(SQLModel, table=True):
    __tablename__ = "response_feedback"
    __table_args__ = (
        UniqueConstraint("user_id", "response_id", name="uq_feedback_user_response"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    conversation_id: UUID = Field(foreign_key="conversations.id", index=True)
    response_id: int = Field(foreign_key="conversation_responses.id", index=True)
    user_id: UUID
    feedback: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
