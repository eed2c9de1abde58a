"""Consolidated statement ORM model.

Classes:
    ConsolidatedStatement: LLM-synthesised statement standing in for a group of similar responses,
        with the ordered response ids and an "id: text | id: text" provenance string.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Text
from sqlmodel import Field, SQLModel


class ConsolidatedStatement(SQLModel, table=True):
    __tablename__ = "conversation_consolidated_statements"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    conversation_id: UUID = Field(foreign_key="conversations.id", index=True)
    group_id: UUID = Field(foreign_key="conversation_response_groups.id", unique=True)
    synthesized_statement: str = Field(sa_column=Column(Text, nullable=False))
    combined_response_ids: list[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    combined_responses: str = Field(sa_column=Column(Text, nullable=False))
    model_used: str
    prompt_version: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
