"""Theme ORM model.

Classes:
    Theme: Named presentation of one cluster (name, description, member count).
"""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from sqlalchemy import Column, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


class Theme(SQLModel, table=True):
    __tablename__ = "conversation_themes"
    __table_args__ = (
        UniqueConstraint("conversation_id", "cluster_index", name="uq_theme_conversation_cluster"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    conversation_id: UUID = Field(foreign_key="conversations.id", index=True)
    cluster_index: int
    name: str
    description: str = Field(default="", sa_column=Column(Text, nullable=False))
    size: int = 0
