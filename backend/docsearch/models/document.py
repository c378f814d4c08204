"""Document record consumed by indexing and search.

The document lifecycle itself (editing, proposals, versions) is owned elsewhere;
this model only carries the columns the retrieval layer reads.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, Text
from sqlmodel import Field, SQLModel

from docsearch.utils.clock import utcnow


class Document(SQLModel, table=True):
    __tablename__ = "documents"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    title: str
    slug: str = Field(unique=True, index=True)
    raw_markdown: str = Field(default="", sa_column=Column(Text, nullable=False))
    author_id: Optional[str] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime, index=True)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
