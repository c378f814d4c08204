"""Tag models used by the search tag filter."""

from __future__ import annotations

from uuid import UUID

from sqlmodel import Field, SQLModel


class Tag(SQLModel, table=True):
    __tablename__ = "tags"

    id: int | None = Field(default=None, primary_key=True)
    slug: str = Field(unique=True, index=True)
    name: str


class DocumentTag(SQLModel, table=True):
    __tablename__ = "document_tags"

    document_id: UUID = Field(foreign_key="documents.id", primary_key=True, ondelete="CASCADE")
    tag_id: int = Field(foreign_key="tags.id", primary_key=True, ondelete="CASCADE")
