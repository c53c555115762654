"""SQLModel tables backing the knowledge-base vector store."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import Column, LargeBinary
from sqlmodel import Field, SQLModel

KNOWLEDGE_BASE_TABLE = "knowledge_base"


class KnowledgeBaseRow(SQLModel, table=True):
    """One indexed note: identifier, verbatim text and its embedding.

    ``seq`` is the insertion counter and the key used in the in-memory
    usearch index; ``id`` is the caller's identifier and may repeat.
    ``vector`` holds ``dimension`` little-endian float32 values.  ``seq``
    is never reused, so it orders rows by insertion even after deletes.
    """

    __tablename__ = KNOWLEDGE_BASE_TABLE
    __table_args__ = {"sqlite_autoincrement": True}

    seq: int | None = Field(default=None, primary_key=True)
    id: str = Field(index=True)
    text: str
    vector: bytes = Field(sa_column=Column(LargeBinary, nullable=False))


class VectorTableMeta(SQLModel, table=True):
    """Schema record written once when a vector table is created."""

    __tablename__ = "vecnotes_tables"

    name: str = Field(primary_key=True)
    dimension: int
    model_name: str
    metric: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
