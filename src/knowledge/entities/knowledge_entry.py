"""KnowledgeEntry entity - a typed, owner-scoped knowledge record."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KnowledgeType(str, Enum):
    """Closed set of knowledge kinds.

    Code that interprets per-type metadata must handle every member.
    """

    SCHEMA = "schema"
    QA_PAIR = "qa_pair"
    SYNONYM = "synonym"
    BUSINESS_KNOWLEDGE = "business_knowledge"
    FILE = "file"


class KnowledgeEntry(BaseModel):
    """A knowledge record kept in the record store.

    ``owner_id`` of ``None`` marks an entry shared by all owners. ``parent_id``
    links table-level schema entries to their database-level parent, and is
    the edge that cascading deletes follow.
    """

    id: UUID = Field(default_factory=uuid4)
    type: KnowledgeType
    title: str = Field(..., min_length=1)
    content: str
    embedding: Optional[list[float]] = None
    owner_id: Optional[str] = None
    parent_id: Optional[UUID] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("embedding")
    @classmethod
    def embedding_not_empty(cls, v: Optional[list[float]]) -> Optional[list[float]]:
        if v is not None and len(v) == 0:
            raise ValueError("embedding must be None or a non-empty vector")
        return v

    @property
    def scope_id(self) -> Optional[str]:
        """Scope identifier (``entity_id``) this entry is attached to."""
        value = self.metadata.get("entity_id")
        return str(value) if value is not None else None

    @property
    def is_root(self) -> bool:
        return self.parent_id is None
