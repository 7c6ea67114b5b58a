"""VectorRecord entity - an embedded unit in the vector store."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from knowledge.entities.knowledge_entry import KnowledgeType, utcnow


class VectorRecord(BaseModel):
    """An embedding plus the content and scope it was computed from.

    All records sharing a ``source_id`` form one ingestion unit and are
    inserted or removed together. ``entry_id`` links the record back to a
    KnowledgeEntry when it was produced from one.
    """

    id: UUID = Field(default_factory=uuid4)
    source_id: str = Field(..., min_length=1)
    owner_id: Optional[str] = None
    scope_id: Optional[str] = None
    entry_id: Optional[UUID] = None
    entry_type: KnowledgeType = KnowledgeType.FILE
    title: str = ""
    chunk_index: int = Field(default=0, ge=0)
    content: str
    embedding: list[float] = Field(..., min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
