"""Retrieval entities - search filters, ranked results and responses."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, model_validator

from knowledge.entities.knowledge_entry import KnowledgeType


class ResultOrigin(str, Enum):
    """Where a retrieval result came from."""

    KNOWLEDGE = "knowledge"
    FILE = "file"


class SearchFilters(BaseModel):
    """Restrictions applied to a vector search.

    ``owner_id`` matches entries owned by that owner plus shared entries.
    Empty ``types`` or ``source_ids`` mean "no restriction".
    """

    owner_id: Optional[str] = None
    scope_id: Optional[str] = None
    types: list[KnowledgeType] = Field(default_factory=list)
    source_ids: list[str] = Field(default_factory=list)


class RetrievalResult(BaseModel):
    """A retrieved record with its scores.

    ``similarity`` is the raw vector similarity; ``score`` is whatever the
    current ranking stage sorts by (similarity, rerank score or composite).
    ``rank`` is assigned only after reranking.
    """

    id: UUID = Field(default_factory=uuid4)
    source_id: Optional[str] = None
    entry_id: Optional[UUID] = None
    type: KnowledgeType = KnowledgeType.FILE
    title: str = ""
    content: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    owner_id: Optional[str] = None
    scope_id: Optional[str] = None
    origin: ResultOrigin = ResultOrigin.KNOWLEDGE
    similarity: float = 0.0
    score: float = 0.0
    rerank_score: Optional[float] = None
    composite_score: Optional[float] = None
    rank: Optional[int] = Field(default=None, ge=1)
    reranked: bool = False
    created_at: Optional[datetime] = None


class RetrievalResponse(BaseModel):
    """Answer to a retrieval query."""

    query: str
    results: list[RetrievalResult] = Field(default_factory=list)
    total: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def sync_total(self) -> "RetrievalResponse":
        self.total = len(self.results)
        return self
