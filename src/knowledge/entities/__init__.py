"""Entities - Domain models for the knowledge engine.

This module contains pure domain entities without business logic:
- KnowledgeEntry: A typed knowledge record (schema, QA pair, synonym, ...)
- Chunk: A segment of cleaned text produced by the chunker
- VectorRecord: An embedded chunk or entry stored in the vector store
- RetrievalResult / RetrievalResponse: Ranked answers to a query
- SearchFilters: Owner, scope, type and source restrictions for a search
- Payloads: Per-type input shapes for new knowledge entries
"""

from knowledge.entities.chunk import Chunk
from knowledge.entities.knowledge_entry import KnowledgeEntry, KnowledgeType
from knowledge.entities.payloads import (
    BusinessKnowledgePayload,
    EntryPayload,
    QAPairPayload,
    SchemaPayload,
    SynonymPayload,
)
from knowledge.entities.retrieval import (
    ResultOrigin,
    RetrievalResponse,
    RetrievalResult,
    SearchFilters,
)
from knowledge.entities.vector_record import VectorRecord

__all__ = [
    "BusinessKnowledgePayload",
    "Chunk",
    "EntryPayload",
    "KnowledgeEntry",
    "KnowledgeType",
    "QAPairPayload",
    "ResultOrigin",
    "RetrievalResponse",
    "RetrievalResult",
    "SchemaPayload",
    "SearchFilters",
    "SynonymPayload",
    "VectorRecord",
]
