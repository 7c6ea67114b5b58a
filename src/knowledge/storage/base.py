"""Abstract base classes for storage backends.

Why this exists:
- Allows swapping between vector databases (Chroma, in-memory, ...)
- Separates vector storage from the knowledge record store
- Enables testing with in-memory implementations

How to extend:
1. Subclass VectorStore or RecordStore
2. Implement all abstract methods, raising StorageError on backend failures
3. Register in the factories in knowledge.storage
4. Add optional dependencies to pyproject.toml
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel

from knowledge.entities import (
    KnowledgeEntry,
    KnowledgeType,
    RetrievalResult,
    SearchFilters,
    VectorRecord,
)


class StorageConfig(BaseModel):
    """Base configuration for storage backends."""

    storage_type: str
    connection_string: Optional[str] = None
    collection_name: str = "knowledge"
    extra_params: dict[str, Any] = {}


class VectorStore(ABC):
    """Abstract interface for vector storage backends.

    Records are grouped by ``source_id``; a source is inserted and removed as
    one unit by the ingestion pipeline.
    """

    def __init__(self, config: StorageConfig) -> None:
        """Initialize storage with configuration."""
        self.config = config

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the vector store (create collections, indices, etc.)."""
        pass

    @abstractmethod
    async def insert_batch(self, records: list[VectorRecord]) -> None:
        """Append records. No deduplication is performed.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete_by_source(self, source_id: str) -> int:
        """Delete every record of a source.

        Returns:
            Number of records deleted; 0 for an unknown source
        """
        pass

    @abstractmethod
    async def get_by_source(self, source_id: str) -> list[VectorRecord]:
        """Return all records of a source ordered by chunk_index."""
        pass

    @abstractmethod
    async def search(
        self,
        query_vector: list[float],
        filters: Optional[SearchFilters] = None,
        top_k: int = 10,
        min_score: Optional[float] = None,
    ) -> list[RetrievalResult]:
        """Search for similar records.

        Args:
            query_vector: Query embedding vector
            filters: Owner, scope, type and source restrictions
            top_k: Maximum number of results
            min_score: Optional similarity floor

        Returns:
            Results sorted by similarity descending

        Raises:
            StorageError: If the search fails
        """
        pass

    @abstractmethod
    async def count(self) -> int:
        """Return total number of records stored."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close connections and cleanup resources."""
        pass


class RecordStore(ABC):
    """Abstract interface for knowledge record storage.

    Holds the authoritative KnowledgeEntry rows, including their embeddings,
    which the brute-force scan fallback reads when the vector store is down.

    Owner filters: ``owner_id=None`` applies no owner restriction; any other
    value matches that owner's entries plus shared (ownerless) entries.
    """

    def __init__(self, config: StorageConfig) -> None:
        """Initialize storage with configuration."""
        self.config = config

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the record store (create tables, etc.)."""
        pass

    @abstractmethod
    async def add_entry(self, entry: KnowledgeEntry) -> None:
        pass

    @abstractmethod
    async def get_entry(self, entry_id: UUID) -> Optional[KnowledgeEntry]:
        pass

    @abstractmethod
    async def get_entries(self, entry_ids: list[UUID]) -> dict[UUID, KnowledgeEntry]:
        """Fetch several entries; missing ids are absent from the result."""
        pass

    @abstractmethod
    async def update_entry(self, entry: KnowledgeEntry) -> bool:
        """Replace an entry. Returns False if it does not exist."""
        pass

    @abstractmethod
    async def delete_entries(self, entry_ids: list[UUID]) -> int:
        """Delete entries by id. Returns the number actually deleted."""
        pass

    @abstractmethod
    async def list_entries(
        self,
        owner_id: Optional[str] = None,
        entry_type: Optional[KnowledgeType] = None,
        scope_id: Optional[str] = None,
        roots_only: bool = True,
        limit: int = 100,
        offset: int = 0,
    ) -> list[KnowledgeEntry]:
        """List entries newest first."""
        pass

    @abstractmethod
    async def get_children(self, parent_id: UUID) -> list[KnowledgeEntry]:
        pass

    @abstractmethod
    async def find_for_scan(
        self,
        owner_id: Optional[str] = None,
        types: Optional[list[KnowledgeType]] = None,
        scope_id: Optional[str] = None,
    ) -> list[KnowledgeEntry]:
        """Return matching entries that carry an embedding."""
        pass

    @abstractmethod
    async def find_qa_by_question(
        self,
        question: str,
        owner_id: Optional[str] = None,
        scope_id: Optional[str] = None,
    ) -> Optional[KnowledgeEntry]:
        """Find a QA pair whose question matches exactly."""
        pass

    @abstractmethod
    async def find_by_file(self, file_id: str) -> list[KnowledgeEntry]:
        """Return entries whose metadata.file_id equals file_id."""
        pass

    @abstractmethod
    async def find_pending_embeddings(self, owner_id: Optional[str] = None) -> list[KnowledgeEntry]:
        """Return entries whose embedding failed and is marked pending."""
        pass

    @abstractmethod
    async def count(self) -> int:
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close connections and cleanup resources."""
        pass


def owner_matches(entry_owner: Optional[str], owner_id: Optional[str]) -> bool:
    """Owner filter shared by the in-memory stores."""
    return owner_id is None or entry_owner is None or entry_owner == owner_id


def record_to_result(record: VectorRecord, similarity: float) -> RetrievalResult:
    """Build a retrieval result from a stored record and its similarity."""
    return RetrievalResult(
        id=record.id,
        source_id=record.source_id,
        entry_id=record.entry_id,
        type=record.entry_type,
        title=record.title,
        content=record.content,
        metadata={**record.metadata, "chunk_index": record.chunk_index},
        owner_id=record.owner_id,
        scope_id=record.scope_id,
        similarity=similarity,
        score=similarity,
        created_at=record.created_at,
    )


class StorageError(Exception):
    """Base exception for storage errors."""

    def __init__(self, message: str, storage_type: str, original_error: Exception | None = None):
        self.message = message
        self.storage_type = storage_type
        self.original_error = original_error
        super().__init__(self.message)
