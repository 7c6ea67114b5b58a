"""In-memory storage implementations for testing and development.

These implementations keep all data in process memory and are useful for:
- Testing without external dependencies
- Development and prototyping
- Small single-process deployments
"""

from typing import Optional
from uuid import UUID

from knowledge.core.similarity import cosine_similarity
from knowledge.entities import (
    KnowledgeEntry,
    KnowledgeType,
    RetrievalResult,
    SearchFilters,
    VectorRecord,
)
from knowledge.storage.base import (
    RecordStore,
    StorageConfig,
    VectorStore,
    owner_matches,
    record_to_result,
)


class InMemoryVectorStore(VectorStore):
    """Brute-force vector store keyed by source id."""

    def __init__(self, config: StorageConfig) -> None:
        super().__init__(config)
        self.sources: dict[str, list[VectorRecord]] = {}

    async def initialize(self) -> None:
        pass

    async def insert_batch(self, records: list[VectorRecord]) -> None:
        for record in records:
            self.sources.setdefault(record.source_id, []).append(record)

    async def delete_by_source(self, source_id: str) -> int:
        return len(self.sources.pop(source_id, []))

    async def get_by_source(self, source_id: str) -> list[VectorRecord]:
        return sorted(self.sources.get(source_id, []), key=lambda r: r.chunk_index)

    def _matches(self, record: VectorRecord, filters: SearchFilters) -> bool:
        if not owner_matches(record.owner_id, filters.owner_id):
            return False
        if filters.scope_id is not None and record.scope_id != filters.scope_id:
            return False
        if filters.types and record.entry_type not in filters.types:
            return False
        if filters.source_ids and record.source_id not in filters.source_ids:
            return False
        return True

    async def search(
        self,
        query_vector: list[float],
        filters: Optional[SearchFilters] = None,
        top_k: int = 10,
        min_score: Optional[float] = None,
    ) -> list[RetrievalResult]:
        filters = filters or SearchFilters()
        scored: list[tuple[float, VectorRecord]] = []
        for records in self.sources.values():
            for record in records:
                if not self._matches(record, filters):
                    continue
                similarity = cosine_similarity(query_vector, record.embedding)
                if min_score is not None and similarity < min_score:
                    continue
                scored.append((similarity, record))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [record_to_result(record, similarity) for similarity, record in scored[:top_k]]

    async def count(self) -> int:
        return sum(len(records) for records in self.sources.values())

    async def close(self) -> None:
        pass


class InMemoryRecordStore(RecordStore):
    """Dict-backed knowledge record store."""

    def __init__(self, config: StorageConfig) -> None:
        super().__init__(config)
        self.entries: dict[UUID, KnowledgeEntry] = {}

    async def initialize(self) -> None:
        pass

    async def add_entry(self, entry: KnowledgeEntry) -> None:
        self.entries[entry.id] = entry.model_copy(deep=True)

    async def get_entry(self, entry_id: UUID) -> Optional[KnowledgeEntry]:
        entry = self.entries.get(entry_id)
        return entry.model_copy(deep=True) if entry else None

    async def get_entries(self, entry_ids: list[UUID]) -> dict[UUID, KnowledgeEntry]:
        return {
            entry_id: self.entries[entry_id].model_copy(deep=True)
            for entry_id in entry_ids
            if entry_id in self.entries
        }

    async def update_entry(self, entry: KnowledgeEntry) -> bool:
        if entry.id not in self.entries:
            return False
        self.entries[entry.id] = entry.model_copy(deep=True)
        return True

    async def delete_entries(self, entry_ids: list[UUID]) -> int:
        return sum(1 for entry_id in entry_ids if self.entries.pop(entry_id, None) is not None)

    def _filter(
        self,
        owner_id: Optional[str],
        types: Optional[list[KnowledgeType]],
        scope_id: Optional[str],
    ) -> list[KnowledgeEntry]:
        return [
            entry
            for entry in self.entries.values()
            if owner_matches(entry.owner_id, owner_id)
            and (not types or entry.type in types)
            and (scope_id is None or entry.scope_id == scope_id)
        ]

    async def list_entries(
        self,
        owner_id: Optional[str] = None,
        entry_type: Optional[KnowledgeType] = None,
        scope_id: Optional[str] = None,
        roots_only: bool = True,
        limit: int = 100,
        offset: int = 0,
    ) -> list[KnowledgeEntry]:
        entries = self._filter(owner_id, [entry_type] if entry_type else None, scope_id)
        if roots_only:
            entries = [entry for entry in entries if entry.parent_id is None]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return [entry.model_copy(deep=True) for entry in entries[offset : offset + limit]]

    async def get_children(self, parent_id: UUID) -> list[KnowledgeEntry]:
        children = [entry for entry in self.entries.values() if entry.parent_id == parent_id]
        children.sort(key=lambda e: e.created_at)
        return [entry.model_copy(deep=True) for entry in children]

    async def find_for_scan(
        self,
        owner_id: Optional[str] = None,
        types: Optional[list[KnowledgeType]] = None,
        scope_id: Optional[str] = None,
    ) -> list[KnowledgeEntry]:
        return [
            entry.model_copy(deep=True)
            for entry in self._filter(owner_id, types, scope_id)
            if entry.embedding
        ]

    async def find_qa_by_question(
        self,
        question: str,
        owner_id: Optional[str] = None,
        scope_id: Optional[str] = None,
    ) -> Optional[KnowledgeEntry]:
        for entry in self._filter(owner_id, [KnowledgeType.QA_PAIR], scope_id):
            if entry.metadata.get("question") == question:
                return entry.model_copy(deep=True)
        return None

    async def find_by_file(self, file_id: str) -> list[KnowledgeEntry]:
        return [
            entry.model_copy(deep=True)
            for entry in self.entries.values()
            if entry.metadata.get("file_id") == file_id
        ]

    async def find_pending_embeddings(self, owner_id: Optional[str] = None) -> list[KnowledgeEntry]:
        return [
            entry.model_copy(deep=True)
            for entry in self._filter(owner_id, None, None)
            if entry.embedding is None and entry.metadata.get("embedding_pending")
        ]

    async def count(self) -> int:
        return len(self.entries)

    async def close(self) -> None:
        pass
