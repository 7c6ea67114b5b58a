"""Chroma vector store implementation.

Persistent, embedded vector storage using ChromaDB. All records live in one
cosine-space collection; owner, scope, type and source are metadata fields
filtered with Chroma ``where`` clauses.

Trade-offs:
- Single-node only
- Chroma metadata values must be scalars, so free-form metadata is stored
  as a JSON string and optional ids as "" (empty means shared/unset)
"""

import asyncio
import json
import os
import re
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import structlog

from knowledge.core.similarity import clamp_similarity
from knowledge.entities import (
    KnowledgeType,
    RetrievalResult,
    SearchFilters,
    VectorRecord,
)
from knowledge.storage.base import StorageConfig, StorageError, VectorStore, record_to_result

logger = structlog.get_logger(__name__)


def sanitize_collection_name(name: str) -> str:
    """Sanitize collection name for Chroma compatibility.

    Chroma collection names must be 3-63 characters, start and end with an
    alphanumeric, and contain only alphanumerics, underscores or hyphens.
    """
    sanitized = re.sub(r"[^a-zA-Z0-9_-]", "_", name)

    if sanitized and not sanitized[0].isalnum():
        sanitized = "c" + sanitized
    if sanitized and not sanitized[-1].isalnum():
        sanitized = sanitized + "0"
    if len(sanitized) < 3:
        sanitized = sanitized + "_default"
    if len(sanitized) > 63:
        sanitized = sanitized[:63]

    return sanitized


def build_where(filters: Optional[SearchFilters]) -> Optional[dict[str, Any]]:
    """Translate search filters into a Chroma where clause."""
    if filters is None:
        return None

    conditions: list[dict[str, Any]] = []
    if filters.owner_id is not None:
        conditions.append({"$or": [{"owner_id": filters.owner_id}, {"owner_id": ""}]})
    if filters.scope_id is not None:
        conditions.append({"scope_id": filters.scope_id})
    if filters.types:
        conditions.append({"entry_type": {"$in": [t.value for t in filters.types]}})
    if filters.source_ids:
        conditions.append({"source_id": {"$in": list(filters.source_ids)}})

    if not conditions:
        return None
    if len(conditions) == 1:
        return conditions[0]
    return {"$and": conditions}


def _to_metadata(record: VectorRecord) -> dict[str, Any]:
    return {
        "source_id": record.source_id,
        "owner_id": record.owner_id or "",
        "scope_id": record.scope_id or "",
        "entry_id": str(record.entry_id) if record.entry_id else "",
        "entry_type": record.entry_type.value,
        "title": record.title,
        "chunk_index": record.chunk_index,
        "created_at": record.created_at.isoformat(),
        "metadata_json": json.dumps(record.metadata, ensure_ascii=False, default=str),
    }


def _from_metadata(record_id: str, document: str, metadata: dict[str, Any], embedding: Any) -> VectorRecord:
    return VectorRecord(
        id=UUID(record_id),
        source_id=metadata["source_id"],
        owner_id=metadata.get("owner_id") or None,
        scope_id=metadata.get("scope_id") or None,
        entry_id=UUID(metadata["entry_id"]) if metadata.get("entry_id") else None,
        entry_type=KnowledgeType(metadata.get("entry_type", KnowledgeType.FILE.value)),
        title=metadata.get("title", ""),
        chunk_index=int(metadata.get("chunk_index", 0)),
        content=document or "",
        embedding=[float(v) for v in embedding],
        metadata=json.loads(metadata.get("metadata_json") or "{}"),
        created_at=datetime.fromisoformat(metadata["created_at"]),
    )


class ChromaVectorStore(VectorStore):
    """Chroma vector store implementation.

    Example:
        config = StorageConfig(
            storage_type="chroma",
            collection_name="knowledge",
            extra_params={"persist_directory": "./chroma_db"}
        )
        store = ChromaVectorStore(config)
        await store.initialize()
    """

    def __init__(self, config: StorageConfig) -> None:
        super().__init__(config)
        persist_dir = config.extra_params.get("persist_directory") or "./chroma_db"
        self.persist_directory = os.path.expanduser(str(persist_dir))
        self.collection_name = sanitize_collection_name(config.collection_name)
        self._client = None
        self._collection = None

    def _require_collection(self):
        if self._collection is None:
            raise StorageError(
                message="Chroma vector store is not initialized",
                storage_type="chroma",
            )
        return self._collection

    async def initialize(self) -> None:
        """Create the persistent client and the cosine-space collection.

        Raises:
            StorageError: If chromadb is missing or initialization fails
        """
        try:
            import chromadb
        except ImportError as e:
            raise StorageError(
                message="chromadb not installed. Install with: pip install 'knowledge-engine[chroma]'",
                storage_type="chroma",
                original_error=e,
            )

        try:
            self._client = chromadb.PersistentClient(path=self.persist_directory)
            self._collection = await asyncio.to_thread(
                self._client.get_or_create_collection,
                name=self.collection_name,
                metadata={"hnsw:space": "cosine"},
            )
        except Exception as e:
            raise StorageError(
                message=f"Failed to initialize Chroma collection '{self.collection_name}': {str(e)}",
                storage_type="chroma",
                original_error=e,
            )

        logger.info(
            "chroma_vector_store_initialized",
            persist_directory=self.persist_directory,
            collection_name=self.collection_name,
        )

    async def insert_batch(self, records: list[VectorRecord]) -> None:
        if not records:
            return
        collection = self._require_collection()
        try:
            await asyncio.to_thread(
                collection.add,
                ids=[str(r.id) for r in records],
                embeddings=[r.embedding for r in records],
                metadatas=[_to_metadata(r) for r in records],
                documents=[r.content for r in records],
            )
        except Exception as e:
            raise StorageError(
                message=f"Failed to insert records: {str(e)}",
                storage_type="chroma",
                original_error=e,
            )
        logger.debug("records_inserted", count=len(records), source_id=records[0].source_id)

    async def delete_by_source(self, source_id: str) -> int:
        collection = self._require_collection()
        try:
            existing = await asyncio.to_thread(
                collection.get, where={"source_id": source_id}, include=[]
            )
            ids = existing["ids"]
            if ids:
                await asyncio.to_thread(collection.delete, ids=ids)
        except Exception as e:
            raise StorageError(
                message=f"Failed to delete source '{source_id}': {str(e)}",
                storage_type="chroma",
                original_error=e,
            )
        logger.debug("source_deleted", source_id=source_id, deleted=len(ids))
        return len(ids)

    async def get_by_source(self, source_id: str) -> list[VectorRecord]:
        collection = self._require_collection()
        try:
            found = await asyncio.to_thread(
                collection.get,
                where={"source_id": source_id},
                include=["documents", "metadatas", "embeddings"],
            )
        except Exception as e:
            raise StorageError(
                message=f"Failed to read source '{source_id}': {str(e)}",
                storage_type="chroma",
                original_error=e,
            )
        records = [
            _from_metadata(record_id, document, metadata, embedding)
            for record_id, document, metadata, embedding in zip(
                found["ids"], found["documents"], found["metadatas"], found["embeddings"]
            )
        ]
        records.sort(key=lambda r: r.chunk_index)
        return records

    async def search(
        self,
        query_vector: list[float],
        filters: Optional[SearchFilters] = None,
        top_k: int = 10,
        min_score: Optional[float] = None,
    ) -> list[RetrievalResult]:
        collection = self._require_collection()
        try:
            total = await asyncio.to_thread(collection.count)
            if total == 0 or top_k <= 0:
                return []
            found = await asyncio.to_thread(
                collection.query,
                query_embeddings=[query_vector],
                n_results=min(top_k, total),
                where=build_where(filters),
                include=["documents", "metadatas", "distances", "embeddings"],
            )
        except Exception as e:
            raise StorageError(
                message=f"Failed to search: {str(e)}",
                storage_type="chroma",
                original_error=e,
            )

        results: list[RetrievalResult] = []
        if not found["ids"] or not found["ids"][0]:
            return results

        for record_id, document, metadata, distance, embedding in zip(
            found["ids"][0],
            found["documents"][0],
            found["metadatas"][0],
            found["distances"][0],
            found["embeddings"][0],
        ):
            # Cosine space: distance = 1 - cosine similarity.
            similarity = clamp_similarity(1.0 - float(distance))
            if min_score is not None and similarity < min_score:
                continue
            record = _from_metadata(record_id, document, metadata, embedding)
            results.append(record_to_result(record, similarity))

        results.sort(key=lambda r: r.similarity, reverse=True)
        logger.debug("search_completed", results_count=len(results))
        return results

    async def count(self) -> int:
        collection = self._require_collection()
        try:
            return await asyncio.to_thread(collection.count)
        except Exception as e:
            raise StorageError(
                message=f"Failed to count records: {str(e)}",
                storage_type="chroma",
                original_error=e,
            )

    async def close(self) -> None:
        self._collection = None
        self._client = None
