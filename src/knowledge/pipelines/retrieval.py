"""Retrieval pipeline: embed a query and find the most similar knowledge.

Why this exists:
- Single entry point for knowledge search with graceful degradation
- Joins vector hits back to the record store and drops orphans
- Fuses knowledge search with per-file search for hybrid queries

Degraded paths never raise; they are reported in response metadata:
- ``error``: the query could not be embedded or every search path failed
- ``fallback``: the brute-force scan answered because the index failed
"""

import asyncio
import math
from typing import Any, Optional

from knowledge.config.schema import AppConfig
from knowledge.entities import (
    KnowledgeType,
    RetrievalResponse,
    RetrievalResult,
    SearchFilters,
)
from knowledge.observability.logging import get_logger
from knowledge.providers.base import EmbeddingProvider
from knowledge.retrieval.files import FileRetriever, NullFileRetriever, file_hit_to_result
from knowledge.retrieval.searchers import FallbackSearcher, IndexedSearcher, ScanSearcher
from knowledge.storage.base import RecordStore, VectorStore

logger = get_logger(__name__)


# Knowledge share of a hybrid query when no types are requested; file chunks
# reach hybrid results through the per-file leg only.
CURATED_TYPES = [t for t in KnowledgeType if t != KnowledgeType.FILE]


def _passage_key(result: RetrievalResult) -> tuple:
    chunk_index = result.metadata.get("chunk_index")
    if chunk_index is not None:
        return (result.source_id, chunk_index)
    return (result.source_id, result.content)


def _drop_duplicate_passages(results: list[RetrievalResult]) -> list[RetrievalResult]:
    """Keep the first (best scored) result per source passage."""
    seen: set[tuple] = set()
    unique: list[RetrievalResult] = []
    for result in results:
        key = _passage_key(result)
        if key in seen:
            continue
        seen.add(key)
        unique.append(result)
    return unique


def share(top_k: int, ratio: float, parts: int = 1) -> int:
    """ceil(top_k * ratio / parts), rounded first so 10 * 0.7 gives 7, not 8."""
    return max(1, math.ceil(round(top_k * ratio / parts, 6)))


class RetrievalService:
    """Query-time search over the vector store, record store and files."""

    def __init__(
        self,
        config: AppConfig,
        embedding_provider: EmbeddingProvider,
        vector_store: VectorStore,
        record_store: RecordStore,
        file_retriever: Optional[FileRetriever] = None,
    ) -> None:
        self.config = config
        self.embedding_provider = embedding_provider
        self.vector_store = vector_store
        self.record_store = record_store
        self.file_retriever = file_retriever or NullFileRetriever()
        self.searcher = FallbackSearcher(IndexedSearcher(vector_store), ScanSearcher(record_store))

    async def retrieve(
        self,
        query: str,
        owner_id: Optional[str] = None,
        types: Optional[list[KnowledgeType]] = None,
        scope_id: Optional[str] = None,
        top_k: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> RetrievalResponse:
        """Search knowledge by semantic similarity.

        Args:
            query: Natural-language query
            owner_id: Restrict to this owner's entries plus shared ones
            types: Restrict to these knowledge types
            scope_id: Restrict to one scope (entity id)
            top_k: Maximum results (config default when None)
            min_score: Similarity floor (config default when None)

        Returns:
            RetrievalResponse sorted by similarity, at most top_k results
        """
        top_k = self.config.retrieval.top_k if top_k is None else top_k
        min_score = self.config.retrieval.min_score if min_score is None else min_score
        metadata: dict[str, Any] = {
            "top_k": top_k,
            "min_score": min_score,
            "fallback": False,
        }
        if top_k <= 0:
            return RetrievalResponse(query=query, metadata=metadata)

        try:
            query_vector = await self.embedding_provider.embed_text(query)
        except Exception as e:
            logger.warning("query_embedding_failed", error=str(e))
            return RetrievalResponse(query=query, metadata={**metadata, "error": str(e)})
        if not query_vector:
            return RetrievalResponse(query=query, metadata={**metadata, "error": "empty query embedding"})

        filters = SearchFilters(owner_id=owner_id, scope_id=scope_id, types=types or [])
        candidate_k = top_k * self.config.retrieval.candidate_multiplier
        try:
            outcome = await self.searcher.search(query_vector, filters, candidate_k, min_score)
        except Exception as e:
            logger.error("all_search_paths_failed", error=str(e))
            return RetrievalResponse(
                query=query, metadata={**metadata, "fallback": True, "error": str(e)}
            )

        results = outcome.results
        if not outcome.fallback:
            results, orphans = await self._join_entries(results)
            metadata["orphans_dropped"] = orphans

        results = results[:top_k]
        metadata.update({"source": outcome.source, "fallback": outcome.fallback})
        if outcome.errors:
            metadata["search_errors"] = outcome.errors

        logger.info(
            "retrieval_completed",
            results=len(results),
            source=outcome.source,
            fallback=outcome.fallback,
        )
        return RetrievalResponse(query=query, results=results, metadata=metadata)

    async def _join_entries(self, results: list[RetrievalResult]) -> tuple[list[RetrievalResult], int]:
        """Refresh entry-backed hits from the record store; drop orphans."""
        entry_ids = [r.entry_id for r in results if r.entry_id is not None]
        if not entry_ids:
            return results, 0

        entries = await self.record_store.get_entries(entry_ids)
        joined: list[RetrievalResult] = []
        orphans = 0
        for result in results:
            if result.entry_id is None:
                joined.append(result)
                continue
            entry = entries.get(result.entry_id)
            if entry is None:
                orphans += 1
                logger.warning("orphaned_vector_record", entry_id=str(result.entry_id))
                continue
            joined.append(
                result.model_copy(
                    update={
                        "title": entry.title,
                        "content": entry.content,
                        "metadata": {**entry.metadata, **result.metadata},
                        "owner_id": entry.owner_id,
                        "created_at": entry.created_at,
                    }
                )
            )
        return joined, orphans

    async def hybrid_retrieve(
        self,
        query: str,
        owner_id: Optional[str] = None,
        file_ids: Optional[list[str]] = None,
        types: Optional[list[KnowledgeType]] = None,
        scope_id: Optional[str] = None,
        top_k: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> RetrievalResponse:
        """Fuse knowledge search with per-file search.

        The knowledge base gets ceil(top_k * knowledge_ratio) slots and each
        file ceil(top_k * file_ratio / len(file_ids)). Without explicit types the
        knowledge side skips file chunks. Sources run concurrently; a failing
        source contributes nothing. A passage found by both sides is kept once.
        """
        top_k = self.config.retrieval.top_k if top_k is None else top_k
        file_ids = list(dict.fromkeys(file_ids or []))
        if top_k <= 0:
            return RetrievalResponse(query=query, metadata={"hybrid": True, "top_k": top_k, "file_ids": file_ids})
        knowledge_k = share(top_k, self.config.retrieval.knowledge_ratio)
        per_file_k = share(top_k, self.config.retrieval.file_ratio, len(file_ids)) if file_ids else 0

        tasks = [
            self.retrieve(
                query,
                owner_id=owner_id,
                types=types or CURATED_TYPES,
                scope_id=scope_id,
                top_k=knowledge_k,
                min_score=min_score,
            )
        ]
        tasks.extend(self.file_retriever.query_file(file_id, query, per_file_k) for file_id in file_ids)
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        metadata: dict[str, Any] = {
            "hybrid": True,
            "top_k": top_k,
            "knowledge_top_k": knowledge_k,
            "per_file_top_k": per_file_k,
            "file_ids": file_ids,
        }
        merged: list[RetrievalResult] = []

        knowledge_outcome = outcomes[0]
        if isinstance(knowledge_outcome, BaseException):
            logger.warning("hybrid_knowledge_search_failed", error=str(knowledge_outcome))
            metadata["knowledge_error"] = str(knowledge_outcome)
            metadata["knowledge_count"] = 0
        else:
            merged.extend(knowledge_outcome.results)
            metadata["knowledge_count"] = len(knowledge_outcome.results)
            metadata["fallback"] = knowledge_outcome.metadata.get("fallback", False)
            if "error" in knowledge_outcome.metadata:
                metadata["knowledge_error"] = knowledge_outcome.metadata["error"]

        file_count = 0
        for file_id, outcome in zip(file_ids, outcomes[1:]):
            if isinstance(outcome, BaseException):
                logger.warning("hybrid_file_search_failed", file_id=file_id, error=str(outcome))
                continue
            merged.extend(file_hit_to_result(hit, owner_id) for hit in outcome)
            file_count += len(outcome)
        metadata["file_count"] = file_count

        merged.sort(key=lambda r: r.score, reverse=True)
        unique = _drop_duplicate_passages(merged)
        metadata["duplicates_dropped"] = len(merged) - len(unique)
        return RetrievalResponse(query=query, results=unique[:top_k], metadata=metadata)
