"""Vector search strategies.

IndexedSearcher asks the vector store; ScanSearcher computes cosine
similarity over embeddings kept in the record store. FallbackSearcher runs
the first and switches to the second when the index fails, reporting which
one answered.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from knowledge.core.similarity import cosine_similarity
from knowledge.entities import KnowledgeEntry, RetrievalResult, SearchFilters
from knowledge.observability.logging import get_logger
from knowledge.storage.base import RecordStore, VectorStore

logger = get_logger(__name__)


@dataclass
class SearchOutcome:
    """Results of one search plus which strategy produced them."""

    results: list[RetrievalResult]
    source: str
    fallback: bool = False
    errors: list[str] = field(default_factory=list)


class VectorSearcher(ABC):
    """Strategy interface for similarity search."""

    name = "base"

    @abstractmethod
    async def search(
        self,
        query_vector: list[float],
        filters: SearchFilters,
        top_k: int,
        min_score: Optional[float] = None,
    ) -> list[RetrievalResult]:
        pass


class IndexedSearcher(VectorSearcher):
    """Search through the vector store's index."""

    name = "index"

    def __init__(self, vector_store: VectorStore) -> None:
        self.vector_store = vector_store

    async def search(
        self,
        query_vector: list[float],
        filters: SearchFilters,
        top_k: int,
        min_score: Optional[float] = None,
    ) -> list[RetrievalResult]:
        return await self.vector_store.search(
            query_vector, filters=filters, top_k=top_k, min_score=min_score
        )


def entry_to_result(entry: KnowledgeEntry, similarity: float) -> RetrievalResult:
    return RetrievalResult(
        id=entry.id,
        source_id=str(entry.id),
        entry_id=entry.id,
        type=entry.type,
        title=entry.title,
        content=entry.content,
        metadata=dict(entry.metadata),
        owner_id=entry.owner_id,
        scope_id=entry.scope_id,
        similarity=similarity,
        score=similarity,
        created_at=entry.created_at,
    )


class ScanSearcher(VectorSearcher):
    """Brute-force cosine scan over record-store embeddings.

    Only owner, type and scope filters apply; source filters have no meaning
    for knowledge entries.
    """

    name = "scan"

    def __init__(self, record_store: RecordStore) -> None:
        self.record_store = record_store

    async def search(
        self,
        query_vector: list[float],
        filters: SearchFilters,
        top_k: int,
        min_score: Optional[float] = None,
    ) -> list[RetrievalResult]:
        entries = await self.record_store.find_for_scan(
            owner_id=filters.owner_id,
            types=filters.types or None,
            scope_id=filters.scope_id,
        )
        scored: list[RetrievalResult] = []
        for entry in entries:
            similarity = cosine_similarity(query_vector, entry.embedding)
            if min_score is not None and similarity < min_score:
                continue
            scored.append(entry_to_result(entry, similarity))

        scored.sort(key=lambda r: r.similarity, reverse=True)
        logger.debug("scan_search_completed", scanned=len(entries), matched=len(scored))
        return scored[:top_k]


class FallbackSearcher:
    """Run the primary searcher; on failure run the fallback.

    A failing fallback propagates its error so the caller can report it.
    """

    def __init__(self, primary: VectorSearcher, fallback: VectorSearcher) -> None:
        self.primary = primary
        self.fallback = fallback

    async def search(
        self,
        query_vector: list[float],
        filters: SearchFilters,
        top_k: int,
        min_score: Optional[float] = None,
    ) -> SearchOutcome:
        try:
            results = await self.primary.search(query_vector, filters, top_k, min_score)
            return SearchOutcome(results=results, source=self.primary.name)
        except Exception as e:
            logger.warning(
                "primary_search_failed",
                searcher=self.primary.name,
                fallback=self.fallback.name,
                error=str(e),
            )
            results = await self.fallback.search(query_vector, filters, top_k, min_score)
            return SearchOutcome(
                results=results,
                source=self.fallback.name,
                fallback=True,
                errors=[str(e)],
            )
