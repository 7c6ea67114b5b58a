"""File retrieval collaborators.

Uploaded files are searched per file id. The http retriever talks to an
external RAG service (POST {base_url}/query with {file_id, query, k}, answering
[[{page_content, metadata}, distance], ...]); the local retriever searches
this engine's own vector store restricted to the file's source id.

Every retriever built by create_file_retriever is wrapped in
GuardedFileRetriever, so a failing file source contributes no hits instead of
failing the whole hybrid query.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field

from knowledge.config.schema import FileRetrievalConfig, FileRetrievalType
from knowledge.core.similarity import clamp_similarity
from knowledge.entities import KnowledgeType, ResultOrigin, RetrievalResult, SearchFilters
from knowledge.observability.logging import get_logger
from knowledge.providers.base import EmbeddingProvider, ProviderError
from knowledge.storage.base import VectorStore

logger = get_logger(__name__)


class FileHit(BaseModel):
    """One passage returned for a file query."""

    file_id: str
    content: str
    distance: float
    filename: Optional[str] = None
    page: Optional[int] = None
    chunk_index: Optional[int] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


def file_hit_to_result(hit: FileHit, owner_id: Optional[str] = None) -> RetrievalResult:
    """Convert a file hit into a retrieval result (similarity = 1 - distance)."""
    similarity = clamp_similarity(1.0 - hit.distance)
    return RetrievalResult(
        source_id=hit.file_id,
        type=KnowledgeType.FILE,
        title=hit.filename or hit.file_id,
        content=hit.content,
        metadata={
            **hit.metadata,
            "file_id": hit.file_id,
            "filename": hit.filename,
            "page": hit.page,
            "chunk_index": hit.chunk_index,
        },
        owner_id=owner_id,
        origin=ResultOrigin.FILE,
        similarity=similarity,
        score=similarity,
    )


class FileRetriever(ABC):
    """Strategy interface for querying one file's passages."""

    name = "base"

    @abstractmethod
    async def query_file(self, file_id: str, query: str, k: int) -> list[FileHit]:
        pass

    async def close(self) -> None:
        return None


class NullFileRetriever(FileRetriever):
    """File retrieval disabled."""

    name = "none"

    async def query_file(self, file_id: str, query: str, k: int) -> list[FileHit]:
        return []


class HttpFileRetriever(FileRetriever):
    """Query an external RAG service over HTTP."""

    name = "http"

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def query_file(self, file_id: str, query: str, k: int) -> list[FileHit]:
        try:
            response = await self.client.post(
                "/query", json={"file_id": file_id, "query": query, "k": k}
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                message=f"File retrieval error: {e.response.status_code} - {e.response.text}",
                provider="http",
                original_error=e,
            )
        except httpx.HTTPError as e:
            raise ProviderError(
                message=f"File retrieval request failed: {str(e)}",
                provider="http",
                original_error=e,
            )

        if not isinstance(payload, list):
            raise ProviderError(
                message=f"Unexpected file retrieval response: {type(payload).__name__}",
                provider="http",
            )

        hits: list[FileHit] = []
        for item in payload:
            document, distance = item[0], item[1]
            metadata = dict(document.get("metadata") or {})
            hits.append(
                FileHit(
                    file_id=str(metadata.get("file_id") or file_id),
                    content=document.get("page_content", ""),
                    distance=float(distance),
                    filename=metadata.get("filename") or metadata.get("source"),
                    page=metadata.get("page"),
                    chunk_index=metadata.get("chunk_index"),
                )
            )
        return hits

    async def close(self) -> None:
        await self.client.aclose()


class VectorStoreFileRetriever(FileRetriever):
    """Search file chunks ingested into this engine's own vector store."""

    name = "local"

    def __init__(self, embedding_provider: EmbeddingProvider, vector_store: VectorStore) -> None:
        self.embedding_provider = embedding_provider
        self.vector_store = vector_store

    async def query_file(self, file_id: str, query: str, k: int) -> list[FileHit]:
        query_vector = await self.embedding_provider.embed_text(query)
        results = await self.vector_store.search(
            query_vector,
            filters=SearchFilters(source_ids=[file_id]),
            top_k=k,
        )
        return [
            FileHit(
                file_id=file_id,
                content=result.content,
                distance=1.0 - result.similarity,
                filename=result.metadata.get("filename") or result.title or None,
                page=result.metadata.get("page"),
                chunk_index=result.metadata.get("chunk_index"),
            )
            for result in results
        ]


class GuardedFileRetriever(FileRetriever):
    """Turn any failure of the wrapped retriever into an empty hit list."""

    def __init__(self, inner: FileRetriever) -> None:
        self.inner = inner
        self.name = inner.name

    async def query_file(self, file_id: str, query: str, k: int) -> list[FileHit]:
        try:
            return await self.inner.query_file(file_id, query, k)
        except Exception as e:
            logger.warning(
                "file_retrieval_failed",
                retriever=self.inner.name,
                file_id=file_id,
                error=str(e),
            )
            return []

    async def close(self) -> None:
        await self.inner.close()


def create_file_retriever(
    config: FileRetrievalConfig,
    embedding_provider: Optional[EmbeddingProvider] = None,
    vector_store: Optional[VectorStore] = None,
) -> FileRetriever:
    """Build the configured file retriever, wrapped in GuardedFileRetriever.

    Raises:
        ValueError: If the local retriever is requested without its collaborators
    """
    if config.provider == FileRetrievalType.HTTP:
        inner: FileRetriever = HttpFileRetriever(
            base_url=config.base_url,
            api_key=config.api_key,
            timeout=config.timeout,
        )
    elif config.provider == FileRetrievalType.LOCAL:
        if embedding_provider is None or vector_store is None:
            raise ValueError("local file retrieval needs an embedding provider and a vector store")
        inner = VectorStoreFileRetriever(embedding_provider, vector_store)
    else:
        inner = NullFileRetriever()
    return GuardedFileRetriever(inner)
