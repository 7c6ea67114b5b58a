"""Shared fixtures and test doubles."""

from typing import Optional

import pytest

from knowledge.config.schema import (
    AppConfig,
    ChunkingConfig,
    EmbeddingConfig,
    FileRetrievalConfig,
    RecordStoreConfig,
    RerankConfig,
    VectorStoreConfig,
)
from knowledge.entities import RetrievalResult, SearchFilters, VectorRecord
from knowledge.providers.base import ProviderConfig, ProviderError, RerankProvider
from knowledge.providers.mock import HashEmbeddingProvider
from knowledge.storage.base import StorageConfig, StorageError
from knowledge.storage.memory import InMemoryRecordStore, InMemoryVectorStore

DIMENSION = 64


def make_config(**overrides) -> AppConfig:
    """AppConfig wired to the mock provider and in-memory stores."""
    values = dict(
        embedding=EmbeddingConfig(provider="mock", model_name="hash", extra_params={"dimension": DIMENSION}),
        rerank=RerankConfig(provider="lexical"),
        vector_store=VectorStoreConfig(store_type="memory"),
        record_store=RecordStoreConfig(store_type="memory", connection_string=":memory:"),
        chunking=ChunkingConfig(chunk_size=200, chunk_overlap=20),
        file_retrieval=FileRetrievalConfig(provider="none"),
    )
    values.update(overrides)
    return AppConfig(**values)


class FailingEmbeddingProvider(HashEmbeddingProvider):
    """Hash embeddings that fail on chosen embed_batch calls or on every embed_text."""

    def __init__(self, fail_on_batch: Optional[int] = None, fail_text: bool = False) -> None:
        super().__init__(
            ProviderConfig(provider_type="mock", model_name="hash", extra_params={"dimension": DIMENSION})
        )
        self.fail_on_batch = fail_on_batch
        self.fail_text = fail_text
        self.batch_calls = 0

    async def embed_text(self, text: str) -> list[float]:
        if self.fail_text:
            raise ProviderError(message="embedding service unavailable", provider="mock")
        return await super().embed_text(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls += 1
        if self.fail_on_batch is not None and self.batch_calls == self.fail_on_batch:
            raise ProviderError(message=f"batch {self.batch_calls} failed", provider="mock")
        return await super().embed_batch(texts)


class ShortVectorProvider(HashEmbeddingProvider):
    """Claims DIMENSION but returns shorter vectors."""

    def __init__(self) -> None:
        super().__init__(
            ProviderConfig(provider_type="mock", model_name="hash", extra_params={"dimension": DIMENSION})
        )

    async def embed_text(self, text: str) -> list[float]:
        return (await super().embed_text(text))[: DIMENSION // 2]


class BrokenIndexVectorStore(InMemoryVectorStore):
    """Vector store whose search and (optionally) writes fail."""

    def __init__(self, fail_writes: bool = False) -> None:
        super().__init__(StorageConfig(storage_type="memory"))
        self.fail_writes = fail_writes

    async def insert_batch(self, records: list[VectorRecord]) -> None:
        if self.fail_writes:
            raise StorageError("index unavailable", storage_type="memory")
        await super().insert_batch(records)

    async def search(
        self,
        query_vector: list[float],
        filters: Optional[SearchFilters] = None,
        top_k: int = 10,
        min_score: Optional[float] = None,
    ) -> list[RetrievalResult]:
        raise StorageError("index unavailable", storage_type="memory")


class StaticRerankProvider(RerankProvider):
    """Returns preset scores, or raises when scores is None."""

    def __init__(self, scores: Optional[list[float]]) -> None:
        super().__init__(ProviderConfig(provider_type="static", model_name="static"))
        self.scores = scores

    async def score(self, query: str, texts: list[str]) -> list[float]:
        if self.scores is None:
            raise ProviderError(message="rerank model unavailable", provider="static")
        return list(self.scores)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def embedding_provider():
    return HashEmbeddingProvider(
        ProviderConfig(provider_type="mock", model_name="hash", extra_params={"dimension": DIMENSION})
    )


@pytest.fixture
async def vector_store():
    store = InMemoryVectorStore(StorageConfig(storage_type="memory"))
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
async def record_store():
    store = InMemoryRecordStore(StorageConfig(storage_type="memory"))
    await store.initialize()
    yield store
    await store.close()
