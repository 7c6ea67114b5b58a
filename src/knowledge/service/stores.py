"""Store registry.

Owns the process's store handles: each store is created on first request,
initialized once under a lock, shared by every caller asking for the same
collection, and closed together on shutdown.
"""

import asyncio
from typing import Callable, Optional

from knowledge.config.schema import AppConfig
from knowledge.observability.logging import get_logger
from knowledge.storage import create_record_store, create_vector_store
from knowledge.storage.base import RecordStore, StorageConfig, VectorStore

logger = get_logger(__name__)


def vector_store_config(config: AppConfig, collection_name: Optional[str] = None) -> StorageConfig:
    """Translate the vector_store section into a StorageConfig."""
    section = config.vector_store
    persist_directory = section.persist_directory or (config.data_dir / "chroma")
    return StorageConfig(
        storage_type=section.store_type.value,
        collection_name=collection_name or section.collection_name,
        extra_params={**section.extra_params, "persist_directory": str(persist_directory)},
    )


def record_store_config(config: AppConfig) -> StorageConfig:
    """Translate the record_store section into a StorageConfig."""
    section = config.record_store
    return StorageConfig(
        storage_type=section.store_type.value,
        connection_string=section.connection_string,
        extra_params=section.extra_params,
    )


class StoreRegistry:
    """Get-or-create registry of initialized stores."""

    def __init__(
        self,
        config: AppConfig,
        vector_store_factory: Callable[[StorageConfig], VectorStore] = create_vector_store,
        record_store_factory: Callable[[StorageConfig], RecordStore] = create_record_store,
    ) -> None:
        self.config = config
        self._vector_store_factory = vector_store_factory
        self._record_store_factory = record_store_factory
        self._vector_stores: dict[str, VectorStore] = {}
        self._record_store: Optional[RecordStore] = None
        self._lock = asyncio.Lock()

    async def vector_store(self, collection_name: Optional[str] = None) -> VectorStore:
        """Return the initialized vector store for a collection."""
        storage_config = vector_store_config(self.config, collection_name)
        key = storage_config.collection_name
        async with self._lock:
            store = self._vector_stores.get(key)
            if store is None:
                store = self._vector_store_factory(storage_config)
                await store.initialize()
                self._vector_stores[key] = store
                logger.info("vector_store_ready", collection=key, store_type=storage_config.storage_type)
            return store

    async def record_store(self) -> RecordStore:
        """Return the initialized record store."""
        async with self._lock:
            if self._record_store is None:
                storage_config = record_store_config(self.config)
                store = self._record_store_factory(storage_config)
                await store.initialize()
                self._record_store = store
                logger.info("record_store_ready", store_type=storage_config.storage_type)
            return self._record_store

    async def close(self) -> None:
        """Close every store created so far; later requests reopen them."""
        async with self._lock:
            stores: list = list(self._vector_stores.values())
            if self._record_store is not None:
                stores.append(self._record_store)
            self._vector_stores.clear()
            self._record_store = None

        for store in stores:
            try:
                await store.close()
            except Exception as e:
                logger.warning("store_close_failed", store=type(store).__name__, error=str(e))

    async def __aenter__(self) -> "StoreRegistry":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
