"""Storage layer: vector stores and knowledge record stores."""

from knowledge.storage.base import (
    RecordStore,
    StorageConfig,
    StorageError,
    VectorStore,
)


def create_vector_store(config: StorageConfig) -> VectorStore:
    """Factory function to create vector stores based on configuration.

    Args:
        config: Storage configuration with storage_type

    Returns:
        Vector store; call ``initialize()`` before use

    Raises:
        ValueError: If storage_type is unknown
        StorageError: If dependencies are missing

    Example:
        config = StorageConfig(
            storage_type="chroma",
            collection_name="knowledge",
            extra_params={"persist_directory": "./chroma_db"}
        )
        store = create_vector_store(config)
        await store.initialize()
    """
    storage_type = config.storage_type.lower()

    if storage_type == "memory":
        from knowledge.storage.memory import InMemoryVectorStore

        return InMemoryVectorStore(config)

    elif storage_type == "chroma":
        from knowledge.storage.chroma import ChromaVectorStore

        return ChromaVectorStore(config)

    else:
        raise ValueError(
            f"Unknown vector store type: '{storage_type}'. "
            f"Supported types: memory, chroma"
        )


def create_record_store(config: StorageConfig) -> RecordStore:
    """Factory function to create knowledge record stores.

    Raises:
        ValueError: If storage_type is unknown
    """
    storage_type = config.storage_type.lower()

    if storage_type == "memory":
        from knowledge.storage.memory import InMemoryRecordStore

        return InMemoryRecordStore(config)

    elif storage_type == "sqlite":
        from knowledge.storage.sqlite import SQLiteRecordStore

        return SQLiteRecordStore(config)

    else:
        raise ValueError(
            f"Unknown record store type: '{storage_type}'. "
            f"Supported types: memory, sqlite"
        )


__all__ = [
    "RecordStore",
    "StorageConfig",
    "StorageError",
    "VectorStore",
    "create_record_store",
    "create_vector_store",
]
