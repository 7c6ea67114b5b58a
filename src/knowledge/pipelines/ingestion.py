"""Ingestion pipeline: chunk, embed and store one source as an atomic unit.

Why this exists:
- Turns raw text into vector records in embedding batches
- Replaces a source's previous records so re-ingestion is idempotent
- Rolls back partial writes so a failed ingestion leaves no records behind

How to use:
    from knowledge.pipelines.ingestion import IngestionPipeline

    pipeline = IngestionPipeline(config, embedding_provider, vector_store)
    result = await pipeline.ingest("file-42", text, owner_id="u1",
                                   scope_metadata={"entity_id": "proj-7"})
"""

from dataclasses import dataclass
from typing import Any, Optional

from knowledge.config.schema import AppConfig
from knowledge.core.chunking import chunk_with_config
from knowledge.entities import Chunk, KnowledgeType, VectorRecord
from knowledge.observability.logging import get_logger
from knowledge.providers.base import EmbeddingProvider, ProviderError
from knowledge.storage.base import VectorStore

logger = get_logger(__name__)


@dataclass
class IngestionResult:
    """Result of ingesting one source."""

    source_id: str
    record_count: int
    batch_count: int
    replaced_count: int = 0


class IngestionError(Exception):
    """Ingestion failed; the source's partial records have been rolled back."""

    pass


class IngestionPipeline:
    """Pipeline for ingesting text sources into the vector store."""

    def __init__(
        self,
        config: AppConfig,
        embedding_provider: EmbeddingProvider,
        vector_store: VectorStore,
    ) -> None:
        self.config = config
        self.embedding_provider = embedding_provider
        self.vector_store = vector_store

    def _expected_dimension(self) -> int:
        return self.config.embedding.dimension or self.embedding_provider.get_dimension()

    def _validate_vectors(self, vectors: list[list[float]], batch: list[Chunk], batch_num: int) -> None:
        if len(vectors) != len(batch):
            raise ProviderError(
                message=(
                    f"Embedding count mismatch in batch {batch_num}: "
                    f"expected {len(batch)}, got {len(vectors)}"
                ),
                provider=self.embedding_provider.config.provider_type,
            )
        expected = self._expected_dimension()
        for i, vector in enumerate(vectors):
            if len(vector) != expected:
                raise ProviderError(
                    message=(
                        f"Embedding dimension mismatch in batch {batch_num} at index {i}: "
                        f"expected {expected}, got {len(vector)}"
                    ),
                    provider=self.embedding_provider.config.provider_type,
                )

    async def ingest(
        self,
        source_id: str,
        text: str,
        owner_id: Optional[str] = None,
        scope_metadata: Optional[dict[str, Any]] = None,
        entry_type: KnowledgeType = KnowledgeType.FILE,
        title: Optional[str] = None,
    ) -> IngestionResult:
        """Chunk, embed and store a source, replacing any earlier version.

        Args:
            source_id: Identifier grouping all records of this source
            text: Raw text; it is cleaned and chunked
            owner_id: Owner of the records (None = shared)
            scope_metadata: Copied onto every record; ``entity_id`` becomes the scope id
            entry_type: Knowledge type recorded on each record
            title: Display title (e.g. the filename)

        Returns:
            IngestionResult with the number of records written

        Raises:
            IngestionError: If there is nothing to index, or any embedding or
                storage step fails (after rolling the source back)
        """
        if not source_id:
            raise IngestionError("source_id is required")

        chunks = chunk_with_config(text or "", self.config.chunking)
        if not chunks:
            logger.warning("no_chunks_created", source_id=source_id)
            raise IngestionError("no content to index")

        scope_metadata = dict(scope_metadata or {})
        scope_id = scope_metadata.get("entity_id")
        batch_size = self.config.embedding.batch_size
        total_batches = (len(chunks) + batch_size - 1) // batch_size
        record_count = 0

        logger.info(
            "ingestion_started",
            source_id=source_id,
            chunk_count=len(chunks),
            batch_size=batch_size,
            total_batches=total_batches,
        )

        try:
            replaced = await self.vector_store.delete_by_source(source_id)
            if replaced:
                logger.info("replaced_existing_records", source_id=source_id, deleted=replaced)

            for i in range(0, len(chunks), batch_size):
                batch = chunks[i : i + batch_size]
                batch_num = i // batch_size + 1

                vectors = await self.embedding_provider.embed_batch([c.text for c in batch])
                self._validate_vectors(vectors, batch, batch_num)

                records = [
                    VectorRecord(
                        source_id=source_id,
                        owner_id=owner_id,
                        scope_id=str(scope_id) if scope_id is not None else None,
                        entry_type=entry_type,
                        title=title or source_id,
                        chunk_index=chunk.chunk_index,
                        content=chunk.text,
                        embedding=vector,
                        metadata={
                            **scope_metadata,
                            "file_id": source_id,
                            "start_char": chunk.start_char,
                            "end_char": chunk.end_char,
                        },
                    )
                    for chunk, vector in zip(batch, vectors)
                ]
                await self.vector_store.insert_batch(records)
                record_count += len(records)

                logger.debug(
                    "embedding_batch_stored",
                    source_id=source_id,
                    batch_num=batch_num,
                    total_batches=total_batches,
                    record_count=len(records),
                )

        except Exception as e:
            logger.error(
                "ingestion_failed",
                source_id=source_id,
                records_written=record_count,
                error=str(e),
            )
            await self._rollback(source_id)
            raise IngestionError(f"Failed to ingest source '{source_id}': {e}") from e

        logger.info("ingestion_completed", source_id=source_id, record_count=record_count)
        return IngestionResult(
            source_id=source_id,
            record_count=record_count,
            batch_count=total_batches,
            replaced_count=replaced,
        )

    async def _rollback(self, source_id: str) -> None:
        """Best-effort removal of everything written for the source."""
        try:
            deleted = await self.vector_store.delete_by_source(source_id)
            logger.info("rollback_successful", source_id=source_id, deleted=deleted)
        except Exception as rollback_error:
            logger.error("rollback_failed", source_id=source_id, error=str(rollback_error))
