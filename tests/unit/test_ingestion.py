"""Unit tests for the ingestion pipeline."""

import pytest

from conftest import FailingEmbeddingProvider, ShortVectorProvider, make_config
from knowledge.config.schema import ChunkingConfig, EmbeddingConfig
from knowledge.entities import KnowledgeType
from knowledge.pipelines.ingestion import IngestionError, IngestionPipeline

DOCUMENT = " ".join(f"Sentence number {i} about the billing system." for i in range(40))


def small_batches_config(batch_size=2):
    return make_config(
        embedding=EmbeddingConfig(provider="mock", model_name="hash", batch_size=batch_size),
        chunking=ChunkingConfig(chunk_size=200, chunk_overlap=0),
    )


@pytest.mark.asyncio
class TestIngestionPipeline:
    """Test IngestionPipeline functionality."""

    async def test_ingest_writes_one_record_per_chunk(self, config, embedding_provider, vector_store):
        pipeline = IngestionPipeline(config, embedding_provider, vector_store)

        result = await pipeline.ingest(
            "file-1", DOCUMENT, owner_id="u1", scope_metadata={"entity_id": "proj"}, title="billing.txt"
        )

        records = await vector_store.get_by_source("file-1")
        assert result.record_count == len(records) > 1
        assert [r.chunk_index for r in records] == list(range(len(records)))
        first = records[0]
        assert first.owner_id == "u1"
        assert first.scope_id == "proj"
        assert first.entry_type == KnowledgeType.FILE
        assert first.title == "billing.txt"
        assert first.metadata["file_id"] == "file-1"
        assert first.metadata["entity_id"] == "proj"
        assert DOCUMENT[first.metadata["start_char"] : first.metadata["end_char"]] == first.content

    async def test_reingest_replaces_previous_records(self, config, embedding_provider, vector_store):
        pipeline = IngestionPipeline(config, embedding_provider, vector_store)

        first = await pipeline.ingest("file-1", DOCUMENT)
        second = await pipeline.ingest("file-1", DOCUMENT)

        assert second.replaced_count == first.record_count
        assert await vector_store.count() == first.record_count

    async def test_other_sources_untouched(self, config, embedding_provider, vector_store):
        pipeline = IngestionPipeline(config, embedding_provider, vector_store)
        await pipeline.ingest("file-1", DOCUMENT)
        before = await vector_store.count()

        await pipeline.ingest("file-2", "A short second file.")

        assert await vector_store.count() == before + 1

    async def test_batches(self, embedding_provider, vector_store):
        config = small_batches_config(batch_size=2)
        pipeline = IngestionPipeline(config, embedding_provider, vector_store)
        result = await pipeline.ingest("file-1", DOCUMENT)
        assert result.batch_count == (result.record_count + 1) // 2

    async def test_failed_batch_rolls_back(self, vector_store):
        """Batch 2 of 3 fails: nothing from the source remains."""
        config = small_batches_config(batch_size=1)
        text = "x" * 200 + " " + "y" * 200 + " " + "z" * 100
        provider = FailingEmbeddingProvider(fail_on_batch=2)
        pipeline = IngestionPipeline(config, provider, vector_store)

        with pytest.raises(IngestionError):
            await pipeline.ingest("file-1", text)

        assert provider.batch_calls == 2
        assert await vector_store.get_by_source("file-1") == []

    async def test_failed_reingest_removes_old_version(self, config, embedding_provider, vector_store):
        await IngestionPipeline(config, embedding_provider, vector_store).ingest("file-1", DOCUMENT)

        failing = IngestionPipeline(config, FailingEmbeddingProvider(fail_on_batch=1), vector_store)
        with pytest.raises(IngestionError):
            await failing.ingest("file-1", DOCUMENT)

        assert await vector_store.get_by_source("file-1") == []

    async def test_dimension_mismatch_fails(self, config, vector_store):
        pipeline = IngestionPipeline(config, ShortVectorProvider(), vector_store)

        with pytest.raises(IngestionError, match="dimension mismatch"):
            await pipeline.ingest("file-1", DOCUMENT)

        assert await vector_store.count() == 0

    async def test_configured_dimension_wins(self, embedding_provider, vector_store):
        config = make_config(
            embedding=EmbeddingConfig(provider="mock", model_name="hash", dimension=128)
        )
        pipeline = IngestionPipeline(config, embedding_provider, vector_store)
        with pytest.raises(IngestionError):
            await pipeline.ingest("file-1", "some text")

    @pytest.mark.parametrize("text", ["", "   \n\t ", "\x00\x01"])
    async def test_no_content(self, config, embedding_provider, vector_store, text):
        pipeline = IngestionPipeline(config, embedding_provider, vector_store)
        with pytest.raises(IngestionError, match="no content"):
            await pipeline.ingest("file-1", text)

    async def test_source_id_required(self, config, embedding_provider, vector_store):
        pipeline = IngestionPipeline(config, embedding_provider, vector_store)
        with pytest.raises(IngestionError):
            await pipeline.ingest("", DOCUMENT)
