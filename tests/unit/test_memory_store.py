"""Unit tests for InMemory storage implementations."""

from uuid import uuid4

import pytest

from knowledge.entities import KnowledgeEntry, KnowledgeType, SearchFilters, VectorRecord
from knowledge.storage import create_record_store, create_vector_store
from knowledge.storage.base import StorageConfig
from knowledge.storage.memory import InMemoryRecordStore, InMemoryVectorStore


def make_record(source_id="src", embedding=(1.0, 0.0), owner_id=None, scope_id=None,
                entry_type=KnowledgeType.FILE, chunk_index=0, content="chunk"):
    return VectorRecord(
        source_id=source_id,
        owner_id=owner_id,
        scope_id=scope_id,
        entry_type=entry_type,
        chunk_index=chunk_index,
        content=content,
        embedding=list(embedding),
    )


@pytest.mark.asyncio
class TestInMemoryVectorStore:
    """Test InMemoryVectorStore functionality."""

    @pytest.fixture
    async def store(self):
        store = InMemoryVectorStore(StorageConfig(storage_type="memory", collection_name="test"))
        await store.initialize()
        yield store
        await store.close()

    async def test_insert_and_get_by_source(self, store):
        await store.insert_batch([
            make_record(chunk_index=1, content="second"),
            make_record(chunk_index=0, content="first"),
        ])
        records = await store.get_by_source("src")
        assert [r.content for r in records] == ["first", "second"]
        assert await store.count() == 2

    async def test_delete_by_source(self, store):
        await store.insert_batch([make_record("a"), make_record("a"), make_record("b")])
        assert await store.delete_by_source("a") == 2
        assert await store.delete_by_source("a") == 0
        assert await store.count() == 1

    async def test_search_orders_by_similarity(self, store):
        await store.insert_batch([
            make_record("far", embedding=(0.0, 1.0)),
            make_record("near", embedding=(1.0, 0.1)),
        ])
        results = await store.search([1.0, 0.0], top_k=2)
        assert [r.source_id for r in results] == ["near", "far"]
        assert results[0].similarity > results[1].similarity
        assert results[0].score == results[0].similarity

    async def test_search_min_score(self, store):
        await store.insert_batch([
            make_record("far", embedding=(0.0, 1.0)),
            make_record("near", embedding=(1.0, 0.0)),
        ])
        results = await store.search([1.0, 0.0], top_k=10, min_score=0.5)
        assert [r.source_id for r in results] == ["near"]

    async def test_search_owner_filter_includes_shared(self, store):
        await store.insert_batch([
            make_record("mine", owner_id="u1"),
            make_record("theirs", owner_id="u2"),
            make_record("shared", owner_id=None),
        ])
        results = await store.search([1.0, 0.0], SearchFilters(owner_id="u1"), top_k=10)
        assert {r.source_id for r in results} == {"mine", "shared"}

    async def test_search_type_scope_and_source_filters(self, store):
        await store.insert_batch([
            make_record("a", scope_id="p1", entry_type=KnowledgeType.QA_PAIR),
            make_record("b", scope_id="p1", entry_type=KnowledgeType.FILE),
            make_record("c", scope_id="p2", entry_type=KnowledgeType.QA_PAIR),
        ])
        by_type = await store.search([1.0, 0.0], SearchFilters(types=[KnowledgeType.QA_PAIR]))
        assert {r.source_id for r in by_type} == {"a", "c"}
        by_scope = await store.search([1.0, 0.0], SearchFilters(scope_id="p1"))
        assert {r.source_id for r in by_scope} == {"a", "b"}
        by_source = await store.search([1.0, 0.0], SearchFilters(source_ids=["c"]))
        assert [r.source_id for r in by_source] == ["c"]

    async def test_empty_store_search(self, store):
        assert await store.search([1.0, 0.0]) == []


@pytest.mark.asyncio
class TestInMemoryRecordStore:
    """Test InMemoryRecordStore functionality."""

    @pytest.fixture
    async def store(self):
        store = InMemoryRecordStore(StorageConfig(storage_type="memory"))
        await store.initialize()
        yield store
        await store.close()

    async def test_add_and_get(self, store):
        entry = KnowledgeEntry(type=KnowledgeType.SYNONYM, title="t", content="c", embedding=[1.0])
        await store.add_entry(entry)
        fetched = await store.get_entry(entry.id)
        assert fetched == entry
        assert await store.get_entry(uuid4()) is None

    async def test_returned_entries_are_copies(self, store):
        entry = KnowledgeEntry(type=KnowledgeType.SYNONYM, title="t", content="c")
        await store.add_entry(entry)
        fetched = await store.get_entry(entry.id)
        fetched.metadata["changed"] = True
        assert "changed" not in (await store.get_entry(entry.id)).metadata

    async def test_update_and_delete(self, store):
        entry = KnowledgeEntry(type=KnowledgeType.SYNONYM, title="t", content="c")
        assert await store.update_entry(entry) is False
        await store.add_entry(entry)
        assert await store.update_entry(entry.model_copy(update={"title": "new"})) is True
        assert (await store.get_entry(entry.id)).title == "new"
        assert await store.delete_entries([entry.id, uuid4()]) == 1
        assert await store.count() == 0

    async def test_list_roots_and_children(self, store):
        parent = KnowledgeEntry(type=KnowledgeType.SCHEMA, title="db", content="db")
        child = KnowledgeEntry(type=KnowledgeType.SCHEMA, title="tbl", content="tbl", parent_id=parent.id)
        await store.add_entry(parent)
        await store.add_entry(child)
        roots = await store.list_entries()
        assert [e.id for e in roots] == [parent.id]
        assert [e.id for e in await store.get_children(parent.id)] == [child.id]
        assert len(await store.list_entries(roots_only=False)) == 2

    async def test_find_for_scan_skips_unembedded(self, store):
        embedded = KnowledgeEntry(type=KnowledgeType.QA_PAIR, title="a", content="a", embedding=[1.0])
        bare = KnowledgeEntry(type=KnowledgeType.QA_PAIR, title="b", content="b")
        await store.add_entry(embedded)
        await store.add_entry(bare)
        assert [e.id for e in await store.find_for_scan()] == [embedded.id]

    async def test_find_qa_by_question_respects_owner(self, store):
        entry = KnowledgeEntry(
            type=KnowledgeType.QA_PAIR, title="q", content="c", owner_id="u1",
            metadata={"question": "What?", "answer": "That."},
        )
        await store.add_entry(entry)
        assert (await store.find_qa_by_question("What?", owner_id="u1")).id == entry.id
        assert await store.find_qa_by_question("What?", owner_id="u2") is None

    async def test_find_by_file_and_pending(self, store):
        linked = KnowledgeEntry(
            type=KnowledgeType.BUSINESS_KNOWLEDGE, title="doc", content="c", metadata={"file_id": "f1"}
        )
        pending = KnowledgeEntry(
            type=KnowledgeType.SYNONYM, title="s", content="c", metadata={"embedding_pending": True}
        )
        await store.add_entry(linked)
        await store.add_entry(pending)
        assert [e.id for e in await store.find_by_file("f1")] == [linked.id]
        assert [e.id for e in await store.find_pending_embeddings()] == [pending.id]


class TestFactories:
    def test_create_memory_stores(self):
        assert isinstance(create_vector_store(StorageConfig(storage_type="memory")), InMemoryVectorStore)
        assert isinstance(create_record_store(StorageConfig(storage_type="memory")), InMemoryRecordStore)

    def test_unknown_types(self):
        with pytest.raises(ValueError):
            create_vector_store(StorageConfig(storage_type="faiss"))
        with pytest.raises(ValueError):
            create_record_store(StorageConfig(storage_type="postgres"))
