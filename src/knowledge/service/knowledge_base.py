"""Knowledge base service.

Why this exists:
- One facade over the record store, vector store, ingestion and retrieval
- Keeps the per-type rules for building entries in one place
- Keeps the record store and vector store in step on add, update and delete

Write order is record store first, vector store second. When the vector
write fails the entry stays in the record store and remains reachable through
the brute-force scan; there is no background reconciliation.

How to use:
    async with StoreRegistry(config) as registry:
        kb = await KnowledgeBase.from_config(config, registry)
        entry_id = await kb.add_entry(KnowledgeType.QA_PAIR,
                                      {"question": "...", "answer": "..."},
                                      owner_id="u1")
        response = await kb.query("...", owner_id="u1")
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ValidationError

from knowledge.config.schema import AppConfig
from knowledge.entities import (
    KnowledgeEntry,
    KnowledgeType,
    RetrievalResponse,
    SchemaPayload,
    SearchFilters,
    VectorRecord,
)
from knowledge.entities.payloads import payload_model, render, table_content
from knowledge.observability.logging import get_logger
from knowledge.pipelines.ingestion import IngestionPipeline
from knowledge.pipelines.retrieval import RetrievalService
from knowledge.providers import ProviderConfig, create_embedding_provider
from knowledge.providers.base import EmbeddingProvider
from knowledge.retrieval.files import FileRetriever, create_file_retriever
from knowledge.retrieval.rerankers import BaseReranker, RerankWeights, create_reranker
from knowledge.service.stores import StoreRegistry
from knowledge.storage.base import RecordStore, VectorStore

logger = get_logger(__name__)


class KnowledgeBaseError(Exception):
    """Invalid knowledge base request (bad payload, missing parent, wrong type)."""

    pass


@dataclass
class EntryTree:
    """A root entry and, when requested, its children."""

    entry: KnowledgeEntry
    children: list[KnowledgeEntry] = field(default_factory=list)


def _coerce_type(entry_type: Union[KnowledgeType, str]) -> KnowledgeType:
    try:
        return KnowledgeType(entry_type)
    except ValueError as e:
        raise KnowledgeBaseError(f"Unknown knowledge type: {entry_type!r}") from e


class KnowledgeBase:
    """Add, update, delete, ingest and query knowledge."""

    def __init__(
        self,
        config: AppConfig,
        embedding_provider: EmbeddingProvider,
        vector_store: VectorStore,
        record_store: RecordStore,
        reranker: Optional[BaseReranker] = None,
        file_retriever: Optional[FileRetriever] = None,
    ) -> None:
        self.config = config
        self.embedding_provider = embedding_provider
        self.vector_store = vector_store
        self.record_store = record_store
        self.reranker = reranker or create_reranker(config.rerank)
        self.ingestion = IngestionPipeline(config, embedding_provider, vector_store)
        self.retrieval = RetrievalService(
            config, embedding_provider, vector_store, record_store, file_retriever
        )

    @classmethod
    async def from_config(cls, config: AppConfig, registry: StoreRegistry) -> "KnowledgeBase":
        """Build a knowledge base from configuration and shared stores."""
        embedding_provider = create_embedding_provider(
            ProviderConfig(
                provider_type=config.embedding.provider.value,
                model_name=config.embedding.model_name,
                api_key=config.embedding.api_key,
                extra_params=config.embedding.extra_params,
            )
        )
        vector_store = await registry.vector_store()
        record_store = await registry.record_store()
        file_retriever = create_file_retriever(config.file_retrieval, embedding_provider, vector_store)
        return cls(
            config,
            embedding_provider,
            vector_store,
            record_store,
            reranker=create_reranker(config.rerank),
            file_retriever=file_retriever,
        )

    async def close(self) -> None:
        """Release providers; stores belong to the registry."""
        await self.retrieval.file_retriever.close()
        await self.embedding_provider.close()

    # -- embeddings ---------------------------------------------------------

    async def _embed_or_none(self, text: Optional[str]) -> Optional[list[float]]:
        """Embed text; failures and wrong dimensions yield None."""
        if not text:
            return None
        try:
            vector = await self.embedding_provider.embed_text(text)
        except Exception as e:
            logger.warning("entry_embedding_failed", error=str(e))
            return None

        expected = self.config.embedding.dimension or self.embedding_provider.get_dimension()
        if len(vector) != expected:
            logger.warning("entry_embedding_dimension_mismatch", expected=expected, actual=len(vector))
            return None
        return vector

    async def _store_vector(self, entry: KnowledgeEntry) -> bool:
        """Mirror an embedded entry into the vector store; failures are logged."""
        if not entry.embedding:
            return False
        record = VectorRecord(
            source_id=str(entry.id),
            owner_id=entry.owner_id,
            scope_id=entry.scope_id,
            entry_id=entry.id,
            entry_type=entry.type,
            title=entry.title,
            content=entry.content,
            embedding=entry.embedding,
            metadata=dict(entry.metadata),
            created_at=entry.created_at,
        )
        try:
            await self.vector_store.insert_batch([record])
            return True
        except Exception as e:
            logger.warning("vector_store_write_failed", entry_id=str(entry.id), error=str(e))
            return False

    async def _remove_vector(self, entry_id: UUID) -> None:
        try:
            await self.vector_store.delete_by_source(str(entry_id))
        except Exception as e:
            logger.warning("vector_store_delete_failed", entry_id=str(entry_id), error=str(e))

    # -- entries ------------------------------------------------------------

    def _parse_payload(self, entry_type: KnowledgeType, payload: Union[BaseModel, dict[str, Any]]) -> BaseModel:
        try:
            model = payload_model(entry_type)
        except ValueError as e:
            raise KnowledgeBaseError(str(e)) from e
        if isinstance(payload, model):
            return payload
        try:
            data = payload.model_dump() if isinstance(payload, BaseModel) else payload
            return model.model_validate(data)
        except ValidationError as e:
            raise KnowledgeBaseError(f"Invalid {entry_type.value} payload: {e}") from e

    async def add_entry(
        self,
        entry_type: Union[KnowledgeType, str],
        payload: Union[BaseModel, dict[str, Any]],
        owner_id: Optional[str] = None,
        scope_id: Optional[str] = None,
        parent_id: Optional[UUID] = None,
        skip_duplicate_check: bool = False,
    ) -> UUID:
        """Create a knowledge entry.

        QA pairs are de-duplicated first: an existing pair with the same or a
        near-identical question is returned instead of writing a new one.

        Raises:
            KnowledgeBaseError: Invalid payload, FILE type, or unknown parent
            StorageError: If the record store write fails
        """
        entry_type = _coerce_type(entry_type)
        parsed = self._parse_payload(entry_type, payload)

        if parent_id is not None and await self.record_store.get_entry(parent_id) is None:
            raise KnowledgeBaseError(f"Parent entry {parent_id} does not exist")

        if entry_type == KnowledgeType.QA_PAIR and not skip_duplicate_check:
            existing = await self.check_duplicate_qa(parsed.question, owner_id=owner_id, scope_id=scope_id)
            if existing is not None:
                logger.info("duplicate_qa_pair_skipped", existing_id=str(existing.id))
                return existing.id

        rendered = render(entry_type, parsed)
        metadata = dict(rendered.metadata)
        if scope_id is not None:
            metadata["entity_id"] = scope_id

        embedding = await self._embed_or_none(rendered.embedding_text)
        if rendered.embedding_text and embedding is None:
            metadata["embedding_pending"] = True

        entry = KnowledgeEntry(
            type=entry_type,
            title=rendered.title,
            content=rendered.content,
            embedding=embedding,
            owner_id=owner_id,
            parent_id=parent_id,
            metadata=metadata,
        )
        await self.record_store.add_entry(entry)
        await self._store_vector(entry)

        logger.info(
            "knowledge_entry_added",
            entry_id=str(entry.id),
            type=entry_type.value,
            embedded=embedding is not None,
            parent_id=str(parent_id) if parent_id else None,
        )
        return entry.id

    async def add_schema(
        self,
        database_name: str,
        tables: list[dict[str, Any]],
        database_content: str,
        owner_id: Optional[str] = None,
        scope_id: Optional[str] = None,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> tuple[UUID, list[UUID]]:
        """Add a database-level schema entry and one child entry per table.

        Table dicts need a ``name`` (or ``model``) key; the whole dict is
        embedded as JSON.

        Returns:
            (parent id, child ids)
        """
        parent_id = await self.add_entry(
            KnowledgeType.SCHEMA,
            SchemaPayload(
                database_name=database_name,
                content=database_content,
                title=title,
                description=description,
            ),
            owner_id=owner_id,
            scope_id=scope_id,
        )

        child_ids: list[UUID] = []
        for table in tables:
            table_name = table.get("name") or table.get("model")
            if not table_name:
                raise KnowledgeBaseError(f"Table description without a name in database '{database_name}'")
            child_ids.append(
                await self.add_entry(
                    KnowledgeType.SCHEMA,
                    SchemaPayload(
                        database_name=database_name,
                        table_name=str(table_name),
                        content=table_content(table),
                    ),
                    owner_id=owner_id,
                    scope_id=scope_id,
                    parent_id=parent_id,
                )
            )

        logger.info("schema_added", database_name=database_name, tables=len(child_ids))
        return parent_id, child_ids

    async def update_entry(
        self,
        entry_id: UUID,
        payload: Union[BaseModel, dict[str, Any]],
        owner_id: Optional[str] = None,
    ) -> KnowledgeEntry:
        """Replace an entry's payload, re-embed it and refresh its vector.

        Raises:
            KnowledgeBaseError: Unknown entry, foreign owner, or invalid payload
        """
        entry = await self.record_store.get_entry(entry_id)
        if entry is None or (owner_id is not None and entry.owner_id != owner_id):
            raise KnowledgeBaseError(f"Knowledge entry {entry_id} not found")

        parsed = self._parse_payload(entry.type, payload)
        rendered = render(entry.type, parsed)
        metadata = dict(rendered.metadata)
        if entry.scope_id is not None:
            metadata["entity_id"] = entry.scope_id

        embedding = await self._embed_or_none(rendered.embedding_text)
        if rendered.embedding_text and embedding is None:
            metadata["embedding_pending"] = True

        updated = entry.model_copy(
            update={
                "title": rendered.title,
                "content": rendered.content,
                "embedding": embedding,
                "metadata": metadata,
                "updated_at": datetime.now(timezone.utc),
            }
        )
        await self.record_store.update_entry(updated)
        await self._remove_vector(entry_id)
        await self._store_vector(updated)
        logger.info("knowledge_entry_updated", entry_id=str(entry_id), embedded=embedding is not None)
        return updated

    async def delete_entry(self, entry_id: UUID, owner_id: Optional[str] = None) -> bool:
        """Delete an entry; deleting a root also deletes its descendants.

        Returns:
            False if the entry does not exist or belongs to another owner
        """
        entry = await self.record_store.get_entry(entry_id)
        if entry is None or (owner_id is not None and entry.owner_id != owner_id):
            logger.warning("delete_entry_not_found", entry_id=str(entry_id))
            return False

        doomed = [entry.id]
        pending = [entry.id]
        while pending:
            children = await self.record_store.get_children(pending.pop())
            for child in children:
                doomed.append(child.id)
                pending.append(child.id)

        for doomed_id in doomed:
            await self._remove_vector(doomed_id)
        deleted = await self.record_store.delete_entries(doomed)

        logger.info("knowledge_entry_deleted", entry_id=str(entry_id), deleted=deleted)
        return deleted > 0

    async def get_entry(self, entry_id: UUID) -> Optional[KnowledgeEntry]:
        return await self.record_store.get_entry(entry_id)

    async def list_entries(
        self,
        owner_id: Optional[str] = None,
        entry_type: Optional[Union[KnowledgeType, str]] = None,
        scope_id: Optional[str] = None,
        include_children: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[EntryTree]:
        """List root entries newest first, optionally with their children."""
        entry_type = _coerce_type(entry_type) if entry_type is not None else None
        roots = await self.record_store.list_entries(
            owner_id=owner_id,
            entry_type=entry_type,
            scope_id=scope_id,
            roots_only=True,
            limit=limit,
            offset=offset,
        )
        trees = []
        for root in roots:
            children = await self.record_store.get_children(root.id) if include_children else []
            trees.append(EntryTree(entry=root, children=children))
        return trees

    async def check_duplicate_qa(
        self,
        question: str,
        owner_id: Optional[str] = None,
        scope_id: Optional[str] = None,
        min_score: Optional[float] = None,
    ) -> Optional[KnowledgeEntry]:
        """Find an existing QA pair with the same or a near-identical question.

        Exact match first, then vector similarity >= min_score (default
        ``retrieval.duplicate_threshold``). Lookup failures are logged and
        treated as "no duplicate".
        """
        question = question.strip()
        min_score = self.config.retrieval.duplicate_threshold if min_score is None else min_score
        try:
            existing = await self.record_store.find_qa_by_question(question, owner_id=owner_id, scope_id=scope_id)
            if existing is not None:
                return existing

            query_vector = await self.embedding_provider.embed_text(question)
            outcome = await self.retrieval.searcher.search(
                query_vector,
                SearchFilters(owner_id=owner_id, scope_id=scope_id, types=[KnowledgeType.QA_PAIR]),
                top_k=1,
                min_score=min_score,
            )
        except Exception as e:
            logger.warning("duplicate_qa_check_failed", error=str(e))
            return None

        for result in outcome.results:
            if result.entry_id is None or result.similarity < min_score:
                continue
            entry = await self.record_store.get_entry(result.entry_id)
            if entry is not None:
                logger.debug("similar_qa_pair_found", entry_id=str(entry.id), similarity=result.similarity)
                return entry
        return None

    async def embed_pending(self, owner_id: Optional[str] = None) -> int:
        """Retry embedding for entries stored without one. Returns the number fixed."""
        fixed = 0
        for entry in await self.record_store.find_pending_embeddings(owner_id):
            text = entry.metadata.get("question") if entry.type == KnowledgeType.QA_PAIR else entry.content
            embedding = await self._embed_or_none(text)
            if embedding is None:
                continue
            metadata = {k: v for k, v in entry.metadata.items() if k != "embedding_pending"}
            updated = entry.model_copy(update={"embedding": embedding, "metadata": metadata})
            await self.record_store.update_entry(updated)
            await self._remove_vector(entry.id)
            await self._store_vector(updated)
            fixed += 1
        logger.info("pending_embeddings_processed", fixed=fixed)
        return fixed

    # -- files --------------------------------------------------------------

    async def ingest_file(
        self,
        source_id: str,
        raw_text: str,
        owner_id: Optional[str] = None,
        scope_metadata: Optional[dict[str, Any]] = None,
        filename: Optional[str] = None,
    ) -> int:
        """Chunk, embed and index a file. Returns the number of records written.

        Raises:
            IngestionError: If nothing could be indexed (partial writes rolled back)
        """
        scope_metadata = dict(scope_metadata or {})
        if filename:
            scope_metadata.setdefault("filename", filename)
        result = await self.ingestion.ingest(
            source_id,
            raw_text,
            owner_id=owner_id,
            scope_metadata=scope_metadata,
            entry_type=KnowledgeType.FILE,
            title=filename,
        )
        return result.record_count

    async def delete_source_counts(self, source_id: str) -> tuple[int, int]:
        """Remove a file's records and entries linked to it.

        Returns:
            (vector records removed, linked entries removed); (0, 0) when the
            source was already gone
        """
        removed = await self.vector_store.delete_by_source(source_id)
        linked = await self.record_store.find_by_file(source_id)
        for entry in linked:
            await self._remove_vector(entry.id)
        unlinked = await self.record_store.delete_entries([entry.id for entry in linked])
        logger.info("source_deleted", source_id=source_id, records=removed, entries=unlinked)
        return removed, unlinked

    async def delete_source(self, source_id: str) -> bool:
        """Remove a file and knowledge linked to it.

        Idempotent: deleting an unknown or already deleted source succeeds.
        Storage failures raise StorageError.
        """
        await self.delete_source_counts(source_id)
        return True

    # -- queries ------------------------------------------------------------

    async def query(
        self,
        query: str,
        owner_id: Optional[str] = None,
        types: Optional[list[KnowledgeType]] = None,
        scope_id: Optional[str] = None,
        file_ids: Optional[list[str]] = None,
        top_k: Optional[int] = None,
        min_score: Optional[float] = None,
        use_reranking: bool = True,
        enhanced: Optional[bool] = None,
        weights: Optional[RerankWeights] = None,
    ) -> RetrievalResponse:
        """Retrieve (hybrid when file ids are given) and rerank."""
        top_k = self.config.retrieval.top_k if top_k is None else top_k
        if top_k <= 0:
            return RetrievalResponse(query=query, metadata={"top_k": top_k, "reranked": False})
        candidate_k = top_k * self.config.retrieval.candidate_multiplier if use_reranking else top_k

        if file_ids:
            retrieved = await self.retrieval.hybrid_retrieve(
                query,
                owner_id=owner_id,
                file_ids=file_ids,
                types=types,
                scope_id=scope_id,
                top_k=candidate_k,
                min_score=min_score,
            )
        else:
            retrieved = await self.retrieval.retrieve(
                query,
                owner_id=owner_id,
                types=types,
                scope_id=scope_id,
                top_k=candidate_k,
                min_score=min_score,
            )

        if not use_reranking:
            return retrieved

        enhanced = self.config.rerank.enhanced if enhanced is None else enhanced
        outcome = await self.reranker.rerank(
            query, retrieved.results, top_k=top_k, enhanced=enhanced, weights=weights
        )
        metadata = {**retrieved.metadata, "rerank": outcome.metadata}
        metadata["reranked"] = outcome.metadata.get("reranked", False)
        return RetrievalResponse(query=query, results=outcome.results, metadata=metadata)
