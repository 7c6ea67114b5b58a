"""SQLite storage implementation for knowledge records.

Provides persistent storage for KnowledgeEntry rows using SQLite via aiosqlite.
Scope id, file id and QA question are copied out of the metadata JSON into
indexed columns so the common filters do not scan JSON.
"""

import json
import os
from datetime import datetime
from typing import Any, Iterable, Optional
from uuid import UUID

import aiosqlite

from knowledge.entities import KnowledgeEntry, KnowledgeType
from knowledge.storage.base import RecordStore, StorageConfig, StorageError

_OWNER_CLAUSE = "(? IS NULL OR owner_id IS NULL OR owner_id = ?)"


def _row_to_entry(row: aiosqlite.Row) -> KnowledgeEntry:
    return KnowledgeEntry(
        id=UUID(row["id"]),
        type=KnowledgeType(row["type"]),
        title=row["title"],
        content=row["content"],
        embedding=json.loads(row["embedding"]) if row["embedding"] else None,
        owner_id=row["owner_id"],
        parent_id=UUID(row["parent_id"]) if row["parent_id"] else None,
        metadata=json.loads(row["metadata"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _entry_params(entry: KnowledgeEntry) -> tuple[Any, ...]:
    file_id = entry.metadata.get("file_id")
    return (
        entry.type.value,
        entry.title,
        entry.content,
        json.dumps(entry.embedding) if entry.embedding is not None else None,
        entry.owner_id,
        str(entry.parent_id) if entry.parent_id else None,
        entry.scope_id,
        str(file_id) if file_id is not None else None,
        entry.metadata.get("question") if entry.type == KnowledgeType.QA_PAIR else None,
        json.dumps(entry.metadata, ensure_ascii=False, default=str),
        entry.created_at.isoformat(),
        entry.updated_at.isoformat(),
        str(entry.id),
    )


class SQLiteRecordStore(RecordStore):
    """SQLite knowledge record store.

    ``connection_string`` may be a filesystem path or ``sqlite:///path``;
    ``:memory:`` gives a throwaway database.
    """

    def __init__(self, config: StorageConfig) -> None:
        super().__init__(config)
        conn_str = config.connection_string
        if conn_str is None:
            self.db_path = os.path.expanduser("~/.knowledge/knowledge.db")
        elif conn_str.startswith("sqlite:///"):
            self.db_path = os.path.expanduser(conn_str.replace("sqlite:///", "", 1))
        else:
            self.db_path = os.path.expanduser(conn_str)

        self.connection: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Open the database and create tables."""
        try:
            if self.db_path != ":memory:":
                db_dir = os.path.dirname(self.db_path)
                if db_dir:
                    os.makedirs(db_dir, exist_ok=True)

            self.connection = await aiosqlite.connect(self.db_path)
            self.connection.row_factory = aiosqlite.Row

            await self.connection.execute("""
                CREATE TABLE IF NOT EXISTS knowledge_entries (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    embedding TEXT,
                    owner_id TEXT,
                    parent_id TEXT,
                    scope_id TEXT,
                    file_id TEXT,
                    question TEXT,
                    metadata TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            for column in ("owner_id", "parent_id", "scope_id", "file_id", "type"):
                await self.connection.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_entries_{column} ON knowledge_entries({column})"
                )
            await self.connection.commit()

        except Exception as e:
            raise StorageError(
                f"Failed to initialize SQLite record store: {e}",
                storage_type="sqlite",
                original_error=e,
            )

    def _require_connection(self) -> aiosqlite.Connection:
        if not self.connection:
            raise StorageError("Database not initialized", storage_type="sqlite")
        return self.connection

    async def _fetch(self, action: str, sql: str, params: Iterable[Any] = ()) -> list[KnowledgeEntry]:
        connection = self._require_connection()
        try:
            cursor = await connection.execute(sql, tuple(params))
            rows = await cursor.fetchall()
            return [_row_to_entry(row) for row in rows]
        except Exception as e:
            raise StorageError(
                f"Failed to {action}: {e}",
                storage_type="sqlite",
                original_error=e,
            )

    async def _write(self, action: str, sql: str, params: Iterable[Any] = ()) -> int:
        connection = self._require_connection()
        try:
            cursor = await connection.execute(sql, tuple(params))
            await connection.commit()
            return cursor.rowcount
        except Exception as e:
            raise StorageError(
                f"Failed to {action}: {e}",
                storage_type="sqlite",
                original_error=e,
            )

    async def add_entry(self, entry: KnowledgeEntry) -> None:
        await self._write(
            "add entry",
            """
            INSERT INTO knowledge_entries (
                type, title, content, embedding, owner_id, parent_id, scope_id,
                file_id, question, metadata, created_at, updated_at, id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            _entry_params(entry),
        )

    async def get_entry(self, entry_id: UUID) -> Optional[KnowledgeEntry]:
        entries = await self._fetch(
            "get entry", "SELECT * FROM knowledge_entries WHERE id = ?", (str(entry_id),)
        )
        return entries[0] if entries else None

    async def get_entries(self, entry_ids: list[UUID]) -> dict[UUID, KnowledgeEntry]:
        if not entry_ids:
            return {}
        placeholders = ", ".join("?" for _ in entry_ids)
        entries = await self._fetch(
            "get entries",
            f"SELECT * FROM knowledge_entries WHERE id IN ({placeholders})",
            [str(entry_id) for entry_id in entry_ids],
        )
        return {entry.id: entry for entry in entries}

    async def update_entry(self, entry: KnowledgeEntry) -> bool:
        updated = await self._write(
            "update entry",
            """
            UPDATE knowledge_entries SET
                type = ?, title = ?, content = ?, embedding = ?, owner_id = ?,
                parent_id = ?, scope_id = ?, file_id = ?, question = ?, metadata = ?,
                created_at = ?, updated_at = ?
            WHERE id = ?
            """,
            _entry_params(entry),
        )
        return updated > 0

    async def delete_entries(self, entry_ids: list[UUID]) -> int:
        if not entry_ids:
            return 0
        placeholders = ", ".join("?" for _ in entry_ids)
        return await self._write(
            "delete entries",
            f"DELETE FROM knowledge_entries WHERE id IN ({placeholders})",
            [str(entry_id) for entry_id in entry_ids],
        )

    async def list_entries(
        self,
        owner_id: Optional[str] = None,
        entry_type: Optional[KnowledgeType] = None,
        scope_id: Optional[str] = None,
        roots_only: bool = True,
        limit: int = 100,
        offset: int = 0,
    ) -> list[KnowledgeEntry]:
        clauses = [_OWNER_CLAUSE]
        params: list[Any] = [owner_id, owner_id]
        if entry_type is not None:
            clauses.append("type = ?")
            params.append(entry_type.value)
        if scope_id is not None:
            clauses.append("scope_id = ?")
            params.append(scope_id)
        if roots_only:
            clauses.append("parent_id IS NULL")
        params.extend([limit, offset])
        return await self._fetch(
            "list entries",
            f"SELECT * FROM knowledge_entries WHERE {' AND '.join(clauses)} "
            "ORDER BY created_at DESC LIMIT ? OFFSET ?",
            params,
        )

    async def get_children(self, parent_id: UUID) -> list[KnowledgeEntry]:
        return await self._fetch(
            "get children",
            "SELECT * FROM knowledge_entries WHERE parent_id = ? ORDER BY created_at",
            (str(parent_id),),
        )

    async def find_for_scan(
        self,
        owner_id: Optional[str] = None,
        types: Optional[list[KnowledgeType]] = None,
        scope_id: Optional[str] = None,
    ) -> list[KnowledgeEntry]:
        clauses = [_OWNER_CLAUSE, "embedding IS NOT NULL"]
        params: list[Any] = [owner_id, owner_id]
        if types:
            clauses.append(f"type IN ({', '.join('?' for _ in types)})")
            params.extend(t.value for t in types)
        if scope_id is not None:
            clauses.append("scope_id = ?")
            params.append(scope_id)
        return await self._fetch(
            "load entries for scan",
            f"SELECT * FROM knowledge_entries WHERE {' AND '.join(clauses)}",
            params,
        )

    async def find_qa_by_question(
        self,
        question: str,
        owner_id: Optional[str] = None,
        scope_id: Optional[str] = None,
    ) -> Optional[KnowledgeEntry]:
        clauses = [_OWNER_CLAUSE, "type = ?", "question = ?"]
        params: list[Any] = [owner_id, owner_id, KnowledgeType.QA_PAIR.value, question]
        if scope_id is not None:
            clauses.append("scope_id = ?")
            params.append(scope_id)
        entries = await self._fetch(
            "find QA pair",
            f"SELECT * FROM knowledge_entries WHERE {' AND '.join(clauses)} LIMIT 1",
            params,
        )
        return entries[0] if entries else None

    async def find_by_file(self, file_id: str) -> list[KnowledgeEntry]:
        return await self._fetch(
            "find entries by file",
            "SELECT * FROM knowledge_entries WHERE file_id = ?",
            (file_id,),
        )

    async def find_pending_embeddings(self, owner_id: Optional[str] = None) -> list[KnowledgeEntry]:
        entries = await self._fetch(
            "find pending embeddings",
            f"SELECT * FROM knowledge_entries WHERE {_OWNER_CLAUSE} AND embedding IS NULL",
            (owner_id, owner_id),
        )
        return [entry for entry in entries if entry.metadata.get("embedding_pending")]

    async def count(self) -> int:
        connection = self._require_connection()
        try:
            cursor = await connection.execute("SELECT COUNT(*) FROM knowledge_entries")
            row = await cursor.fetchone()
            return row[0]
        except Exception as e:
            raise StorageError(
                f"Failed to count entries: {e}",
                storage_type="sqlite",
                original_error=e,
            )

    async def close(self) -> None:
        if self.connection:
            await self.connection.close()
            self.connection = None
