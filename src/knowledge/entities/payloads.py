"""Per-type input payloads for knowledge entries.

Each knowledge type has its own payload shape. ``render`` turns a payload
into the title, content, metadata and embedding text of a KnowledgeEntry.
"""

import json
from dataclasses import dataclass
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from knowledge.entities.knowledge_entry import KnowledgeType

TITLE_PREVIEW = 50


class SchemaPayload(BaseModel):
    """Schema description of a database, or of one table when table_name is set."""

    database_name: str = Field(..., min_length=1)
    table_name: Optional[str] = None
    content: str = Field(..., min_length=1, description="Schema text or JSON that gets embedded")
    description: Optional[str] = Field(default=None, description="Display-only summary, not embedded")
    title: Optional[str] = None
    model_type: Optional[str] = None

    @property
    def is_database_level(self) -> bool:
        return not self.table_name


class QAPairPayload(BaseModel):
    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)

    @field_validator("question", "answer")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class SynonymPayload(BaseModel):
    noun: str = Field(..., min_length=1)
    synonyms: list[str] = Field(..., min_length=1)

    @field_validator("synonyms")
    @classmethod
    def drop_blank(cls, v: list[str]) -> list[str]:
        cleaned = [s.strip() for s in v if s and s.strip()]
        if not cleaned:
            raise ValueError("at least one synonym is required")
        return cleaned


class BusinessKnowledgePayload(BaseModel):
    """Business knowledge text, optionally linked to an uploaded file.

    File-linked knowledge is searched through the file's own chunks, so the
    entry itself is not embedded.
    """

    title: str = Field(..., min_length=1)
    content: str = ""
    category: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    file_id: Optional[str] = None
    filename: Optional[str] = None

    @model_validator(mode="after")
    def content_or_file(self) -> "BusinessKnowledgePayload":
        if not self.content.strip() and not self.file_id:
            raise ValueError("business knowledge needs content or a file_id")
        return self


EntryPayload = Union[SchemaPayload, QAPairPayload, SynonymPayload, BusinessKnowledgePayload]


@dataclass
class RenderedEntry:
    """Entry fields derived from a payload."""

    title: str
    content: str
    metadata: dict[str, Any]
    embedding_text: Optional[str]


def payload_model(entry_type: KnowledgeType) -> type[BaseModel]:
    """Payload class for a knowledge type.

    Raises:
        ValueError: For FILE entries, which only come from file ingestion
    """
    if entry_type == KnowledgeType.SCHEMA:
        return SchemaPayload
    elif entry_type == KnowledgeType.QA_PAIR:
        return QAPairPayload
    elif entry_type == KnowledgeType.SYNONYM:
        return SynonymPayload
    elif entry_type == KnowledgeType.BUSINESS_KNOWLEDGE:
        return BusinessKnowledgePayload
    elif entry_type == KnowledgeType.FILE:
        raise ValueError("file entries are created by file ingestion, not add_entry")
    raise ValueError(f"Unknown knowledge type: {entry_type!r}")


def _preview(text: str) -> str:
    return text if len(text) <= TITLE_PREVIEW else text[:TITLE_PREVIEW] + "..."


def render(entry_type: KnowledgeType, payload: BaseModel) -> RenderedEntry:
    """Derive title, content, metadata and the text to embed."""
    if entry_type == KnowledgeType.SCHEMA:
        if payload.is_database_level:
            default_title = f"Database schema: {payload.database_name}"
        else:
            default_title = f"Schema: {payload.database_name}.{payload.table_name}"
        return RenderedEntry(
            title=payload.title or default_title,
            content=payload.content,
            metadata={
                "database_name": payload.database_name,
                "table_name": payload.table_name or "",
                "is_database_level": payload.is_database_level,
                "description": payload.description,
                "model_type": payload.model_type,
            },
            embedding_text=payload.content,
        )
    elif entry_type == KnowledgeType.QA_PAIR:
        return RenderedEntry(
            title=f"QA: {_preview(payload.question)}",
            content=f"Question: {payload.question}\nAnswer: {payload.answer}",
            metadata={"question": payload.question, "answer": payload.answer},
            embedding_text=payload.question,
        )
    elif entry_type == KnowledgeType.SYNONYM:
        content = f"Term: {payload.noun}\nSynonyms: {', '.join(payload.synonyms)}"
        return RenderedEntry(
            title=f"Synonym: {payload.noun}",
            content=content,
            metadata={"noun": payload.noun, "synonyms": list(payload.synonyms)},
            embedding_text=content,
        )
    elif entry_type == KnowledgeType.BUSINESS_KNOWLEDGE:
        content = payload.content.strip() or f"Document: {payload.filename or payload.file_id}"
        return RenderedEntry(
            title=payload.title,
            content=content,
            metadata={
                "category": payload.category,
                "tags": list(payload.tags),
                "file_id": payload.file_id,
                "filename": payload.filename,
            },
            embedding_text=None if payload.file_id else content,
        )
    elif entry_type == KnowledgeType.FILE:
        raise ValueError("file entries are created by file ingestion")
    raise ValueError(f"Unknown knowledge type: {entry_type!r}")


def table_content(table: dict[str, Any]) -> str:
    """Serialize a table-level schema description for embedding."""
    return json.dumps(table, ensure_ascii=False, sort_keys=True)
