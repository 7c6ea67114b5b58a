"""Chunk entity - a segment of cleaned source text."""

from typing import Any

from pydantic import BaseModel, Field, field_validator


class Chunk(BaseModel):
    """A contiguous, trimmed segment of text suitable for embedding.

    Offsets refer to the cleaned text the chunker worked on, not the raw input.
    Chunks are transient: they exist between chunking and record creation.
    """

    text: str = Field(..., description="Trimmed text content of this chunk")
    start_char: int = Field(..., ge=0, description="Start offset in the cleaned text")
    end_char: int = Field(..., gt=0, description="End offset in the cleaned text")
    chunk_index: int = Field(..., ge=0, description="Position among emitted chunks")

    @field_validator("text")
    @classmethod
    def text_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Chunk text cannot be empty")
        return v

    @field_validator("end_char")
    @classmethod
    def end_after_start(cls, v: int, info: Any) -> int:
        if "start_char" in info.data and v <= info.data["start_char"]:
            raise ValueError("end_char must be greater than start_char")
        return v
