"""Text chunking utilities.

Why this exists:
- Splits raw text into embedding-sized chunks
- Maintains context with overlapping windows
- Prefers natural boundaries (paragraphs, lines, sentences, clauses, words)
  in both Latin and CJK punctuation

How to extend:
- Add separators to SEPARATORS (order is priority)
- Add format-aware chunkers that call split_text on logical sections
"""

import re

from knowledge.config.schema import ChunkingConfig
from knowledge.entities import Chunk
from knowledge.observability.logging import get_logger

logger = get_logger(__name__)

# Priority order; "" means "cut at the window end".
SEPARATORS: tuple[str, ...] = (
    "\n\n",
    "\n",
    "。",
    ". ",
    "！",
    "! ",
    "？",
    "? ",
    "；",
    "; ",
    "，",
    ", ",
    " ",
    "",
)

# A separator only counts when it occurs past this fraction of the window.
MIN_CUT_RATIO = 0.3

_CONTROL_CHARS = re.compile("[\ufffd\u0000-\u0008\u000b\u000c\u000e-\u001f\u007f-\u009f]")


def clean_text(text: str) -> str:
    """Remove NUL bytes, control characters and replacement characters.

    Tab, newline and carriage return are kept.
    """
    if not text:
        return ""
    return _CONTROL_CHARS.sub("", text)


def _find_cut(text: str, start: int, end: int) -> int:
    window = text[start:end]
    threshold = len(window) * MIN_CUT_RATIO
    for separator in SEPARATORS:
        if separator == "":
            return end
        idx = window.rfind(separator)
        if idx > threshold:
            return start + idx + len(separator)
    return end


def split_text(text: str, chunk_size: int, chunk_overlap: int) -> list[Chunk]:
    """Split text into overlapping chunks on natural boundaries.

    Args:
        text: Raw text; it is cleaned before splitting
        chunk_size: Maximum chunk size in characters (>= 1)
        chunk_overlap: Characters shared between consecutive windows (>= 0)

    Returns:
        Chunks in order with contiguous 0-based indices. Offsets refer to the
        cleaned text.

    Raises:
        ValueError: If chunk_size < 1 or chunk_overlap < 0
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
    if chunk_overlap < 0:
        raise ValueError(f"chunk_overlap must be >= 0, got {chunk_overlap}")

    cleaned = clean_text(text)
    text_length = len(cleaned)
    chunks: list[Chunk] = []
    start = 0

    while start < text_length:
        end = min(start + chunk_size, text_length)
        cut = _find_cut(cleaned, start, end) if end < text_length else end

        raw = cleaned[start:cut]
        stripped = raw.strip()
        if stripped:
            offset = start + (len(raw) - len(raw.lstrip()))
            chunks.append(
                Chunk(
                    text=stripped,
                    start_char=offset,
                    end_char=offset + len(stripped),
                    chunk_index=len(chunks),
                )
            )

        if cut >= text_length:
            break

        next_start = max(0, cut - chunk_overlap)
        if next_start <= start:
            next_start = cut
        start = next_start

    logger.debug(
        "text_split",
        text_length=text_length,
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        chunk_count=len(chunks),
    )
    return chunks


def chunk_with_config(text: str, config: ChunkingConfig) -> list[Chunk]:
    """Split text using the configured chunk size and overlap."""
    return split_text(text, config.chunk_size, config.chunk_overlap)
