"""
Chunking strategies for document processing.

The indexer only depends on the ``Chunker`` protocol: a deterministic
``chunk(text, options)`` returning non-empty strings.
"""

from typing import Any, Protocol

from ..services.openai_compat import normalize_text


class Chunker(Protocol):
    """Splits one document's text into retrieval-sized pieces."""

    def chunk(self, text: str, options: dict[str, Any] | None = None) -> list[str]: ...


class FixedSizeChunker:
    """Fixed-size character windows with overlap, breaking at whitespace when possible."""

    def __init__(self, max_chunk_size: int = 1200, overlap: int = 200):
        if max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")
        if not 0 <= overlap < max_chunk_size:
            raise ValueError("overlap must be in [0, max_chunk_size)")
        self.max_chunk_size = max_chunk_size
        self.overlap = overlap

    def chunk(self, text: str, options: dict[str, Any] | None = None) -> list[str]:
        options = options or {}
        max_size = int(options.get("max_chunk_size", self.max_chunk_size))
        overlap = int(options.get("overlap", self.overlap))

        content = normalize_text(text)
        if not content:
            return []

        chunks = []
        start = 0
        while start < len(content):
            end = min(start + max_size, len(content))

            # Try to break at word boundaries
            if end < len(content):
                last_space = max(content.rfind(" ", start, end), content.rfind("\n", start, end))
                if last_space > start:
                    end = last_space

            piece = content[start:end].strip()
            if piece:
                chunks.append(piece)

            if end >= len(content):
                break
            start = max(start + 1, end - overlap)

        return chunks
