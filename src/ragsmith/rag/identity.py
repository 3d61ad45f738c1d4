"""
Content-addressed chunk identity.

A chunk's id is derived from its source and a hash of its content, so an
unchanged chunk keeps its id across runs and an edited chunk gets a new one.
An edit is therefore always "delete the old id, add the new id".
"""

import hashlib
from dataclasses import dataclass, field

ID_HASH_CHARS = 20


@dataclass(frozen=True)
class Chunk:
    """A contiguous slice of one source document, as produced by the loader."""

    citation_id: str
    source: str
    chunk_index: int
    content: str


@dataclass(frozen=True)
class ChunkRecord:
    """A chunk with its stable id, ready to be embedded and stored."""

    id: str
    content_hash: str
    citation_id: str
    source: str
    chunk_index: int
    content: str
    vector: tuple[float, ...] | None = field(default=None, compare=False, repr=False)


@dataclass
class ChunkMeta:
    """Records for a corpus scan plus the set of their ids."""

    records: list[ChunkRecord]
    id_set: set[str]


def sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def make_chunk_id(source: str, content_hash: str) -> str:
    """Stable id: source plus a content-hash prefix, unique across documents."""
    return f"{source}:{content_hash[:ID_HASH_CHARS]}"


def make_citation_id(source: str, chunk_index: int) -> str:
    """Human-readable label for citations. Not stable across re-chunking."""
    return f"{source}#{chunk_index}"


def compute_chunk_meta(chunks: list[Chunk]) -> ChunkMeta:
    """Derive records and the id set for a list of chunks."""
    records = []
    for chunk in chunks:
        content_hash = sha256(chunk.content)
        records.append(
            ChunkRecord(
                id=make_chunk_id(chunk.source, content_hash),
                content_hash=content_hash,
                citation_id=make_citation_id(chunk.source, chunk.chunk_index),
                source=chunk.source,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
            )
        )
    return ChunkMeta(records=records, id_set={r.id for r in records})


def unique_by_id(records: list[ChunkRecord]) -> list[ChunkRecord]:
    """Drop repeated ids (identical content within one source), first wins."""
    seen: set[str] = set()
    out = []
    for record in records:
        if record.id in seen:
            continue
        seen.add(record.id)
        out.append(record)
    return out
