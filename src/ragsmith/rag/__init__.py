"""Retrieval and incremental indexing: chunk identity, hybrid search and query orchestration."""

from .chunking import Chunker, FixedSizeChunker
from .engine import NO_MATCH_ANSWER, AskOptions, AskResult, QueryEngine
from .identity import Chunk, ChunkRecord, compute_chunk_meta, make_chunk_id, make_citation_id
from .indexer import Indexer, IndexingStatus, IndexMode, IndexReport
from .manifest import Manifest, ManifestDiff
from .selection import SearchFilters, apply_must_include, apply_source_filters, pick_diverse
from .store import Hit, HybridStore, RankSource, SearchMode, merge_max, rrf_fuse

__all__ = [
    "Chunk",
    "ChunkRecord",
    "Chunker",
    "FixedSizeChunker",
    "compute_chunk_meta",
    "make_chunk_id",
    "make_citation_id",
    "Manifest",
    "ManifestDiff",
    "Hit",
    "HybridStore",
    "RankSource",
    "SearchMode",
    "rrf_fuse",
    "merge_max",
    "Indexer",
    "IndexMode",
    "IndexReport",
    "IndexingStatus",
    "SearchFilters",
    "apply_source_filters",
    "apply_must_include",
    "pick_diverse",
    "QueryEngine",
    "AskOptions",
    "AskResult",
    "NO_MATCH_ANSWER",
]
