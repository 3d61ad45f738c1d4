"""
Hybrid vector + keyword store with Reciprocal Rank Fusion.

Each fused score is the sum over ranked lists of ``1 / (rrf_k + rank)`` with
ranks starting at 1; a record missing from a list gets nothing from it. Across
query variants the best fused score per record wins (max, never sum), so
generic chunks that show up for every variant are not promoted.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum

from ..observability.logging import get_logger
from .backends.base import StorageBackend
from .identity import ChunkRecord

logger = get_logger(__name__)

DEFAULT_RRF_K = 60


class RankSource(Enum):
    """Which ranking produced a hit's score."""

    VECTOR = "vector"
    KEYWORD = "keyword"
    FUSED = "fused"


class SearchMode(Enum):
    """Retrieval modes for multi-variant search."""

    VECTOR_ONLY = "vector_only"
    HYBRID = "hybrid"


@dataclass
class Hit:
    """A scored record from one search call."""

    record: ChunkRecord
    score: float
    rank_source: RankSource


def rrf_fuse(
    vector_hits: list[Hit], keyword_hits: list[Hit], rrf_k: int = DEFAULT_RRF_K, top_k: int | None = None
) -> list[Hit]:
    """Fuse two best-first hit lists by Reciprocal Rank Fusion.

    Ties keep first-seen order (vector list before keyword list), so output is
    reproducible for identical inputs.
    """
    if rrf_k < 0:
        raise ValueError("rrf_k must be non-negative")

    fused: dict[str, Hit] = {}
    for hits in (vector_hits, keyword_hits):
        for rank, hit in enumerate(hits, start=1):
            contribution = 1.0 / (rrf_k + rank)
            existing = fused.get(hit.record.id)
            if existing is None:
                fused[hit.record.id] = Hit(hit.record, contribution, RankSource.FUSED)
            else:
                existing.score += contribution
                if existing.record.vector is None and hit.record.vector is not None:
                    existing.record = hit.record

    ranked = sorted(fused.values(), key=lambda h: h.score, reverse=True)
    return ranked if top_k is None else ranked[:top_k]


def merge_max(hit_lists: list[list[Hit]], top_k: int | None = None) -> list[Hit]:
    """Merge per-variant results by record id, keeping the highest score."""
    best: dict[str, Hit] = {}
    for hits in hit_lists:
        for hit in hits:
            prev = best.get(hit.record.id)
            if prev is None or hit.score > prev.score:
                best[hit.record.id] = hit

    ranked = sorted(best.values(), key=lambda h: h.score, reverse=True)
    return ranked if top_k is None else ranked[:top_k]


class HybridStore:
    """
    Async facade over a storage backend.

    Retrieval never mutates the backend, so concurrent searches need no
    locking. Backend calls run in worker threads to keep the event loop free.
    """

    def __init__(self, backend: StorageBackend):
        self.backend = backend

    async def overwrite(self, records: list[ChunkRecord]) -> None:
        """Drop and recreate the collection. A crash mid-call needs a full re-run."""
        await asyncio.to_thread(self.backend.create, records)
        logger.info("Overwrote collection", records=len(records))

    async def drop(self) -> None:
        await asyncio.to_thread(self.backend.drop)
        logger.info("Dropped collection")

    async def add(self, records: list[ChunkRecord]) -> None:
        """Append records; the collection is created on first use."""
        await asyncio.to_thread(self.backend.insert, records)
        logger.info("Added records", records=len(records))

    async def existing_ids(self, ids: list[str]) -> set[str]:
        """Which of ``ids`` are already stored."""
        if not ids:
            return set()
        return await asyncio.to_thread(self.backend.existing_ids, ids)

    async def delete_by_ids(self, ids: list[str]) -> None:
        await asyncio.to_thread(self.backend.delete, ids)
        logger.info("Deleted records", records=len(ids))

    async def ensure_indexes(self) -> None:
        await asyncio.to_thread(self.backend.build_indexes)

    async def count(self) -> int:
        return await asyncio.to_thread(self.backend.count)

    async def vector_search(self, query_vector: list[float], top_k: int) -> list[Hit]:
        """Top records by cosine similarity (``1 - cosine distance``), best first."""
        rows = await asyncio.to_thread(self.backend.vector_query, query_vector, top_k)
        return [Hit(record, 1.0 - distance, RankSource.VECTOR) for record, distance in rows]

    async def keyword_search(self, query_text: str, top_k: int) -> list[Hit]:
        """Top records by BM25 score, best first."""
        rows = await asyncio.to_thread(self.backend.keyword_query, query_text, top_k)
        return [Hit(record, score, RankSource.KEYWORD) for record, score in rows]

    async def hybrid_search(
        self, query_vector: list[float], query_text: str, top_k: int, rrf_k: int = DEFAULT_RRF_K
    ) -> list[Hit]:
        """Run vector and keyword search concurrently and fuse them with RRF."""
        vector_hits, keyword_hits = await asyncio.gather(
            self.vector_search(query_vector, top_k),
            self.keyword_search(query_text, top_k),
        )
        return rrf_fuse(vector_hits, keyword_hits, rrf_k=rrf_k, top_k=top_k)

    async def hybrid_search_multi(
        self,
        query_vectors: list[list[float]],
        query_texts: list[str],
        per_query_top_k: int,
        final_top_k: int,
        rrf_k: int = DEFAULT_RRF_K,
    ) -> list[Hit]:
        """Hybrid search per (vector, text) variant, merged by max fused score."""
        if len(query_vectors) != len(query_texts):
            raise ValueError(
                f"got {len(query_vectors)} query vectors for {len(query_texts)} query texts"
            )

        per_variant = await asyncio.gather(
            *(
                self.hybrid_search(vector, text, per_query_top_k, rrf_k)
                for vector, text in zip(query_vectors, query_texts, strict=True)
            )
        )
        return merge_max(list(per_variant), final_top_k)

    async def vector_search_multi(
        self, query_vectors: list[list[float]], per_query_top_k: int, final_top_k: int
    ) -> list[Hit]:
        """Vector-only search per variant, merged by max similarity."""
        per_variant = await asyncio.gather(
            *(self.vector_search(vector, per_query_top_k) for vector in query_vectors)
        )
        return merge_max(list(per_variant), final_top_k)

    async def search_multi(
        self,
        query_vectors: list[list[float]],
        query_texts: list[str],
        per_query_top_k: int,
        final_top_k: int,
        rrf_k: int = DEFAULT_RRF_K,
        mode: SearchMode = SearchMode.HYBRID,
    ) -> list[Hit]:
        if mode == SearchMode.VECTOR_ONLY:
            return await self.vector_search_multi(query_vectors, per_query_top_k, final_top_k)
        return await self.hybrid_search_multi(
            query_vectors, query_texts, per_query_top_k, final_top_k, rrf_k
        )
