"""
In-process backend: brute-force cosine search with numpy plus a BM25 index.
"""

import threading

import numpy as np

from ...errors import DuplicateRecordError, StoreNotInitializedError
from ...observability.logging import get_logger
from ..identity import ChunkRecord
from .base import StorageBackend
from .keyword import KeywordIndex

logger = get_logger(__name__)


class MemoryBackend(StorageBackend):
    """Holds records in insertion order. Nothing survives the process."""

    def __init__(self):
        self._records: dict[str, ChunkRecord] | None = None
        self._keyword_index: KeywordIndex | None = None
        self._lock = threading.Lock()

    def exists(self) -> bool:
        return self._records is not None

    def _require(self) -> dict[str, ChunkRecord]:
        if self._records is None:
            raise StoreNotInitializedError("Memory collection has not been created")
        return self._records

    def create(self, records: list[ChunkRecord]) -> None:
        with self._lock:
            self._records = {}
            self._keyword_index = None
            self._insert_locked(records)

    def drop(self) -> None:
        with self._lock:
            self._records = None
            self._keyword_index = None

    def insert(self, records: list[ChunkRecord]) -> None:
        with self._lock:
            if self._records is None:
                self._records = {}
            self._insert_locked(records)

    def _insert_locked(self, records: list[ChunkRecord]) -> None:
        dupes = [r.id for r in records if r.id in self._records]
        seen: set[str] = set()
        for r in records:
            if r.id in seen:
                dupes.append(r.id)
            seen.add(r.id)
        if dupes:
            raise DuplicateRecordError(dupes)
        for r in records:
            self._records[r.id] = r
        self._keyword_index = None

    def existing_ids(self, ids: list[str]) -> set[str]:
        with self._lock:
            if self._records is None:
                return set()
            return {record_id for record_id in ids if record_id in self._records}

    def delete(self, ids: list[str]) -> None:
        with self._lock:
            records = self._require()
            for record_id in ids:
                records.pop(record_id, None)
            self._keyword_index = None

    def build_indexes(self) -> None:
        self._build_keyword_index()

    def _build_keyword_index(self) -> KeywordIndex:
        with self._lock:
            index = KeywordIndex(list(self._require().values()))
            self._keyword_index = index
        logger.debug("Built in-memory keyword index", records=len(index))
        return index

    def vector_query(self, vector: list[float], top_k: int) -> list[tuple[ChunkRecord, float]]:
        with self._lock:
            records = [r for r in self._require().values() if r.vector is not None]
        if not records or top_k <= 0:
            return []

        matrix = np.asarray([r.vector for r in records], dtype=np.float64)
        sims = matrix @ np.asarray(vector, dtype=np.float64)
        order = sorted(range(len(records)), key=lambda i: float(sims[i]), reverse=True)
        return [(records[i], 1.0 - float(sims[i])) for i in order[:top_k]]

    def keyword_query(self, text: str, top_k: int) -> list[tuple[ChunkRecord, float]]:
        self._require()
        index = self._keyword_index
        if index is None:
            index = self._build_keyword_index()
        return index.search(text, top_k)

    def count(self) -> int:
        return len(self._require())
