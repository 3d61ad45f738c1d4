"""
Storage backend interface behind the hybrid store.

Backends are synchronous; ``HybridStore`` moves every call off the event loop.
"""

from abc import ABC, abstractmethod

from ..identity import ChunkRecord


class StorageBackend(ABC):
    """A collection supporting vector search, keyword search and batch mutation."""

    @abstractmethod
    def exists(self) -> bool:
        """Check whether the collection has been created."""
        ...

    @abstractmethod
    def create(self, records: list[ChunkRecord]) -> None:
        """Drop any existing collection and create it holding ``records``."""
        ...

    @abstractmethod
    def drop(self) -> None:
        """Remove the collection if it exists."""
        ...

    @abstractmethod
    def insert(self, records: list[ChunkRecord]) -> None:
        """Append records, creating the collection on first use.

        Raises ``DuplicateRecordError`` if any id is already stored.
        """
        ...

    @abstractmethod
    def existing_ids(self, ids: list[str]) -> set[str]:
        """The subset of ``ids`` already stored; empty if there is no collection."""
        ...

    @abstractmethod
    def delete(self, ids: list[str]) -> None:
        """Remove records by id. Unknown ids are ignored."""
        ...

    @abstractmethod
    def build_indexes(self) -> None:
        """(Re)build the vector and keyword indexes. Idempotent and best-effort."""
        ...

    @abstractmethod
    def vector_query(self, vector: list[float], top_k: int) -> list[tuple[ChunkRecord, float]]:
        """Nearest records with their cosine distance, closest first."""
        ...

    @abstractmethod
    def keyword_query(self, text: str, top_k: int) -> list[tuple[ChunkRecord, float]]:
        """Best BM25 matches with their score, best first."""
        ...

    @abstractmethod
    def count(self) -> int:
        """Number of stored records."""
        ...
