"""
ChromaDB backend.

Vectors live in a Chroma collection using cosine distance; keyword search is a
BM25 index built over the collection's documents by ``build_indexes``.
"""

import threading
from collections import Counter
from typing import Any

import chromadb
from chromadb.config import Settings as ChromaSettings

from ...errors import DuplicateRecordError, StoreError, StoreNotInitializedError
from ...observability.logging import get_logger
from ..identity import ChunkRecord
from .base import StorageBackend
from .keyword import KeywordIndex

logger = get_logger(__name__)

WRITE_BATCH_SIZE = 1000
MIN_INDEXABLE_RECORDS = 2


class ChromaBackend(StorageBackend):
    """Chroma collection addressed by a persistence path and a collection name."""

    def __init__(self, uri: str, collection_name: str, client: Any | None = None):
        self.uri = uri
        self.collection_name = collection_name
        self._client = client or chromadb.PersistentClient(
            path=uri, settings=ChromaSettings(anonymized_telemetry=False)
        )
        self._collection = None
        self._keyword_index: KeywordIndex | None = None
        self._lock = threading.Lock()
        logger.info("Initialized ChromaDB backend", uri=uri, collection=collection_name)

    def exists(self) -> bool:
        # list_collections returns names on newer chromadb, Collection objects on older
        names = {getattr(c, "name", c) for c in self._client.list_collections()}
        return self.collection_name in names

    def _require(self):
        if self._collection is None:
            if not self.exists():
                raise StoreNotInitializedError(
                    f"Chroma collection '{self.collection_name}' has not been created"
                )
            self._collection = self._client.get_collection(
                self.collection_name, embedding_function=None
            )
        return self._collection

    def _open_or_create(self):
        if self._collection is None:
            self._collection = self._client.get_or_create_collection(
                self.collection_name, metadata={"hnsw:space": "cosine"}, embedding_function=None
            )
        return self._collection

    def create(self, records: list[ChunkRecord]) -> None:
        with self._lock:
            if self.exists():
                self._client.delete_collection(self.collection_name)
            self._collection = None
            self._keyword_index = None
            collection = self._open_or_create()
            self._write(collection, records)
        logger.info("Recreated Chroma collection", collection=self.collection_name, records=len(records))

    def drop(self) -> None:
        with self._lock:
            if self.exists():
                self._client.delete_collection(self.collection_name)
            self._collection = None
            self._keyword_index = None

    def insert(self, records: list[ChunkRecord]) -> None:
        with self._lock:
            collection = self._open_or_create()
            ids = [r.id for r in records]
            dupes = sorted(i for i, n in Counter(ids).items() if n > 1)
            dupes.extend(sorted(self._stored_ids(collection, ids)))
            if dupes:
                raise DuplicateRecordError(dupes)
            self._write(collection, records)
            self._keyword_index = None

    def _write(self, collection, records: list[ChunkRecord]) -> None:
        for start in range(0, len(records), WRITE_BATCH_SIZE):
            batch = records[start : start + WRITE_BATCH_SIZE]
            missing = [r.id for r in batch if r.vector is None]
            if missing:
                raise StoreError(f"{len(missing)} record(s) have no vector, e.g. {missing[0]}")
            collection.add(
                ids=[r.id for r in batch],
                embeddings=[list(r.vector) for r in batch],
                documents=[r.content for r in batch],
                metadatas=[_to_metadata(r) for r in batch],
            )

    def existing_ids(self, ids: list[str]) -> set[str]:
        with self._lock:
            if self._collection is None and not self.exists():
                return set()
            return self._stored_ids(self._require(), ids)

    @staticmethod
    def _stored_ids(collection, ids: list[str]) -> set[str]:
        found: set[str] = set()
        for start in range(0, len(ids), WRITE_BATCH_SIZE):
            found.update(collection.get(ids=ids[start : start + WRITE_BATCH_SIZE], include=[])["ids"])
        return found

    def delete(self, ids: list[str]) -> None:
        with self._lock:
            collection = self._require()
            for start in range(0, len(ids), WRITE_BATCH_SIZE):
                collection.delete(ids=ids[start : start + WRITE_BATCH_SIZE])
            self._keyword_index = None

    def build_indexes(self) -> None:
        self._build_keyword_index()

    def _build_keyword_index(self) -> KeywordIndex:
        with self._lock:
            collection = self._require()
            total = collection.count()
            if total < MIN_INDEXABLE_RECORDS:
                logger.info(
                    "Collection too small to index, skipping", collection=self.collection_name, records=total
                )
                # empty index matches nothing and stays cached until the next write
                self._keyword_index = KeywordIndex([])
                return self._keyword_index
            data = collection.get(include=["documents", "metadatas", "embeddings"])
            records = sorted(
                (
                    _from_row(record_id, document, metadata, embedding)
                    for record_id, document, metadata, embedding in zip(
                        data["ids"], data["documents"], data["metadatas"], data["embeddings"], strict=True
                    )
                ),
                key=lambda r: r.id,
            )
            index = KeywordIndex(records)
            self._keyword_index = index
        logger.info("Built keyword index", collection=self.collection_name, records=len(index))
        return index

    def vector_query(self, vector: list[float], top_k: int) -> list[tuple[ChunkRecord, float]]:
        collection = self._require()
        total = collection.count()
        if total == 0 or top_k <= 0:
            return []

        res = collection.query(
            query_embeddings=[list(vector)],
            n_results=min(top_k, total),
            include=["documents", "metadatas", "distances", "embeddings"],
        )
        rows = zip(
            res["ids"][0],
            res["documents"][0],
            res["metadatas"][0],
            res["embeddings"][0],
            res["distances"][0],
            strict=True,
        )
        return [
            (_from_row(record_id, document, metadata, embedding), float(distance))
            for record_id, document, metadata, embedding, distance in rows
        ]

    def keyword_query(self, text: str, top_k: int) -> list[tuple[ChunkRecord, float]]:
        self._require()
        index = self._keyword_index
        if index is None:
            index = self._build_keyword_index()
        return index.search(text, top_k)

    def count(self) -> int:
        return self._require().count()


def _to_metadata(record: ChunkRecord) -> dict[str, Any]:
    return {
        "source": record.source,
        "chunk_index": record.chunk_index,
        "citation_id": record.citation_id,
        "content_hash": record.content_hash,
    }


def _from_row(record_id: str, document: str, metadata: dict[str, Any], embedding) -> ChunkRecord:
    return ChunkRecord(
        id=record_id,
        content_hash=str(metadata.get("content_hash", "")),
        citation_id=str(metadata.get("citation_id", "")),
        source=str(metadata.get("source", "")),
        chunk_index=int(metadata.get("chunk_index", 0)),
        content=document or "",
        vector=tuple(float(x) for x in embedding) if embedding is not None else None,
    )
