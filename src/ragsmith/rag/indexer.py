"""
Index builds: full rebuilds and incremental, manifest-diffed updates.

Incremental runs embed only chunks whose content-addressed id is new and
delete ids that disappeared from the corpus. The manifest is saved only after
every mutation of the run has been applied, so a crashed run is recovered by
running the same mode again: ids that reached the store before the crash are
skipped rather than added twice.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any

from ..errors import InvalidRequestError, ServiceError
from ..observability.logging import ensure_trace_id, get_logger
from ..observability.probe import probe
from ..services.openai_compat import EmbeddingService
from .chunking import Chunker
from .identity import Chunk, ChunkRecord, compute_chunk_meta, unique_by_id
from .loader import load_and_chunk_documents
from .manifest import Manifest
from .store import HybridStore

logger = get_logger(__name__)


class IndexMode(Enum):
    """Index build modes."""

    FULL = "full"
    INCREMENTAL = "incremental"

    @classmethod
    def parse(cls, value: "str | IndexMode") -> "IndexMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise InvalidRequestError(
                f"unknown index mode {value!r}; expected 'full' or 'incremental'"
            ) from None


class IndexingStatus(Enum):
    """Outcome of an index run."""

    COMPLETED = "completed"
    COMPLETED_WITH_WARNINGS = "completed_with_warnings"


@dataclass
class IndexingProgress:
    """Embedding progress within one run."""

    total_chunks: int = 0
    embedded_chunks: int = 0
    start_time: float = field(default_factory=time.time)

    @property
    def progress_percentage(self) -> float:
        if self.total_chunks == 0:
            return 100.0
        return (self.embedded_chunks / self.total_chunks) * 100


@dataclass
class IndexReport:
    """Result of one run. ``delete_failed`` flags possible stale records."""

    mode: IndexMode
    chunks_count: int
    added: int
    deleted: int
    status: IndexingStatus = IndexingStatus.COMPLETED
    delete_failed: bool = False
    warnings: list[str] = field(default_factory=list)
    duration: float = 0.0

    def warn(self, message: str) -> None:
        self.warnings.append(message)
        self.status = IndexingStatus.COMPLETED_WITH_WARNINGS

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "chunks_count": self.chunks_count,
            "added": self.added,
            "deleted": self.deleted,
            "status": self.status.value,
            "delete_failed": self.delete_failed,
            "warnings": list(self.warnings),
            "duration": round(self.duration, 3),
        }


class Indexer:
    """Chunk -> diff -> batched embedding -> store mutation -> manifest save."""

    def __init__(
        self,
        store: HybridStore,
        embedder: EmbeddingService,
        manifest: Manifest,
        chunker: Chunker,
        data_directory: Path,
        extensions: list[str] | None = None,
        batch_size: int = 64,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.store = store
        self.embedder = embedder
        self.manifest = manifest
        self.chunker = chunker
        self.data_directory = Path(data_directory)
        self.extensions = extensions or [".txt", ".md"]
        self.batch_size = batch_size

    async def build_index(
        self,
        mode: IndexMode | str = IndexMode.INCREMENTAL,
        chunks: list[Chunk] | None = None,
        progress_callback: Callable[[IndexingProgress], None] | None = None,
    ) -> IndexReport:
        """Run one index build. ``chunks`` overrides the directory scan."""
        mode = IndexMode.parse(mode)
        ensure_trace_id()
        started = time.time()

        with probe("indexer.build_index", mode=mode.value):
            if chunks is None:
                logger.info("Indexing: loading and chunking documents", directory=str(self.data_directory))
                chunks = await load_and_chunk_documents(
                    self.data_directory, self.extensions, self.chunker
                )
            logger.info("Indexing: chunked corpus", chunks=len(chunks), mode=mode.value)

            meta = compute_chunk_meta(chunks)
            records = unique_by_id(meta.records)

            if mode == IndexMode.FULL:
                report = await self._full(records, len(chunks), progress_callback)
            else:
                report = await self._incremental(records, meta.id_set, len(chunks), progress_callback)

            await self._ensure_indexes(report)
            self.manifest.save(meta.id_set)

        report.duration = time.time() - started
        logger.info(
            "Indexing finished",
            mode=mode.value,
            chunks=report.chunks_count,
            added=report.added,
            deleted=report.deleted,
            status=report.status.value,
        )
        return report

    async def _full(
        self,
        records: list[ChunkRecord],
        chunks_count: int,
        progress_callback: Callable[[IndexingProgress], None] | None,
    ) -> IndexReport:
        embedded = await self._embed_records(records, progress_callback)
        await self.store.overwrite(embedded)
        return IndexReport(mode=IndexMode.FULL, chunks_count=chunks_count, added=len(embedded), deleted=0)

    async def _incremental(
        self,
        records: list[ChunkRecord],
        current_ids: set[str],
        chunks_count: int,
        progress_callback: Callable[[IndexingProgress], None] | None,
    ) -> IndexReport:
        previous_ids = self.manifest.load()
        diff = Manifest.diff(previous_ids, current_ids)
        logger.info("Indexing: computed diff", to_add=len(diff.to_add), to_delete=len(diff.to_delete))

        report = IndexReport(
            mode=IndexMode.INCREMENTAL, chunks_count=chunks_count, added=0, deleted=0
        )

        if diff.to_delete:
            try:
                await self.store.delete_by_ids(diff.to_delete)
                report.deleted = len(diff.to_delete)
            except Exception as e:
                # Additions still proceed; stale records stay searchable until a full rebuild
                logger.warning(
                    "Delete by id failed; continuing with additions. Run a full reindex to remove stale chunks.",
                    error=f"{type(e).__name__}: {e}",
                    stale=len(diff.to_delete),
                )
                report.delete_failed = True
                report.warn(
                    f"failed to delete {len(diff.to_delete)} stale chunk(s): {e}; run mode=full to repair"
                )

        # ids already stored were written by a run that died before saving the manifest
        already_stored = await self.store.existing_ids(diff.to_add)
        if already_stored:
            logger.info("Indexing: skipping ids already in the store", skipped=len(already_stored))

        by_id = {r.id: r for r in records}
        to_add = [by_id[record_id] for record_id in diff.to_add if record_id not in already_stored]
        embedded = await self._embed_records(to_add, progress_callback)
        await self.store.add(embedded)
        report.added = len(embedded)
        return report

    async def _embed_records(
        self,
        records: list[ChunkRecord],
        progress_callback: Callable[[IndexingProgress], None] | None = None,
    ) -> list[ChunkRecord]:
        progress = IndexingProgress(total_chunks=len(records))
        embedded: list[ChunkRecord] = []

        for i in range(0, len(records), self.batch_size):
            batch = records[i : i + self.batch_size]
            vectors = await self.embedder.embed([r.content for r in batch])
            if len(vectors) != len(batch):
                raise ServiceError(f"embedding service returned {len(vectors)} vectors for {len(batch)} texts")
            embedded.extend(
                replace(record, vector=tuple(float(x) for x in vector))
                for record, vector in zip(batch, vectors, strict=True)
            )

            progress.embedded_chunks = len(embedded)
            logger.info(f"Indexing: embedded {progress.embedded_chunks}/{progress.total_chunks}")
            if progress_callback:
                progress_callback(progress)

        return embedded

    async def _ensure_indexes(self, report: IndexReport) -> None:
        try:
            await self.store.ensure_indexes()
        except Exception as e:
            logger.warning("Index build failed; search falls back to unindexed scans", error=str(e))
            report.warn(f"index build failed: {e}")
