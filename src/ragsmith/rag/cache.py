"""
Query-time caches and their serialized writer.

Each cache is a flat key -> value map loaded once and shared by all requests
of one engine. Reads and in-memory updates happen synchronously on the event
loop; persistence goes through a single FIFO consumer so concurrent requests
never interleave partial writes. A failed write is logged and does not stop
later writes.

Entries are never invalidated: values are pure functions of their key, but a
changed model or corpus behind an unchanged key keeps serving stale entries.
"""

import asyncio
import hashlib
from collections.abc import Callable
from pathlib import Path
from typing import Any

from ..observability.logging import get_logger
from .jsonfile import atomic_write_json, read_json

logger = get_logger(__name__)


def text_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:32]


def cache_key(kind: str, model: str, *texts: str) -> str:
    """``kind:model:hash[:hash...]`` for the given input texts."""
    return ":".join([kind, model, *(text_hash(t) for t in texts)])


class JsonCache:
    """An in-memory map mirrored to one JSON file."""

    def __init__(self, path: Path | str, name: str):
        self.path = Path(path)
        self.name = name
        self._data: dict[str, Any] = {}

    def load(self) -> None:
        """Load entries from disk. A missing or corrupt file starts empty."""
        if not self.path.exists():
            self._data = {}
            return
        try:
            data = read_json(self.path)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load {self.name} cache: {e}", path=str(self.path))
            self._data = {}
            return
        self._data = data if isinstance(data, dict) else {}
        logger.info(f"Loaded {self.name} cache", entries=len(self._data), path=str(self.path))

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def snapshot(self) -> dict[str, Any]:
        return dict(self._data)


_STOP = object()


class CacheWriter:
    """Single-consumer FIFO queue of blocking write jobs."""

    def __init__(self):
        self._queue: asyncio.Queue | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._task = asyncio.create_task(self._run(), name="ragsmith-cache-writer")

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is _STOP:
                    return
                job, done = item
                try:
                    await asyncio.to_thread(job)
                    ok = True
                except Exception as e:
                    logger.warning(f"Cache write failed: {e}", error=type(e).__name__)
                    ok = False
                if not done.done():
                    done.set_result(ok)
            finally:
                self._queue.task_done()

    def enqueue(self, job: Callable[[], None]) -> asyncio.Future:
        """Queue ``job``; the future resolves to True on success, False on failure."""
        self.start()
        done = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((job, done))
        return done

    async def close(self) -> None:
        """Drain pending writes and stop the consumer."""
        if not self.running:
            return
        self._queue.put_nowait(_STOP)
        await self._task
        self._task = None


def persist_job(caches: list[JsonCache]) -> Callable[[], None]:
    """Snapshot caches now; the returned job writes the snapshots atomically."""
    snapshots = [(cache.path, cache.snapshot()) for cache in caches]

    def write() -> None:
        for path, data in snapshots:
            atomic_write_json(path, data)

    return write
