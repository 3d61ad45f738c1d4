"""
Global pytest configuration and fixtures for test isolation.

Provides deterministic fake model services, a memory-backed store and
settings rooted in a temporary directory so tests never touch the network
or the working tree.
"""

import hashlib
import json
import random

import numpy as np
import pytest

from ragsmith.config.settings import (
    CacheConfig,
    IndexingConfig,
    RetrievalConfig,
    Settings,
    StoreConfig,
    get_settings,
)
from ragsmith.rag.backends.keyword import tokenize
from ragsmith.rag.backends.memory import MemoryBackend
from ragsmith.rag.chunking import FixedSizeChunker
from ragsmith.rag.identity import Chunk, ChunkRecord, make_citation_id
from ragsmith.rag.indexer import Indexer
from ragsmith.rag.manifest import Manifest
from ragsmith.rag.prompts import HYDE_INSTRUCTIONS, MULTI_QUERY_INSTRUCTIONS
from ragsmith.rag.store import HybridStore

EMBED_DIM = 256


def hash_vector(text: str, dim: int = EMBED_DIM) -> list[float]:
    """Bag-of-words vector with hashed token buckets, L2-normalized."""
    vec = np.zeros(dim, dtype=np.float64)
    for token in tokenize(text):
        bucket = int(hashlib.sha256(token.encode("utf-8")).hexdigest()[:8], 16) % dim
        vec[bucket] += 1.0
    norm = float(np.linalg.norm(vec))
    if norm == 0:
        vec[0] = 1.0
        norm = 1.0
    return (vec / norm).tolist()


class FakeEmbeddingService:
    """Deterministic embedder that records every batch it is asked for."""

    def __init__(self, model: str = "fake-embedding"):
        self.model = model
        self.calls: list[list[str]] = []
        self.error: Exception | None = None

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return [hash_vector(t) for t in texts]

    @property
    def embedded_texts(self) -> int:
        return sum(len(batch) for batch in self.calls)


class FakeGenerationService:
    """Scripted generator keyed on which instructions it receives."""

    def __init__(self, model: str = "fake-generation", rewrites=None, hyde: str = ""):
        self.model = model
        self.rewrites = list(rewrites or [])
        self.hyde = hyde
        self.calls: list[tuple[str, str]] = []
        self.errors: dict[str, Exception] = {}

    async def generate(self, instructions: str, input: str) -> str:
        if instructions == MULTI_QUERY_INSTRUCTIONS:
            kind = "rewrite"
        elif instructions == HYDE_INSTRUCTIONS:
            kind = "hyde"
        else:
            kind = "answer"
        self.calls.append((kind, input))

        if kind in self.errors:
            raise self.errors[kind]
        if kind == "rewrite":
            return json.dumps({"queries": self.rewrites})
        if kind == "hyde":
            return self.hyde
        return f"Answer from {input.count('[source: ')} passage(s)."

    def count(self, kind: str) -> int:
        return sum(1 for k, _ in self.calls if k == kind)


def make_chunk(source: str, index: int, content: str) -> Chunk:
    return Chunk(
        citation_id=make_citation_id(source, index), source=source, chunk_index=index, content=content
    )


def make_record(record_id: str, content: str = "", source: str = "doc.md", vector=None) -> ChunkRecord:
    return ChunkRecord(
        id=record_id,
        content_hash=hashlib.sha256(content.encode()).hexdigest(),
        citation_id=f"{source}#0",
        source=source,
        chunk_index=0,
        content=content or record_id,
        vector=tuple(vector) if vector is not None else None,
    )


def make_settings(tmp_path, **retrieval) -> Settings:
    return Settings(
        store=StoreConfig(backend="memory"),
        cache=CacheConfig(directory=tmp_path / ".cache"),
        indexing=IndexingConfig(data_directory=tmp_path / "data"),
        retrieval=RetrievalConfig(**retrieval),
    )


@pytest.fixture(autouse=True)
def test_isolation():
    """Reseed RNGs and drop cached settings before every test."""
    random.seed(1337)
    np.random.seed(1337)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def data_dir(tmp_path):
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def embedder():
    return FakeEmbeddingService()


@pytest.fixture
def generator():
    return FakeGenerationService()


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def store(backend):
    return HybridStore(backend)


@pytest.fixture
def manifest(tmp_path):
    return Manifest(tmp_path / ".cache" / "record_manager.json")


@pytest.fixture
def indexer(store, embedder, manifest, data_dir):
    return Indexer(
        store=store,
        embedder=embedder,
        manifest=manifest,
        chunker=FixedSizeChunker(max_chunk_size=200, overlap=20),
        data_directory=data_dir,
        batch_size=4,
    )
