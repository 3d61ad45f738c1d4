"""
Tests for the query engine pipeline and lifecycle.
"""

import asyncio
import json

import pytest
from conftest import FakeEmbeddingService, FakeGenerationService, make_settings

from ragsmith.errors import (
    InvalidRequestError,
    QuotaExceededError,
    RagError,
    ServiceUnavailableError,
    TransientServiceError,
)
from ragsmith.rag.engine import (
    NO_MATCH_ANSWER,
    AskOptions,
    QueryEngine,
    build_variant_texts,
    parse_rewrites,
)
from ragsmith.rag.indexer import Indexer, IndexingStatus
from ragsmith.rag.manifest import Manifest
from ragsmith.rag.selection import SearchFilters

QUESTION = "what is the refund policy"

POLICY = """Our refund policy allows returns within 30 days of delivery.

Shipping is free on orders over fifty dollars and takes five days."""


class ParagraphChunker:
    """Splits on blank lines."""

    def chunk(self, text, options=None):
        return [p.strip() for p in text.split("\n\n") if p.strip()]


def build_engine(tmp_path, store, embedder=None, generator=None, **retrieval):
    settings = make_settings(tmp_path, **retrieval)
    embedder = embedder or FakeEmbeddingService()
    generator = generator or FakeGenerationService()
    indexer = Indexer(
        store,
        embedder,
        Manifest(settings.cache.manifest_path),
        ParagraphChunker(),
        settings.indexing.data_directory,
    )
    return QueryEngine(settings, store, embedder, generator, indexer=indexer)


@pytest.fixture
def policy_dir(data_dir):
    (data_dir / "policy.md").write_text(POLICY)
    return data_dir


class TestAskScenarios:
    """End-to-end question answering."""

    @pytest.mark.asyncio
    async def test_must_include_selects_refund_chunk(self, tmp_path, policy_dir, store):
        async with build_engine(tmp_path, store) as engine:
            report = await engine.reindex("full")
            assert report.chunks_count == 2

            result = await engine.ask(
                QUESTION, AskOptions(must_include=["refund"], must_include_mode="all")
            )

        assert result.sources == ["policy.md#0"]
        assert result.answer == "Answer from 1 passage(s)."

    @pytest.mark.asyncio
    async def test_unknown_source_yields_no_match(self, tmp_path, policy_dir, store):
        generator = FakeGenerationService()
        async with build_engine(tmp_path, store, generator=generator) as engine:
            await engine.reindex("full")
            result = await engine.ask(
                QUESTION, AskOptions(filters=SearchFilters(sources=["nonexistent.md"]))
            )

        assert result.answer == NO_MATCH_ANSWER
        assert result.sources == []
        assert generator.count("answer") == 0

    @pytest.mark.asyncio
    async def test_must_include_string_is_split(self, tmp_path, policy_dir, store):
        async with build_engine(tmp_path, store) as engine:
            await engine.reindex("full")
            result = await engine.ask(QUESTION, AskOptions(must_include="shipping free", debug=True))

        assert result.sources == ["policy.md#1"]
        assert result.debug["must_include"] == ["shipping", "free"]

    @pytest.mark.asyncio
    async def test_vector_only_mode(self, tmp_path, policy_dir, store):
        async with build_engine(tmp_path, store, enable_hybrid=False) as engine:
            await engine.reindex("full")
            result = await engine.ask(QUESTION, AskOptions(debug=True))

        assert result.sources
        assert result.debug["hybrid"] is False

    @pytest.mark.asyncio
    async def test_debug_payload(self, tmp_path, policy_dir, store):
        generator = FakeGenerationService(rewrites=["refund rules"], hyde="Refunds are accepted.")
        async with build_engine(tmp_path, store, generator=generator, diversity_min_keep=-1.0) as engine:
            await engine.reindex("full")
            result = await engine.ask(QUESTION, AskOptions(debug=True))

        debug = result.to_dict()["debug"]
        assert set(debug) == {
            "hybrid",
            "rrf_k",
            "filters",
            "must_include",
            "must_include_mode",
            "rewrites",
            "hyde_used",
            "retrieved_candidates",
            "after_filtering",
            "context_chunks",
            "duration_ms",
        }
        assert debug["rewrites"] == ["refund rules"]
        assert debug["hyde_used"] is True
        assert debug["retrieved_candidates"] == 2
        assert debug["context_chunks"] == len(result.sources) == 2

    @pytest.mark.asyncio
    async def test_no_debug_by_default(self, tmp_path, policy_dir, store):
        async with build_engine(tmp_path, store) as engine:
            await engine.reindex("full")
            result = await engine.ask(QUESTION)
        assert result.debug is None
        assert "debug" not in result.to_dict()


class TestValidation:
    """Requests rejected before any network call."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("question", ["", " ", "a", " b "])
    async def test_short_question(self, tmp_path, store, question):
        embedder = FakeEmbeddingService()
        engine = build_engine(tmp_path, store, embedder=embedder)
        with pytest.raises(InvalidRequestError):
            await engine.ask(question)
        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_unknown_must_include_mode(self, tmp_path, store):
        engine = build_engine(tmp_path, store)
        with pytest.raises(InvalidRequestError) as exc_info:
            await engine.ask(QUESTION, AskOptions(must_include_mode="some"))
        assert exc_info.value.status_code == 400


class TestServiceFailures:
    """Quota handling per pipeline stage."""

    @pytest.mark.asyncio
    async def test_augmentation_quota_degrades(self, tmp_path, policy_dir, store):
        embedder = FakeEmbeddingService()
        generator = FakeGenerationService(rewrites=["x"], hyde="y")
        quota = QuotaExceededError("quota", status=429, code="insufficient_quota")
        generator.errors = {"rewrite": quota, "hyde": quota}

        async with build_engine(tmp_path, store, embedder, generator) as engine:
            await engine.reindex("full")
            result = await engine.ask(QUESTION, AskOptions(debug=True))

        assert result.sources
        assert embedder.calls[-1] == [QUESTION]
        assert result.debug["rewrites"] == []
        assert result.debug["hyde_used"] is False

    @pytest.mark.asyncio
    async def test_augmentation_transient_failure_degrades(self, tmp_path, policy_dir, store):
        generator = FakeGenerationService(hyde="Refunds within thirty days.")
        generator.errors = {"rewrite": TransientServiceError("503", status=503)}

        async with build_engine(tmp_path, store, generator=generator) as engine:
            await engine.reindex("full")
            result = await engine.ask(QUESTION, AskOptions(debug=True))

        assert result.debug["rewrites"] == []
        assert result.debug["hyde_used"] is True

    @pytest.mark.asyncio
    async def test_embedding_quota_is_service_unavailable(self, tmp_path, policy_dir, store):
        embedder = FakeEmbeddingService()
        async with build_engine(tmp_path, store, embedder=embedder) as engine:
            await engine.reindex("full")
            embedder.error = QuotaExceededError("quota", status=429, code="insufficient_quota")
            with pytest.raises(ServiceUnavailableError) as exc_info:
                await engine.ask(QUESTION)

        assert exc_info.value.stage == "embedding"
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_answer_quota_is_service_unavailable(self, tmp_path, policy_dir, store):
        generator = FakeGenerationService()
        generator.errors = {"answer": QuotaExceededError("billing", status=429)}
        async with build_engine(tmp_path, store, generator=generator) as engine:
            await engine.reindex("full")
            with pytest.raises(ServiceUnavailableError) as exc_info:
                await engine.ask(QUESTION)

        assert exc_info.value.stage == "generation"


class TestCaching:
    """Cache reuse and persistence."""

    @pytest.mark.asyncio
    async def test_caches_persist_across_engines(self, tmp_path, policy_dir, store):
        async with build_engine(tmp_path, store) as engine:
            await engine.reindex("full")
            first = await engine.ask(QUESTION)
            cache_dir = engine.settings.cache.directory

        for name in ("embeddings.json", "augment.json", "answers.json"):
            assert isinstance(json.loads((cache_dir / name).read_text()), dict)

        embedder = FakeEmbeddingService()
        generator = FakeGenerationService()
        async with build_engine(tmp_path, store, embedder, generator) as engine:
            second = await engine.ask(QUESTION)

        assert second.to_dict() == first.to_dict()
        assert embedder.calls == []
        assert generator.calls == []

    @pytest.mark.asyncio
    async def test_duplicate_variants_embedded_once(self, tmp_path, policy_dir, store):
        embedder = FakeEmbeddingService()
        generator = FakeGenerationService(rewrites=[QUESTION], hyde=QUESTION)
        async with build_engine(tmp_path, store, embedder, generator) as engine:
            await engine.reindex("full")
            calls = len(embedder.calls)
            await engine.ask(QUESTION)

        assert embedder.calls[calls:] == [[QUESTION]]

    @pytest.mark.asyncio
    async def test_concurrent_asks(self, tmp_path, policy_dir, store):
        async with build_engine(tmp_path, store, diversity_min_keep=-1.0) as engine:
            await engine.reindex("full")
            results = await asyncio.gather(
                engine.ask(QUESTION),
                engine.ask("how long does shipping take"),
                engine.ask(QUESTION, AskOptions(must_include=["refund"])),
            )
            cache_path = engine.settings.cache.answers_path

        assert all(r.sources for r in results)
        assert len(json.loads(cache_path.read_text())) >= 2

    @pytest.mark.asyncio
    async def test_max_rewrites(self, tmp_path, policy_dir, store):
        embedder = FakeEmbeddingService()
        generator = FakeGenerationService(rewrites=["one", "two", "three"])
        async with build_engine(tmp_path, store, embedder, generator, max_rewrites=1) as engine:
            await engine.reindex("full")
            await engine.ask(QUESTION)
        assert embedder.calls[-1] == [QUESTION, "one"]


class TestReindex:
    """Reindexing through the engine."""

    @pytest.mark.asyncio
    async def test_incremental_after_edit(self, tmp_path, policy_dir, store):
        async with build_engine(tmp_path, store) as engine:
            await engine.reindex("incremental")
            (policy_dir / "policy.md").write_text(POLICY.replace("30 days", "60 days"))
            report = await engine.reindex("incremental")

        assert (report.added, report.deleted) == (1, 1)
        assert report.status == IndexingStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unknown_mode(self, tmp_path, store):
        engine = build_engine(tmp_path, store)
        with pytest.raises(InvalidRequestError):
            await engine.reindex("sideways")

    @pytest.mark.asyncio
    async def test_without_indexer(self, tmp_path, store):
        engine = QueryEngine(make_settings(tmp_path), store, FakeEmbeddingService(), FakeGenerationService())
        with pytest.raises(RagError):
            await engine.reindex("full")


class TestHelpers:
    """Variant assembly and rewrite parsing."""

    def test_variant_texts_drop_empty(self):
        assert build_variant_texts("q", ["a", ""], "") == ["q", "a"]
        assert build_variant_texts("q", [], "h") == ["q", "h"]

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ('{"queries": ["a", "b", "c", "d"]}', ["a", "b", "c"]),
            ('{"queries": ["a", 3, " "]}', ["a"]),
            ("not json", []),
            ('{"other": []}', []),
            ('["a"]', []),
        ],
    )
    def test_parse_rewrites(self, raw, expected):
        assert parse_rewrites(raw, 3) == expected
