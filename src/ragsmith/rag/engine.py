"""
Query engine: augmentation, cached embedding, multi-variant retrieval,
constraint filtering, diversity selection and cached answer generation.

One engine owns the three query caches and the writer that persists them.
Use it as an async context manager (or call ``start``/``close``) so caches are
loaded before the first request and pending writes are flushed at shutdown.
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any

from ..config.settings import Settings
from ..errors import (
    InvalidRequestError,
    QuotaExceededError,
    RagError,
    ServiceError,
    ServiceUnavailableError,
)
from ..observability.logging import get_logger, new_trace_id
from ..observability.probe import probe
from ..services.openai_compat import EmbeddingService, GenerationService
from .cache import CacheWriter, JsonCache, cache_key, persist_job
from .indexer import Indexer, IndexMode, IndexReport
from .prompts import ANSWER_INSTRUCTIONS, HYDE_INSTRUCTIONS, MULTI_QUERY_INSTRUCTIONS, answer_input
from .selection import (
    SearchFilters,
    apply_must_include,
    apply_source_filters,
    build_context_block,
    pick_diverse,
)
from .store import HybridStore, SearchMode

logger = get_logger(__name__)

NO_MATCH_ANSWER = (
    "I couldn't find relevant passages that match your filters/keywords in the provided documents."
)

MIN_QUESTION_LENGTH = 2
MUST_INCLUDE_MODES = ("all", "any")


@dataclass
class AskOptions:
    """Per-request retrieval constraints."""

    filters: SearchFilters | None = None
    must_include: list[str] | str | None = None
    must_include_mode: str = "all"
    debug: bool | None = None

    def keywords(self) -> list[str]:
        """Must-include keywords; a plain string is split on whitespace."""
        if self.must_include is None:
            return []
        if isinstance(self.must_include, str):
            return self.must_include.split()
        return [str(k).strip() for k in self.must_include if str(k).strip()]


@dataclass
class AskResult:
    answer: str
    sources: list[str] = field(default_factory=list)
    debug: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"answer": self.answer, "sources": list(self.sources)}
        if self.debug is not None:
            out["debug"] = self.debug
        return out


def build_variant_texts(question: str, rewrites: list[str], hyde: str) -> list[str]:
    """``[question] + rewrites + [hyde]`` with empty entries dropped."""
    return [t for t in [question, *rewrites, hyde] if t]


def parse_rewrites(raw: str, limit: int) -> list[str]:
    """Extract ``{"queries": [...]}`` from model output; anything else yields no rewrites."""
    try:
        parsed = json.loads(raw.strip())
    except ValueError:
        return []
    if not isinstance(parsed, dict) or not isinstance(parsed.get("queries"), list):
        return []
    queries = [q.strip() for q in parsed["queries"] if isinstance(q, str) and q.strip()]
    return queries[:limit]


class QueryEngine:
    """Answers questions from the indexed corpus."""

    def __init__(
        self,
        settings: Settings,
        store: HybridStore,
        embedder: EmbeddingService,
        generator: GenerationService,
        indexer: Indexer | None = None,
    ):
        self.settings = settings
        self.store = store
        self.embedder = embedder
        self.generator = generator
        self.indexer = indexer

        cache = settings.cache
        self.embedding_cache = JsonCache(cache.embeddings_path, "embedding")
        self.augment_cache = JsonCache(cache.augment_path, "augmentation")
        self.answer_cache = JsonCache(cache.answers_path, "answer")
        self._writer = CacheWriter()
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        for c in (self.embedding_cache, self.augment_cache, self.answer_cache):
            await asyncio.to_thread(c.load)
        self._writer.start()
        try:
            await self.store.ensure_indexes()
        except Exception as e:
            logger.warning("Index check at startup failed; continuing", error=str(e))
        self._started = True
        logger.info("Query engine started")

    async def close(self) -> None:
        await self._writer.close()
        self._started = False
        logger.info("Query engine stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ---------- augmentation ----------

    async def _rewrites(self, question: str) -> list[str]:
        retrieval = self.settings.retrieval
        if not retrieval.enable_multi_query or retrieval.max_rewrites == 0:
            return []

        key = cache_key("mq", self.generator.model, question)
        if key in self.augment_cache:
            return list(self.augment_cache.get(key))[: retrieval.max_rewrites]

        raw = await self.generator.generate(MULTI_QUERY_INSTRUCTIONS, question)
        queries = parse_rewrites(raw, retrieval.max_rewrites)
        self.augment_cache.set(key, queries)
        return queries

    async def _hyde(self, question: str) -> str:
        if not self.settings.retrieval.enable_hyde:
            return ""

        key = cache_key("hyde", self.generator.model, question)
        if key in self.augment_cache:
            return str(self.augment_cache.get(key))

        hyde = (await self.generator.generate(HYDE_INSTRUCTIONS, question)).strip()
        self.augment_cache.set(key, hyde)
        return hyde

    async def _augment(self, question: str) -> tuple[list[str], str]:
        """Best-effort rewrites and hypothetical answer; service failures degrade to none."""
        with probe("engine.augment"):
            rewrites, hyde = await asyncio.gather(
                self._rewrites(question), self._hyde(question), return_exceptions=True
            )

        results = []
        for label, value, empty in (("rewrites", rewrites, []), ("hyde", hyde, "")):
            if isinstance(value, QuotaExceededError):
                logger.warning(
                    f"No quota for augmentation; continuing without {label}", code=value.code
                )
                value = empty
            elif isinstance(value, ServiceError):
                logger.warning(f"Augmentation failed; continuing without {label}", error=str(value))
                value = empty
            elif isinstance(value, BaseException):
                raise value
            results.append(value)
        return results[0], results[1]

    # ---------- embeddings ----------

    async def _embed_cached(self, texts: list[str]) -> list[list[float]]:
        """One vector per text; only distinct cache misses go to the service, in one call."""
        model = self.embedder.model
        keys = [cache_key("emb", model, t) for t in texts]

        misses: dict[str, str] = {}
        for key, text in zip(keys, texts, strict=True):
            if key not in self.embedding_cache and key not in misses:
                misses[key] = text

        if misses:
            try:
                vectors = await self.embedder.embed(list(misses.values()))
            except QuotaExceededError as e:
                raise ServiceUnavailableError(
                    "No API quota for embeddings. Add credits or use local embeddings.",
                    stage="embedding",
                ) from e
            if len(vectors) != len(misses):
                raise ServiceError(
                    f"embedding service returned {len(vectors)} vectors for {len(misses)} texts"
                )
            for key, vector in zip(misses, vectors, strict=True):
                self.embedding_cache.set(key, [float(x) for x in vector])

        logger.debug("Embedded query variants", variants=len(texts), misses=len(misses))
        return [self.embedding_cache.get(key) for key in keys]

    # ---------- answer ----------

    async def _answer_cached(self, question: str, context: str) -> str:
        key = cache_key("ans", self.generator.model, question, context)
        if key in self.answer_cache:
            return str(self.answer_cache.get(key))

        try:
            answer = await self.generator.generate(ANSWER_INSTRUCTIONS, answer_input(question, context))
        except QuotaExceededError as e:
            raise ServiceUnavailableError(
                "No API quota for answering. Add credits or use a local LLM.", stage="generation"
            ) from e
        self.answer_cache.set(key, answer)
        return answer

    async def _persist_caches(self) -> None:
        job = persist_job([self.embedding_cache, self.augment_cache, self.answer_cache])
        await self._writer.enqueue(job)

    # ---------- entry points ----------

    async def ask(self, question: str, options: AskOptions | None = None) -> AskResult:
        """Answer ``question`` from retrieved context, citing the chunks used."""
        options = options or AskOptions()
        question = (question or "").strip()
        if len(question) < MIN_QUESTION_LENGTH:
            raise InvalidRequestError(
                f"question must be at least {MIN_QUESTION_LENGTH} characters"
            )
        mode = (options.must_include_mode or "all").lower()
        if mode not in MUST_INCLUDE_MODES:
            raise InvalidRequestError(
                f"must_include_mode must be one of {', '.join(MUST_INCLUDE_MODES)}, got {mode!r}"
            )
        keywords = options.keywords()

        if not self._started:
            await self.start()

        new_trace_id()
        started = time.perf_counter()
        retrieval = self.settings.retrieval
        debug_enabled = self.settings.debug if options.debug is None else options.debug

        with probe("engine.ask"):
            rewrites, hyde = await self._augment(question)
            variant_texts = build_variant_texts(question, rewrites, hyde)

            with probe("engine.embed", variants=len(variant_texts)):
                variant_vectors = await self._embed_cached(variant_texts)

            search_mode = SearchMode.HYBRID if retrieval.enable_hybrid else SearchMode.VECTOR_ONLY
            per_query_top_k = retrieval.per_query_top_k * retrieval.per_query_expansion
            final_top_k = retrieval.final_top_k * retrieval.final_expansion
            with probe("engine.retrieve", mode=search_mode.value):
                merged = await self.store.search_multi(
                    variant_vectors,
                    variant_texts,
                    per_query_top_k=per_query_top_k,
                    final_top_k=final_top_k,
                    rrf_k=retrieval.rrf_k,
                    mode=search_mode,
                )

            filtered = apply_source_filters(merged, options.filters)
            filtered = apply_must_include(filtered, keywords, mode)

            def debug_payload(**extra: Any) -> dict[str, Any] | None:
                if not debug_enabled:
                    return None
                filters = options.filters
                return {
                    "hybrid": retrieval.enable_hybrid,
                    "rrf_k": retrieval.rrf_k,
                    "filters": (
                        {"sources": filters.sources, "source_prefix": filters.source_prefix}
                        if filters
                        else None
                    ),
                    "must_include": keywords,
                    "must_include_mode": mode,
                    "rewrites": rewrites,
                    "hyde_used": bool(hyde),
                    "retrieved_candidates": len(merged),
                    "after_filtering": len(filtered),
                    **extra,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                }

            if not filtered:
                logger.info(
                    "No passages left after filtering", retrieved=len(merged), keywords=len(keywords)
                )
                await self._persist_caches()
                return AskResult(NO_MATCH_ANSWER, [], debug_payload(context_chunks=0))

            selected = pick_diverse(
                filtered,
                k=retrieval.context_k,
                lam=retrieval.diversity_lambda,
                min_keep=retrieval.diversity_min_keep,
                token_budget=retrieval.context_token_budget,
            )
            context = build_context_block(selected)

            with probe("engine.answer", context_chunks=len(selected)):
                answer = await self._answer_cached(question, context)

            await self._persist_caches()

        logger.info(
            "Answered question",
            variants=len(variant_texts),
            retrieved=len(merged),
            filtered=len(filtered),
            selected=len(selected),
        )
        return AskResult(
            answer=answer,
            sources=[hit.record.citation_id for hit in selected],
            debug=debug_payload(context_chunks=len(selected)),
        )

    async def reindex(self, mode: IndexMode | str | None = None) -> IndexReport:
        """Rebuild the index against this engine's store."""
        if self.indexer is None:
            raise RagError("query engine has no indexer configured")
        mode = IndexMode.parse(mode or self.settings.indexing.default_mode)
        new_trace_id()
        return await self.indexer.build_index(mode)
