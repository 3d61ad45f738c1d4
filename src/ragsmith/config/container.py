"""
Dependency injection container wiring settings to the indexing and query stack.

Factories are lazy: a backend or HTTP client is only built when something
asks for it. ``get_async`` enters async context managers (the query engine,
the model services) and ``cleanup`` exits them in reverse order.
"""

from contextlib import asynccontextmanager
from typing import Any

from ..observability.logging import get_logger
from .settings import Settings, get_settings

logger = get_logger(__name__)


class Container:
    """Dependency injection container with async lifecycle management."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._services: dict[str, Any] = {}
        self._factories: dict[str, Any] = {}
        self._singletons: dict[str, Any] = {}
        self._async_resources: dict[str, Any] = {}

    def register_factory(self, name: str, factory: Any) -> None:
        """Register a factory function for a service."""
        self._factories[name] = factory

    def register_singleton(self, name: str, instance: Any) -> None:
        """Register a ready-made instance, overriding any factory."""
        self._singletons[name] = instance

    def get(self, name: str, default: Any = None) -> Any:
        """Get a service by name."""
        if name in self._singletons:
            return self._singletons[name]

        if name in self._services:
            return self._services[name]

        if name in self._factories:
            instance = self._factories[name](self)
            self._services[name] = instance
            return instance

        return default

    async def get_async(self, name: str, default: Any = None) -> Any:
        """Get a service, entering it first if it is an async context manager."""
        if name in self._async_resources:
            return self._async_resources[name]

        service = self.get(name, default)

        if hasattr(service, "__aenter__"):
            async_service = await service.__aenter__()
            self._async_resources[name] = async_service
            return async_service

        return service

    async def cleanup(self) -> None:
        """Exit entered resources (newest first), then close remaining owned clients."""
        for name, resource in reversed(list(self._async_resources.items())):
            try:
                await resource.__aexit__(None, None, None)
            except Exception as e:
                logger.error(f"Error cleaning up {name}: {e}")

        for name, service in self._services.items():
            if name in self._async_resources or not hasattr(service, "aclose"):
                continue
            try:
                await service.aclose()
            except Exception as e:
                logger.error(f"Error closing {name}: {e}")

        self._async_resources.clear()

    @asynccontextmanager
    async def lifespan(self):
        """Async context manager for container lifecycle."""
        try:
            yield self
        finally:
            await self.cleanup()


def setup_container(settings: Settings | None = None) -> Container:
    """Setup container with default service factories."""
    container = Container(settings)

    def _embedding_service_factory(c: Container):
        from ..services.openai_compat import OpenAIEmbeddingService

        return OpenAIEmbeddingService(c.settings.models.embeddings, retry=c.settings.retry)

    def _generation_service_factory(c: Container):
        from ..services.openai_compat import OpenAIGenerationService

        return OpenAIGenerationService(c.settings.models.generation, retry=c.settings.retry)

    def _backend_factory(c: Container):
        store = c.settings.store
        if store.backend == "memory":
            from ..rag.backends.memory import MemoryBackend

            return MemoryBackend()

        from ..rag.backends.chroma import ChromaBackend

        return ChromaBackend(uri=store.uri, collection_name=store.collection_name)

    def _store_factory(c: Container):
        from ..rag.store import HybridStore

        return HybridStore(c.get("backend"))

    def _manifest_factory(c: Container):
        from ..rag.manifest import Manifest

        return Manifest(c.settings.cache.manifest_path)

    def _chunker_factory(c: Container):
        from ..rag.chunking import FixedSizeChunker

        indexing = c.settings.indexing
        return FixedSizeChunker(max_chunk_size=indexing.chunk_size, overlap=indexing.chunk_overlap)

    def _indexer_factory(c: Container):
        from ..rag.indexer import Indexer

        indexing = c.settings.indexing
        return Indexer(
            store=c.get("store"),
            embedder=c.get("embedding_service"),
            manifest=c.get("manifest"),
            chunker=c.get("chunker"),
            data_directory=indexing.data_directory,
            extensions=indexing.extensions,
            batch_size=indexing.batch_size,
        )

    def _engine_factory(c: Container):
        from ..rag.engine import QueryEngine

        return QueryEngine(
            settings=c.settings,
            store=c.get("store"),
            embedder=c.get("embedding_service"),
            generator=c.get("generation_service"),
            indexer=c.get("indexer"),
        )

    container.register_factory("embedding_service", _embedding_service_factory)
    container.register_factory("generation_service", _generation_service_factory)
    container.register_factory("backend", _backend_factory)
    container.register_factory("store", _store_factory)
    container.register_factory("manifest", _manifest_factory)
    container.register_factory("chunker", _chunker_factory)
    container.register_factory("indexer", _indexer_factory)
    container.register_factory("engine", _engine_factory)

    return container
