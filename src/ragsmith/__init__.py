"""
ragsmith - question answering over a private document corpus.

Documents are cut into content-addressed chunks, indexed incrementally by
diffing chunk ids against a persisted manifest, and searched with hybrid
vector + BM25 retrieval fused by Reciprocal Rank Fusion. Each question fans
out into rewritten and hypothetical-answer variants whose results are merged,
filtered, diversified and handed to a generation model as the only context.

Quick Start:
    >>> from ragsmith.config import setup_container
    >>> from ragsmith.rag import AskOptions
    >>>
    >>> container = setup_container()
    >>> async with container.lifespan():
    ...     engine = await container.get_async("engine")
    ...     await engine.reindex("incremental")
    ...     result = await engine.ask("What is the refund policy?", AskOptions())
    ...     print(result.answer, result.sources)

Command line:
    $ ragsmith index --mode full
    $ ragsmith ask "What is the refund policy?" --must-include refund --debug

Configuration (environment, ``RAGSMITH_`` prefix, ``__`` for nesting):
    - RAGSMITH_MODELS__EMBEDDINGS__API_KEY=sk-...
    - RAGSMITH_STORE__BACKEND=chroma
    - RAGSMITH_RETRIEVAL__CONTEXT_K=6
    - RAGSMITH_OBSERVABILITY__LOG_LEVEL=DEBUG
"""

__version__ = "0.1.0"

from .config.settings import Settings
from .errors import RagError, ServiceUnavailableError
from .rag.engine import AskOptions, AskResult, QueryEngine
from .rag.indexer import Indexer, IndexMode

__all__ = [
    "Settings",
    "QueryEngine",
    "AskOptions",
    "AskResult",
    "Indexer",
    "IndexMode",
    "RagError",
    "ServiceUnavailableError",
]
