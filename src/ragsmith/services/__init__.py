"""Model service clients consumed by the indexer and the query engine."""

from .openai_compat import (
    EmbeddingService,
    GenerationService,
    OpenAIEmbeddingService,
    OpenAIGenerationService,
    normalize_text,
    to_unit_vector,
)
from .retry import classify_http_error, with_retry

__all__ = [
    "EmbeddingService",
    "GenerationService",
    "OpenAIEmbeddingService",
    "OpenAIGenerationService",
    "normalize_text",
    "to_unit_vector",
    "classify_http_error",
    "with_retry",
]
