"""
Observability for ragsmith: structured logging with trace IDs and stage probes.

Usage:
    >>> from ragsmith.observability import get_logger, probe
    >>>
    >>> logger = get_logger(__name__)
    >>>
    >>> with probe("engine.retrieve", variants=3):
    ...     hits = await store.hybrid_search_multi(vectors, texts)
"""

from .logging import ensure_trace_id, get_logger, get_trace_id, new_trace_id, set_trace_id, setup_logging
from .probe import probe

__all__ = [
    "get_logger",
    "setup_logging",
    "new_trace_id",
    "ensure_trace_id",
    "set_trace_id",
    "get_trace_id",
    "probe",
]
