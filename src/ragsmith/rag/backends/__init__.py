"""Storage backends for the hybrid store."""

from .base import StorageBackend
from .keyword import KeywordIndex, tokenize
from .memory import MemoryBackend

__all__ = ["StorageBackend", "MemoryBackend", "KeywordIndex", "tokenize"]
