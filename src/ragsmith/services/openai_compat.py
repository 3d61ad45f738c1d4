"""
OpenAI-compatible embedding and generation clients over httpx.
"""

import re
from typing import Any, Protocol

import httpx
import numpy as np

from ..config.settings import ModelEndpoint, RetryConfig
from ..errors import ServiceError
from ..observability.logging import get_logger
from .retry import classify_http_error, classify_transport_error, with_retry

logger = get_logger(__name__)


class EmbeddingService(Protocol):
    """Embeds texts into unit vectors, one per input, same order."""

    model: str

    async def embed(self, texts: list[str]) -> list[list[float]]: ...


class GenerationService(Protocol):
    """Generates text from instructions and an input."""

    model: str

    async def generate(self, instructions: str, input: str) -> str: ...


def normalize_text(text: str) -> str:
    """Unify newlines, collapse runs of spaces and tabs, and trim."""
    return re.sub(r"[ \t]+", " ", str(text).replace("\r\n", "\n")).strip()


def to_unit_vector(values) -> list[float]:
    vec = np.asarray(values, dtype=np.float64)
    norm = float(np.linalg.norm(vec)) or 1.0
    return (vec / norm).tolist()


class _HttpModelClient:
    """Shared httpx plumbing: owned client lifecycle, auth headers, error mapping."""

    def __init__(
        self,
        endpoint: ModelEndpoint,
        retry: RetryConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.endpoint = endpoint
        self.model = endpoint.name
        self.retry = retry or RetryConfig()
        self._http_client = http_client
        self._owned_client = http_client is None

    async def __aenter__(self):
        self._client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.endpoint.timeout),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=2),
            )
        return self._http_client

    async def aclose(self) -> None:
        if self._owned_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.endpoint.api_key:
            headers["Authorization"] = f"Bearer {self.endpoint.api_key}"
        return headers

    async def _post(self, path: str, payload: dict[str, Any], label: str) -> dict[str, Any]:
        url = f"{self.endpoint.base_url}{path}"

        async def call() -> dict[str, Any]:
            try:
                response = await self._client().post(url, json=payload, headers=self._get_headers())
            except httpx.TransportError as e:
                raise classify_transport_error(e) from e
            if response.status_code >= 400:
                raise classify_http_error(response)
            return response.json()

        return await with_retry(call, self.retry, label)


class OpenAIEmbeddingService(_HttpModelClient):
    """``POST /embeddings``; returns L2-normalized vectors."""

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        data = await self._post(
            "/embeddings",
            {
                "model": self.model,
                "input": [normalize_text(t) for t in texts],
                "encoding_format": "float",
            },
            label="embeddings",
        )
        items = sorted(data.get("data", []), key=lambda d: d.get("index", 0))
        if len(items) != len(texts):
            raise ServiceError(f"expected {len(texts)} embeddings, got {len(items)}")
        return [to_unit_vector(item["embedding"]) for item in items]


class OpenAIGenerationService(_HttpModelClient):
    """``POST /chat/completions`` with the instructions as the system message."""

    async def generate(self, instructions: str, input: str) -> str:
        data = await self._post(
            "/chat/completions",
            {
                "model": self.model,
                "messages": [
                    {"role": "system", "content": instructions},
                    {"role": "user", "content": input},
                ],
                "temperature": self.endpoint.temperature,
            },
            label="generation",
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ServiceError(f"malformed completion response: {e}") from e
        return (content or "").strip()
