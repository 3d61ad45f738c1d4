"""
Error classification and retry policy for model service calls.

Backoff before retry ``n`` (0-based) is ``min(max_delay, base_delay * 2**n)``
plus uniform jitter. Quota failures are never retried.
"""

from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from ..config.settings import RetryConfig
from ..errors import QuotaExceededError, ServiceError, TransientServiceError
from ..observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_QUOTA_CODES = {"insufficient_quota", "billing_hard_limit_reached", "billing_not_active"}
_RATE_LIMIT_CODES = {"rate_limit_exceeded"}


def _error_body(response: httpx.Response) -> tuple[str | None, str]:
    try:
        payload = response.json()
    except ValueError:
        return None, response.text or ""
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return error.get("code") or error.get("type"), str(error.get("message") or "")
    return None, str(error or "")


def classify_http_error(response: httpx.Response) -> ServiceError:
    """Map a failed HTTP response onto the service error taxonomy."""
    status = response.status_code
    code, message = _error_body(response)
    msg = message.lower()

    if status == 429 and (code in _QUOTA_CODES or "quota" in msg or "billing" in msg):
        return QuotaExceededError(message or "quota exhausted", status=status, code=code)
    if status == 429 and (
        code in _RATE_LIMIT_CODES
        or "rate limit" in msg
        or "too many requests" in msg
        or code is None
    ):
        return TransientServiceError(message or "rate limited", status=status, code=code)
    if 500 <= status <= 599 or "timeout" in msg or "temporarily" in msg:
        return TransientServiceError(message or f"server error {status}", status=status, code=code)
    return ServiceError(message or f"request failed with status {status}", status=status, code=code)


def classify_transport_error(exc: httpx.TransportError) -> TransientServiceError:
    """Timeouts and connection failures are always transient."""
    return TransientServiceError(f"{type(exc).__name__}: {exc}")


def _log_retry(label: str):
    def before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"{label} failed; retrying",
            attempt=retry_state.attempt_number,
            backoff_s=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
            status=getattr(exc, "status", None),
            code=getattr(exc, "code", None),
        )

    return before_sleep


def retrying(config: RetryConfig, label: str) -> AsyncRetrying:
    """Build the tenacity controller for one call site."""
    return AsyncRetrying(
        stop=stop_after_attempt(config.max_retries + 1),
        wait=wait_exponential(multiplier=config.base_delay, exp_base=2, max=config.max_delay)
        + wait_random(0, config.jitter),
        retry=retry_if_exception_type(TransientServiceError),
        before_sleep=_log_retry(label),
        reraise=True,
    )


async def with_retry(fn: Callable[[], Awaitable[T]], config: RetryConfig, label: str) -> T:
    """Await ``fn`` under the retry policy, re-raising the final error."""
    async for attempt in retrying(config, label):
        with attempt:
            return await fn()
    raise AssertionError("unreachable")  # pragma: no cover
