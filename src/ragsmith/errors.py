"""
Error taxonomy for the retrieval engine.

Transient failures are retried, quota failures never are, validation failures
are raised before any network call and backend failures are logged and
degraded where the pipeline allows it.
"""


class RagError(Exception):
    """Base class for all ragsmith errors."""

    status_code: int = 500


class ServiceError(RagError):
    """A model service call failed."""

    def __init__(self, message: str, status: int | None = None, code: str | None = None):
        super().__init__(message)
        self.status = status
        self.code = code


class TransientServiceError(ServiceError):
    """Rate limit, 5xx, timeout or connection failure. Safe to retry."""


class QuotaExceededError(ServiceError):
    """Billing or quota exhausted. Never retried."""


class ServiceUnavailableError(RagError):
    """A request-fatal stage could not run because the service has no quota."""

    status_code = 503

    def __init__(self, message: str, stage: str):
        super().__init__(message)
        self.stage = stage


class InvalidRequestError(RagError):
    """Malformed input rejected before any network call."""

    status_code = 400


class StoreError(RagError):
    """Storage backend operation failed."""


class StoreNotInitializedError(StoreError):
    """The backing collection has not been created yet."""


class DuplicateRecordError(StoreError):
    """An added record id is already present in the collection."""

    def __init__(self, ids: list[str]):
        preview = ", ".join(ids[:5])
        super().__init__(f"{len(ids)} record id(s) already stored: {preview}")
        self.ids = ids


class ManifestError(RagError):
    """The manifest exists but cannot be read."""
