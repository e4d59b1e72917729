from __future__ import annotations

from typing import Any


class KairosError(Exception):
    """Base exception for all build controller errors.

    Attributes:
        code: Optional machine-readable error code (e.g. ``"CONFLICT"``).
        details: Arbitrary key/value context about the error.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}

    @property
    def is_retryable(self) -> bool:
        """Whether the operation that raised this error can be retried as-is."""
        return False


class ConfigurationError(KairosError): ...


class CallbackError(KairosError): ...


# ---------------------------------------------------------------------------
# Object store errors
# ---------------------------------------------------------------------------


class StoreError(KairosError): ...


class NotFoundError(StoreError): ...


class AlreadyExistsError(StoreError): ...


class ConflictError(StoreError):
    """The write was rejected because the object changed since it was read.

    Always retryable, but only by re-reading: the caller must restart the
    whole reconcile instead of patching the stale copy.
    """

    @property
    def is_retryable(self) -> bool:  # noqa: D102
        return True


# ---------------------------------------------------------------------------
# Job construction
# ---------------------------------------------------------------------------


class JobConstructionError(KairosError):
    """The build spec cannot be turned into an execution job.

    Surfaced to the work queue and retried with backoff; a permanently
    invalid spec keeps retrying until someone edits or deletes it.
    """

    @property
    def is_retryable(self) -> bool:  # noqa: D102
        return True
