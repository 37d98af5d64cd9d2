"""Exceptions for space-batcher."""

from typing import Any

import httpx

# ---------------------------------------------------------------------------
# Base Exception
# ---------------------------------------------------------------------------


class SpaceBatcherError(Exception):
    """
    Base exception for all space-batcher errors.

    All exceptions raised by this package inherit from this class,
    allowing callers to catch all package-specific errors with a single
    except clause.
    """

    pass


# ---------------------------------------------------------------------------
# Category Exceptions
# ---------------------------------------------------------------------------


class RemoteError(SpaceBatcherError):
    """
    Raised when the target management API rejects a request.

    Attributes:
        status_code: HTTP status returned by the service
        error_id: Service error identifier (e.g. "VersionMismatch")
        request_id: Service request id, useful when filing support tickets
        details: Raw error body, if one was returned
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        *,
        error_id: str | None = None,
        request_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        self.error_id = error_id
        self.request_id = request_id
        self.details = details or {}
        super().__init__(self._format_message(message))

    def _format_message(self, message: str) -> str:
        context = []
        if self.status_code is not None:
            context.append(f"status={self.status_code}")
        if self.error_id:
            context.append(f"error={self.error_id}")
        if self.request_id:
            context.append(f"request={self.request_id}")
        if context:
            return f"{message} [{', '.join(context)}]"
        return message


class MigrationError(SpaceBatcherError):
    """
    Base exception for failures while migrating a batch.

    These unwind to the driver's per-batch retry wrapper.
    """

    pass


class PreconditionError(SpaceBatcherError):
    """
    Base exception for run-level precondition failures.

    These are fatal to the whole run and never retried. Each carries a
    remediation hint that the CLI prints next to the error.
    """

    hint: str | None = None

    def __init__(self, message: str, hint: str | None = None) -> None:
        if hint is not None:
            self.hint = hint
        super().__init__(message)


# ---------------------------------------------------------------------------
# Remote Exceptions
# ---------------------------------------------------------------------------


class TooManyRequestsError(RemoteError):
    """Raised when the service answers 429 (rate limit exceeded)."""

    def __init__(
        self,
        message: str = "Too many requests",
        *,
        retry_after_seconds: float | None = None,
        request_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            message,
            429,
            error_id="RateLimitExceeded",
            request_id=request_id,
            details=details,
        )


class NotFoundError(RemoteError):
    """Raised when a resource does not exist on the target."""

    pass


class ConflictError(RemoteError):
    """Raised on 409 responses (resource already exists, version conflict)."""

    pass


class ServerError(RemoteError):
    """Raised on 5xx responses."""

    pass


# ---------------------------------------------------------------------------
# Migration Exceptions
# ---------------------------------------------------------------------------


class ContentModelError(MigrationError):
    """
    Raised when a content type cannot be created or published.

    A batch cannot be imported without its content model, so this aborts
    the current batch attempt.
    """

    def __init__(self, content_type_id: str, cause: Exception) -> None:
        self.content_type_id = content_type_id
        self.cause = cause
        super().__init__(f"Content type {content_type_id} failed: {cause}")


class BatchFailedError(MigrationError):
    """Raised when a batch exhausted its retries."""

    def __init__(self, batch_key: str, attempts: int, cause: Exception) -> None:
        self.batch_key = batch_key
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"Batch {batch_key} failed after {attempts} attempt(s): {cause}")


# ---------------------------------------------------------------------------
# Precondition Exceptions
# ---------------------------------------------------------------------------


class ConfigurationError(PreconditionError):
    """Raised when the configuration document is missing or invalid."""

    hint = "Check the configuration file passed with --config."


class ManifestNotFoundError(PreconditionError):
    """Raised when the batch manifest does not exist."""

    hint = "Run the split step first: space-batcher split"

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Manifest file not found: {path}")


class StateNotFoundError(PreconditionError):
    """Raised when a resume is requested but no import state exists."""

    hint = "Nothing to resume. Start an import with: space-batcher import"

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"No import state found: {path}")


class ExportReadError(PreconditionError):
    """Raised when an export or batch document cannot be read."""

    hint = "Check that the export file exists and is valid JSON."

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot read {path}: {reason}")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def is_rate_limit_error(exc: BaseException) -> bool:
    """
    Check whether an exception signals a 429 from the remote service.

    Recognises TooManyRequestsError as well as foreign exceptions that carry
    the status on ``status_code``/``status`` or on an attached ``response``
    (httpx.HTTPStatusError and friends).
    """
    if isinstance(exc, TooManyRequestsError):
        return True
    return _status_of(exc) == 429


def is_transient_error(exc: BaseException) -> bool:
    """
    Check whether an exception is a transient remote failure.

    Rate limiting, 5xx responses and transport failures (timeouts, refused
    or dropped connections) are transient. They are retried by restarting
    the batch rather than skipped as a single bad item.
    """
    if is_rate_limit_error(exc) or isinstance(exc, (ServerError, httpx.TransportError)):
        return True
    status = _status_of(exc)
    return status is not None and status >= 500


def _status_of(exc: BaseException) -> int | None:
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None
