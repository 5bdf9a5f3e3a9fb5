"""
Error taxonomy for ingestion.

Job-level errors abort the whole run and cross the worker/queue boundary;
item-level errors are recorded in the run's error details and the batch
continues.
"""
from typing import Any, Optional


class IngestionError(Exception):
    """Base for all ingestion errors."""
    status_code: int = 500
    error_code: str = "INGESTION_ERROR"
    job_level: bool = True
    retryable: bool = False

    def __init__(self, detail: str, context: Optional[dict[str, Any]] = None):
        self.detail = detail
        self.context = context or {}
        super().__init__(detail)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"error": self.error_code, "message": self.detail}
        if self.context:
            data["context"] = self.context
        return data


# -- Job level ----------------------------------------------------------------

class ConfigError(IngestionError):
    """Required credentials are absent. Logged, never blocks the run."""
    status_code = 409
    error_code = "SOURCE_NOT_CONFIGURED"


class AuthError(IngestionError):
    """Credentials present but rejected by the provider."""
    status_code = 502
    error_code = "AUTH_REJECTED"
    retryable = True


class TransientFetchError(IngestionError):
    """Network failure, 5xx or quota response during fetch."""
    status_code = 502
    error_code = "UPSTREAM_UNAVAILABLE"
    retryable = True


class JobTimeoutError(IngestionError):
    status_code = 504
    error_code = "JOB_TIMEOUT"
    retryable = True


class UnknownSourceError(IngestionError):
    status_code = 404
    error_code = "UNKNOWN_SOURCE"


class HistoryWriteError(IngestionError):
    """The run finished but its history row could not be written."""
    status_code = 503
    error_code = "HISTORY_WRITE_FAILED"
    retryable = True


# -- Item level ---------------------------------------------------------------

class ValidationError(IngestionError):
    """Malformed provider payload for a single item."""
    status_code = 422
    error_code = "INVALID_ITEM"
    job_level = False


class PersistenceError(IngestionError):
    """Storage failure for a single item."""
    error_code = "PERSISTENCE_FAILED"
    job_level = False
