"""
Exception hierarchy for stockflow.

Every pipeline error carries an ErrorCategory. The consume loop reads it to
choose between redelivering a record and skipping it as poison.
"""

import json

from pydantic import ValidationError

# Single ErrorCategory definition: members of two distinct enums never compare equal
from core.types import ErrorCategory


class PipelineError(Exception):
    """
    Base exception for stockflow errors.

    Attributes:
        message: Human-readable description
        category: Retry classification (class attribute, overridden by subclasses)
        cause: Wrapped exception, if any
        context: Extra fields for log output
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, message: str, cause: Exception | None = None, context: dict | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.context = dict(context or {})

    @property
    def is_retryable(self) -> bool:
        return self.category is not ErrorCategory.PERMANENT

    def __str__(self) -> str:
        if self.cause is None:
            return self.message
        return f"{self.message} | Caused by: {self.cause}"


class TransientError(PipelineError):
    category = ErrorCategory.TRANSIENT


class PermanentError(PipelineError):
    category = ErrorCategory.PERMANENT


class KafkaError(PipelineError):
    """Broker-side problem not covered by an aiokafka exception (e.g. missing topic metadata)."""


class SampleSourceError(TransientError):
    """Market-data request failed (HTTP error, timeout, unreadable body)."""


class SinkWriteError(TransientError):
    """Durable write of a consumed trade failed; its offset must stay uncommitted."""


class TradeValidationError(PermanentError):
    """
    Trade fields violate the event model constraints.

    ``errors`` holds one ``{"field": ..., "message": ...}`` dict per violation.
    """

    def __init__(
        self,
        message: str,
        errors: list[dict] | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause=cause, context=context)
        self.errors = list(errors or [])


# aiokafka error class names that mean a broker or network hiccup
TRANSIENT_KAFKA_ERRORS = frozenset(
    {
        "KafkaConnectionError",
        "KafkaTimeoutError",
        "NodeNotReadyError",
        "LeaderNotAvailableError",
        "NotLeaderForPartitionError",
        "RequestTimedOutError",
        "NotEnoughReplicasError",
        "NotEnoughReplicasAfterAppendError",
        "CommitFailedError",
        "RebalanceInProgressError",
    }
)

# Payloads that fail these will fail again on every redelivery
PERMANENT_DECODE_ERRORS = (ValidationError, json.JSONDecodeError, UnicodeDecodeError)


def classify_exception(exc: BaseException) -> ErrorCategory:
    """Map an exception to its ErrorCategory; unrecognized errors are UNKNOWN."""
    if isinstance(exc, PipelineError):
        return exc.category
    if isinstance(exc, PERMANENT_DECODE_ERRORS):
        return ErrorCategory.PERMANENT
    if type(exc).__name__ in TRANSIENT_KAFKA_ERRORS or isinstance(exc, (OSError, TimeoutError)):
        return ErrorCategory.TRANSIENT
    return ErrorCategory.UNKNOWN
