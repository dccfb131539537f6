"""Error categories, the pipeline exception hierarchy and its classifier."""

from core.errors.exceptions import (
    ErrorCategory,
    KafkaError,
    PermanentError,
    PipelineError,
    SampleSourceError,
    SinkWriteError,
    TradeValidationError,
    TransientError,
    classify_exception,
)

__all__ = [
    "ErrorCategory",
    "PipelineError",
    "TransientError",
    "PermanentError",
    "KafkaError",
    "SampleSourceError",
    "SinkWriteError",
    "TradeValidationError",
    "classify_exception",
]
