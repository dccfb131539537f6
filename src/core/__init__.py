"""
Core library: infrastructure shared by the stockflow workers.

Modules:
    logging     - Structured JSON logging with worker and message context
    errors      - Exception hierarchy and retry classification
    utils       - JSON serialization helpers and worker ids

Nothing in here knows about trades, Kafka topics or the CSV sink.
"""

from .types import ErrorCategory

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
]
