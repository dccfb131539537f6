"""
Core types shared across modules.

This module provides base enums used across the core library and the
stockflow pipeline to keep error handling decisions consistent.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that may succeed on redelivery or retry
                   (e.g., broker unavailable, network timeouts, disk hiccups)
        PERMANENT: Failures that will never succeed on retry
                   (e.g., malformed trade payloads, validation errors)
        UNKNOWN: Unclassified errors, treated conservatively as retriable
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


__all__ = [
    "ErrorCategory",
]
