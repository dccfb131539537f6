"""Shared JSON serialization helper for log records and message payloads."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel


def json_serializer(obj: Any) -> Any:
    """
    ``default=`` hook for ``json.dumps`` that keeps numeric types numeric.

    - datetime/date -> ISO 8601 string
    - Decimal -> float
    - Enum -> value
    - Path -> string
    - pydantic models -> JSON-mode dict
    - Everything else -> string (fallback)
    """
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    return str(obj)


__all__ = ["json_serializer"]
