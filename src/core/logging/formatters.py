"""JSON-lines and console formatters."""

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any

from core.logging.context import get_log_context
from core.logging.message_context import get_message_context
from core.utils.json_serializers import json_serializer

# Query parameters whose values never reach a log file
_SECRET_QUERY_PARAM = re.compile(r"([?&])(apikey|api_key|token|key|secret|password)=[^&]*", re.IGNORECASE)

_CONTEXT_FIELDS = ("stage", "cycle_id", "worker_id", "symbol")


def redact_url(url: str) -> str:
    return _SECRET_QUERY_PARAM.sub(r"\1\2=[REDACTED]", url)


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line, with log and message context merged in.

    Only the ``extra`` fields listed in FIELD_TYPES are emitted. Fields with
    a type are coerced to it (null when coercion fails) so aggregations over
    the files stay typed; URL fields have secret query parameters redacted.
    """

    FIELD_TYPES: dict[str, type | None] = {
        "batch_id": None,
        "duration_ms": float,
        # Trades
        "trade_id": None,
        "trade_ids": None,
        "symbol": None,
        "side": None,
        "quantity": int,
        "price": float,
        "sample_timestamp": None,
        "high_water_mark": None,
        "validation_errors": None,
        # Transport
        "topic": None,
        "partition": int,
        "offset": int,
        "partition_count": int,
        "group_id": None,
        "committed_offset": int,
        "checkpoints": None,
        # Errors
        "error_category": None,
        "error_message": None,
        "error_type": None,
        "error": None,
        "reason": None,
        # Counters
        "records_processed": int,
        "records_succeeded": int,
        "records_failed": int,
        "records_skipped": int,
        "batch_size": int,
        "samples_fetched": int,
        "samples_new": int,
        "fetch_failures": int,
        # HTTP
        "http_status": int,
        "api_url": None,
        # Storage
        "file_path": None,
        "output_dir": None,
        # Startup retry
        "attempt": int,
        "max_attempts": int,
        "delay_seconds": float,
    }

    URL_FIELDS = frozenset({"api_url", "url"})

    @classmethod
    def _field_value(cls, field: str, value: Any) -> Any:
        cast = cls.FIELD_TYPES[field]
        if cast is not None:
            try:
                value = cast(value)
            except (TypeError, ValueError):
                return None
        if field in cls.URL_FIELDS and isinstance(value, str):
            return redact_url(value)
        return value

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        log_context = get_log_context()
        entry.update({field: log_context[field] for field in _CONTEXT_FIELDS if log_context.get(field)})
        entry.update(get_message_context())

        if record.levelno == logging.DEBUG or record.levelno >= logging.ERROR:
            entry["file"] = f"{record.filename}:{record.lineno}"

        for field in self.FIELD_TYPES:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = self._field_value(field, value)

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "stacktrace": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    ``<time> - <LEVEL> - [stage] - [SYMBOL] [p<partition>@<offset>] message``

    Level names are colored only when stdout is a terminal.
    """

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def _level(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno) if self._use_colors else None
        return f"{color}{record.levelname}{self.RESET}" if color else record.levelname

    @staticmethod
    def _tags(record: logging.LogRecord, log_context: dict[str, Any]) -> str:
        tags = []
        symbol = getattr(record, "symbol", None) or log_context.get("symbol")
        if symbol:
            tags.append(f"[{symbol}]")

        partition = getattr(record, "partition", None)
        if partition is not None:
            offset = getattr(record, "offset", None)
            tags.append(f"[p{partition}]" if offset is None else f"[p{partition}@{offset}]")
        return " ".join(tags)

    def format(self, record: logging.LogRecord) -> str:
        log_context = get_log_context()

        head = [datetime.now().strftime("%Y-%m-%d %H:%M:%S"), self._level(record)]
        if log_context.get("stage"):
            head.append(f"[{log_context['stage']}]")

        message = record.getMessage()
        if record.exc_info and record.levelno >= logging.ERROR:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        tags = self._tags(record, log_context)
        return " - ".join(head) + " - " + (f"{tags} {message}" if tags else message)
