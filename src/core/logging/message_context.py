"""Per-record transport context for structured logging.

While a consumed record is being handled, its topic, partition, offset, key
and consumer group ride along on every JSON log line as ``message_*``
fields. The context lives in a single ContextVar, so concurrent tasks never
see each other's record.
"""

from contextvars import ContextVar, Token
from typing import Any

MESSAGE_FIELDS = ("topic", "partition", "offset", "key", "consumer_group")

_message_context: ContextVar[dict[str, Any] | None] = ContextVar("message_context", default=None)


def _merged(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - set(MESSAGE_FIELDS)
    if unknown:
        raise TypeError(f"Unknown message context fields: {sorted(unknown)}")
    merged = dict(_message_context.get() or {})
    merged.update({name: value for name, value in fields.items() if value is not None})
    return merged


def set_message_context(**fields: Any) -> None:
    """Merge ``fields`` into the current message context; None values are ignored."""
    _message_context.set(_merged(fields))


def get_message_context() -> dict[str, Any]:
    """Current fields prefixed with ``message_``; empty when no record is in flight."""
    current = _message_context.get() or {}
    return {f"message_{name}": current[name] for name in MESSAGE_FIELDS if name in current}


def clear_message_context() -> None:
    _message_context.set(None)


class MessageLogContext:
    """
    Scope the message context to a ``with`` block.

    Fields left as None inherit from any enclosing context. The previous
    context is restored on exit, including when the block raises.

    Usage:
        with MessageLogContext(topic="trades", partition=0, offset=12345):
            await handler(message)
    """

    def __init__(
        self,
        topic: str | None = None,
        partition: int | None = None,
        offset: int | None = None,
        key: str | None = None,
        consumer_group: str | None = None,
    ):
        self._fields = {
            "topic": topic,
            "partition": partition,
            "offset": offset,
            "key": key,
            "consumer_group": consumer_group,
        }
        self._token: Token | None = None

    def __enter__(self) -> "MessageLogContext":
        self._token = _message_context.set(_merged(self._fields))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token is not None:
            _message_context.reset(self._token)
            self._token = None
        return False
