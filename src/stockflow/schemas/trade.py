"""
Trade event schema for the trades topic.

A TradeEvent is created once per market-data sample, published keyed by its
symbol, and recreated on the consumer side by deserializing the message value.
Instances are frozen: nothing downstream of construction may mutate them.
"""

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.errors.exceptions import TradeValidationError


class TradeSide(str, Enum):
    BUY = "Buy"
    SELL = "Sell"

    @classmethod
    def parse(cls, value: Any) -> "TradeSide":
        """Case-insensitive lookup ("buy", "BUY" and "Buy" are all accepted)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            for side in cls:
                if side.value.lower() == normalized:
                    return side
        raise ValueError(f"side must be one of {[s.value for s in cls]}, got {value!r}")


def _new_trade_id() -> str:
    return str(uuid.uuid4())


def _utc_now() -> datetime:
    return datetime.now(UTC)


class TradeEvent(BaseModel):
    """Schema for a single trade tick.

    Wire format (JSON):
        {"trade_id": "...", "symbol": "AAPL", "side": "Buy", "quantity": 10,
         "price": 150.0, "timestamp": "2026-01-05T14:30:00Z"}

    Attributes:
        trade_id: Unique identifier generated at creation, never reused
        symbol: Instrument identifier; also the Kafka message key and partition key
        side: Buy or Sell
        quantity: Positive number of shares
        price: Positive price
        timestamp: Time the sample represents (not creation time); timezone-aware,
            naive values are interpreted as UTC

    Example:
        >>> event = TradeEvent(symbol="AAPL", side="Buy", quantity=10, price=150.0)
        >>> event.key
        'AAPL'
    """

    model_config = ConfigDict(frozen=True)

    trade_id: str = Field(default_factory=_new_trade_id, min_length=1)
    symbol: str = Field(..., description="Instrument identifier", min_length=1)
    side: TradeSide
    quantity: int = Field(..., gt=0)
    price: float = Field(..., gt=0, allow_inf_nan=False)
    timestamp: datetime = Field(default_factory=_utc_now)

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("symbol cannot be empty or whitespace")
        return v

    @field_validator("side", mode="before")
    @classmethod
    def validate_side(cls, v: Any) -> TradeSide:
        return TradeSide.parse(v)

    @field_validator("quantity", mode="before")
    @classmethod
    def reject_fractional_quantity(cls, v: Any) -> Any:
        if isinstance(v, bool):
            raise ValueError("quantity must be an integer")
        if isinstance(v, float) and not v.is_integer():
            raise ValueError("quantity must be a whole number")
        return v

    @field_validator("price", mode="before")
    @classmethod
    def reject_bool_price(cls, v: Any) -> Any:
        if isinstance(v, bool):
            raise ValueError("price must be a number")
        return v

    @field_validator("timestamp")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    @property
    def key(self) -> str:
        """Message key (and partition key) for this event."""
        return self.symbol

    def to_bytes(self) -> bytes:
        """Serialize to the UTF-8 JSON message value."""
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes | str) -> "TradeEvent":
        """Deserialize a message value; raises pydantic ValidationError on bad payloads."""
        return cls.model_validate_json(data)


def _format_errors(exc: ValidationError) -> list[dict[str, str]]:
    return [
        {
            "field": ".".join(str(part) for part in err["loc"]) or "event",
            "message": err["msg"],
        }
        for err in exc.errors()
    ]


def create_trade_event(
    symbol: str,
    side: str | TradeSide,
    quantity: int,
    price: float,
    timestamp: datetime | None = None,
) -> TradeEvent:
    """Construct a validated TradeEvent.

    A fresh trade_id is always generated; ``timestamp`` defaults to now (UTC).

    Raises:
        TradeValidationError: empty symbol, unknown side, non-positive quantity
            or price. No event is returned in that case.
    """
    fields: dict[str, Any] = {
        "symbol": symbol,
        "side": side,
        "quantity": quantity,
        "price": price,
    }
    if timestamp is not None:
        fields["timestamp"] = timestamp

    try:
        return TradeEvent(**fields)
    except ValidationError as e:
        errors = _format_errors(e)
        summary = "; ".join(f"{err['field']}: {err['message']}" for err in errors)
        raise TradeValidationError(
            f"Invalid trade event: {summary}",
            errors=errors,
            cause=e,
            context={"symbol": symbol},
        ) from e
