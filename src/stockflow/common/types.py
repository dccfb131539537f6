"""Transport-agnostic message and delivery types."""

from dataclasses import dataclass, field

from stockflow.schemas.trade import TradeEvent

__all__ = [
    "PipelineMessage",
    "ProduceResult",
    "DeliveryOutcome",
    "BatchResult",
    "from_consumer_record",
]


@dataclass(frozen=True)
class PipelineMessage:
    """Transport-agnostic message received from Kafka."""

    topic: str
    partition: int
    offset: int
    timestamp: int
    key: bytes | None = None
    value: bytes | None = None
    headers: list[tuple[str, bytes]] | None = None


@dataclass(frozen=True)
class ProduceResult:
    """Transport-agnostic confirmation of a published message."""

    topic: str
    partition: int
    offset: int


@dataclass(frozen=True)
class DeliveryOutcome:
    """Outcome of publishing one event: either a ProduceResult or the failure reason."""

    event: TradeEvent
    partition: int
    result: ProduceResult | None = None
    error: Exception | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.result is not None

    @property
    def reason(self) -> str | None:
        if self.error is None:
            return None
        return f"{type(self.error).__name__}: {self.error}"


@dataclass
class BatchResult:
    """Per-event outcomes of one flushed batch, in enqueue order.

    Always holds exactly one outcome per event in the batch.
    """

    outcomes: list[DeliveryOutcome] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> list[DeliveryOutcome]:
        return [o for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> list[DeliveryOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def all_succeeded(self) -> bool:
        return all(o.succeeded for o in self.outcomes)


def from_consumer_record(record) -> PipelineMessage:
    """Convert aiokafka ConsumerRecord to PipelineMessage."""
    headers = None
    if getattr(record, "headers", None):
        headers = [(k, v) for k, v in record.headers]

    return PipelineMessage(
        topic=record.topic,
        partition=record.partition,
        offset=record.offset,
        timestamp=record.timestamp,
        key=record.key,
        value=record.value,
        headers=headers,
    )
