"""
Trade Publisher - batches trade events and publishes them to their partitions.

Every event is routed to ``assign_partition(symbol, partition_count)`` so all
trades for one symbol share a partition. A flush dispatches every member of
the batch concurrently and waits for every outcome; one failed send never
aborts the others, and the caller gets exactly one outcome per event.
Retrying failed events is left to the caller.
"""

import asyncio
import logging
import time

from stockflow.common.metrics import batch_flush_duration_seconds
from stockflow.common.partitioner import assign_partition
from stockflow.common.producer import MessageProducer
from stockflow.common.types import BatchResult, DeliveryOutcome
from stockflow.schemas.trade import TradeEvent

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10


class TradePublisher:
    """
    Batching publisher for TradeEvents on top of an idempotent MessageProducer.

    Usage:
        >>> publisher = TradePublisher(producer, topic="trades", batch_size=10)
        >>> await publisher.start()          # resolves the partition count
        >>> await publisher.enqueue(event)   # auto-flushes at batch_size
        >>> result = await publisher.flush()
        >>> [o.reason for o in result.failed]
    """

    def __init__(
        self,
        producer: MessageProducer,
        topic: str,
        batch_size: int = DEFAULT_BATCH_SIZE,
        partition_count: int | None = None,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if partition_count is not None and partition_count < 1:
            raise ValueError(f"partition_count must be >= 1, got {partition_count}")

        self.producer = producer
        self.topic = topic
        self.batch_size = batch_size
        self.partition_count = partition_count
        self._pending: list[TradeEvent] = []
        self._dropped: list[TradeEvent] = []

    async def start(self) -> None:
        """Discover the topic's partition count when it was not configured."""
        if self.partition_count is None:
            self.partition_count = await self.producer.partitions_for(self.topic)
            logger.info(
                "Discovered partition count",
                extra={"topic": self.topic, "partition_count": self.partition_count},
            )

    @property
    def pending(self) -> tuple[TradeEvent, ...]:
        return tuple(self._pending)

    def take_dropped(self) -> list[TradeEvent]:
        """Events whose flush was cancelled mid-delivery, cleared on read."""
        dropped, self._dropped = self._dropped, []
        return dropped

    def partition_for(self, event: TradeEvent) -> int:
        if self.partition_count is None:
            raise RuntimeError("Partition count unknown. Call start() first.")
        return assign_partition(event.key, self.partition_count)

    async def enqueue(self, event: TradeEvent) -> BatchResult | None:
        """Add an event to the pending batch, flushing when it reaches batch_size.

        Returns the flush result when this call triggered a flush.
        """
        if not isinstance(event, TradeEvent):
            raise TypeError(f"Expected TradeEvent, got {type(event).__name__}")

        self._pending.append(event)
        if len(self._pending) >= self.batch_size:
            return await self.flush()
        return None

    async def flush(self, batch: list[TradeEvent] | None = None) -> BatchResult:
        """Publish ``batch`` (default: the pending batch) and report every outcome.

        The pending batch is taken atomically, so events enqueued while the
        flush is in flight belong to the next batch.
        """
        if batch is None:
            batch, self._pending = self._pending, []
        if not batch:
            return BatchResult()

        start_time = time.perf_counter()
        try:
            outcomes = await asyncio.gather(*(self._deliver(event) for event in batch))
        except asyncio.CancelledError:
            # Delivery state of these events is unknown
            self._dropped.extend(batch)
            logger.warning(
                "Trade batch dropped: flush cancelled before every delivery resolved",
                extra={
                    "topic": self.topic,
                    "batch_size": len(batch),
                    "trade_ids": [event.trade_id for event in batch],
                },
            )
            raise
        duration = time.perf_counter() - start_time
        batch_flush_duration_seconds.labels(topic=self.topic).observe(duration)

        result = BatchResult(outcomes=list(outcomes))
        failed = len(result.failed)
        log = logger.warning if failed else logger.info
        log(
            "Published trade batch",
            extra={
                "topic": self.topic,
                "batch_size": len(result),
                "records_succeeded": len(result) - failed,
                "records_failed": failed,
                "duration_ms": round(duration * 1000, 2),
            },
        )
        return result

    async def _deliver(self, event: TradeEvent) -> DeliveryOutcome:
        partition = self.partition_for(event)
        try:
            result = await self.producer.send(
                self.topic,
                key=event.key,
                value=event.to_bytes(),
                partition=partition,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "Trade delivery failed",
                extra={
                    "trade_id": event.trade_id,
                    "symbol": event.symbol,
                    "partition": partition,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            return DeliveryOutcome(event=event, partition=partition, error=e)

        logger.debug(
            "Trade delivered",
            extra={
                "trade_id": event.trade_id,
                "symbol": event.symbol,
                "partition": result.partition,
                "offset": result.offset,
            },
        )
        return DeliveryOutcome(event=event, partition=partition, result=result)


__all__ = ["TradePublisher", "DEFAULT_BATCH_SIZE"]
