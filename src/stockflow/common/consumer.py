"""Manual-commit message consumer: persist first, then advance the checkpoint."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from aiokafka import AIOKafkaConsumer
from aiokafka.structs import ConsumerRecord, TopicPartition

from config.config import StockFlowConfig
from core.errors.exceptions import ErrorCategory, classify_exception
from core.logging import MessageLogContext
from core.utils import generate_worker_id
from stockflow.common.kafka_config import build_kafka_security_config
from stockflow.common.metrics import (
    record_message_consumed,
    update_committed_offset,
    update_connection_status,
)
from stockflow.common.types import PipelineMessage, from_consumer_record

logger = logging.getLogger(__name__)


class MessageConsumer:
    """Async consumer that commits each record only after its handler returns.

    The handler is awaited for one record at a time. When it returns, the
    record's ``offset + 1`` is committed for its partition. When it raises:

    - permanent errors (undecodable or invalid payloads) are logged and the
      record is skipped without a commit; the next successful record's commit
      moves the group past it
    - every other error seeks the partition back to the failed offset and
      drops the rest of that partition's fetched records, so the record is
      redelivered by the next poll after ``retry_backoff_seconds``

    ``start()`` connects and then runs the poll loop until ``stop()`` is
    called; ``stop()`` only signals, and the loop closes the subscription
    when it exits.
    """

    # Optional consumer config keys forwarded to AIOKafkaConsumer if present
    _OPTIONAL_CONSUMER_KEYS = (
        "max_poll_records",
        "max_poll_interval_ms",
        "session_timeout_ms",
        "heartbeat_interval_ms",
        "fetch_min_bytes",
        "fetch_max_wait_ms",
    )

    def __init__(
        self,
        config: StockFlowConfig,
        message_handler: Callable[[PipelineMessage], Awaitable[None]],
        topic: str | None = None,
        group_id: str | None = None,
        partitions: list[int] | None = None,
    ):
        self.config = config
        self.message_handler = message_handler
        self.topic = topic or config.topic
        self.group_id = group_id or config.consumer_group
        self.partitions = partitions if partitions is not None else config.partitions
        self.poll_timeout_ms = config.poll_timeout_ms
        self.retry_backoff_seconds = config.retry_backoff_seconds
        self.consumer_config = config.get_consumer_config()
        self.worker_id = generate_worker_id("consumer")

        self._consumer: AIOKafkaConsumer | None = None
        self._running = False
        self._stop_event = asyncio.Event()
        self._stop_requested = False
        self._checkpoints: dict[TopicPartition, int] = {}

        self.records_succeeded = 0
        self.records_failed = 0
        self.records_skipped = 0

        logger.info(
            "Initialized message consumer",
            extra={
                "topic": self.topic,
                "group_id": self.group_id,
                "partitions": self.partitions,
                "bootstrap_servers": config.bootstrap_servers,
            },
        )

    def _build_kafka_config(self) -> dict:
        """Build the AIOKafkaConsumer configuration dict."""
        cfg = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "group_id": self.group_id,
            "client_id": self.worker_id,
            "request_timeout_ms": self.config.request_timeout_ms,
            "metadata_max_age_ms": self.config.metadata_max_age_ms,
            "connections_max_idle_ms": self.config.connections_max_idle_ms,
            "enable_auto_commit": False,
            "auto_offset_reset": self.consumer_config["auto_offset_reset"],
        }

        for key in self._OPTIONAL_CONSUMER_KEYS:
            if key in self.consumer_config:
                cfg[key] = self.consumer_config[key]

        cfg.update(build_kafka_security_config(self.config))
        return cfg

    async def start(self) -> None:
        if self._running:
            logger.warning("Consumer already running, ignoring duplicate start call")
            return

        logger.info(
            "Starting message consumer",
            extra={"topic": self.topic, "group_id": self.group_id},
        )

        if self.partitions:
            consumer = AIOKafkaConsumer(**self._build_kafka_config())
        else:
            consumer = AIOKafkaConsumer(self.topic, **self._build_kafka_config())

        try:
            await consumer.start()
            if self.partitions:
                consumer.assign([TopicPartition(self.topic, p) for p in self.partitions])
        except Exception:
            await consumer.stop()
            raise

        self._consumer = consumer
        self._running = True
        update_connection_status("consumer", connected=True)

        try:
            if self._stop_requested:
                logger.info("Stop requested while connecting, closing consumer without polling")
            else:
                await self._consume_loop()
        except asyncio.CancelledError:
            logger.info("Consumer loop cancelled, shutting down")
            raise
        finally:
            await self._close()

    async def stop(self) -> None:
        """Signal the poll loop to exit at its next iteration boundary.

        A stop requested before or during start() makes start() close the
        client as soon as it is connected instead of polling.
        """
        if self._stop_requested:
            logger.debug("Consumer stop already requested")
            return

        logger.info("Stopping message consumer", extra={"group_id": self.group_id})
        self._stop_requested = True
        self._running = False
        self._stop_event.set()

    async def _close(self) -> None:
        self._running = False
        # The pending stop request is consumed by this run
        self._stop_requested = False
        self._stop_event.clear()
        consumer, self._consumer = self._consumer, None
        if consumer is None:
            return

        try:
            await consumer.stop()
            logger.info(
                "Message consumer stopped",
                extra={
                    "group_id": self.group_id,
                    "checkpoints": {f"{tp.topic}:{tp.partition}": o for tp, o in self._checkpoints.items()},
                },
            )
        except Exception:
            logger.error("Error stopping message consumer", exc_info=True)
        finally:
            update_connection_status("consumer", connected=False)

    async def _wait_for_stop(self, timeout: float) -> None:
        """Sleep for ``timeout`` seconds or until stop() is called."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass

    async def _consume_loop(self) -> None:
        logger.info(
            "Starting message consumption loop",
            extra={"topic": self.topic, "group_id": self.group_id, "poll_timeout_ms": self.poll_timeout_ms},
        )

        while self._running and not self._stop_requested and self._consumer is not None:
            try:
                data = await self._consumer.getmany(timeout_ms=self.poll_timeout_ms)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Error polling for messages, will retry",
                    extra={"error": str(e), "error_type": type(e).__name__},
                    exc_info=True,
                )
                await self._wait_for_stop(self.retry_backoff_seconds)
                continue

            redeliver = False
            for tp, records in data.items():
                if not self._running:
                    return
                try:
                    if not await self._process_partition(tp, records):
                        redeliver = True
                except asyncio.CancelledError:
                    raise
                except Exception:
                    # Position may already be past the unprocessed records;
                    # rewind to the checkpoint so nothing is lost
                    logger.error(
                        "Unexpected error processing partition batch",
                        extra={"topic": tp.topic, "partition": tp.partition},
                        exc_info=True,
                    )
                    try:
                        self._rewind(tp, records[0].offset)
                    except Exception:
                        # e.g. partition revoked by a rebalance; the new owner resumes from the commit
                        logger.error(
                            "Failed to rewind partition after processing error",
                            extra={"topic": tp.topic, "partition": tp.partition},
                            exc_info=True,
                        )
                    redeliver = True

            if redeliver and self._running:
                await self._wait_for_stop(self.retry_backoff_seconds)

    async def _process_partition(self, tp: TopicPartition, records: list[ConsumerRecord]) -> bool:
        """Handle one partition's fetched records in offset order.

        Returns False when a record must be redelivered; the partition has
        then been rewound to that record and the remaining records dropped.
        """
        for record in records:
            if not self._running:
                # Remaining records are uncommitted and redelivered after restart
                return True
            if not await self._process_message(record):
                self._rewind(tp, record.offset)
                return False
        return True

    def _rewind(self, tp: TopicPartition, offset: int) -> None:
        """Seek back to ``offset`` but never behind the partition's checkpoint."""
        if self._consumer is None:
            return
        committed = self._checkpoints.get(tp)
        if committed is not None and committed > offset:
            offset = committed
        self._consumer.seek(tp, offset)

    async def _process_message(self, message: ConsumerRecord) -> bool:
        with MessageLogContext(
            topic=message.topic,
            partition=message.partition,
            offset=message.offset,
            key=message.key.decode("utf-8", errors="replace") if message.key else None,
            consumer_group=self.group_id,
        ):
            start_time = time.perf_counter()
            pipeline_message = from_consumer_record(message)

            try:
                await self.message_handler(pipeline_message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                duration = time.perf_counter() - start_time
                return self._handle_processing_error(message, e, duration)

            self.records_succeeded += 1
            record_message_consumed(message.topic, "success")
            await self._commit(message)
            return True

    def _handle_processing_error(self, message: ConsumerRecord, error: Exception, duration: float) -> bool:
        """Log a handler failure; returns True when the record is skipped for good."""
        error_category = classify_exception(error)
        context = {
            "topic": message.topic,
            "partition": message.partition,
            "offset": message.offset,
            "error_category": error_category.value,
            "error_type": type(error).__name__,
            "error": str(error),
            "duration_ms": round(duration * 1000, 2),
        }

        if error_category == ErrorCategory.PERMANENT:
            self.records_skipped += 1
            record_message_consumed(message.topic, "skipped")
            logger.error("Skipping message that can never be processed", extra=context)
            return True

        self.records_failed += 1
        record_message_consumed(message.topic, "retry")
        logger.warning(
            "Failed to process message, offset not committed - will redeliver",
            extra=context,
            exc_info=True,
        )
        return False

    async def _commit(self, message: ConsumerRecord) -> None:
        tp = TopicPartition(message.topic, message.partition)
        next_offset = message.offset + 1
        try:
            await self._consumer.commit({tp: next_offset})
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # The record is already persisted; a later commit on this partition
            # covers it, otherwise it is redelivered after a restart
            logger.warning(
                "Failed to commit offset",
                extra={
                    "topic": message.topic,
                    "partition": message.partition,
                    "offset": message.offset,
                    "error": str(e),
                },
            )
            return

        if next_offset > self._checkpoints.get(tp, -1):
            self._checkpoints[tp] = next_offset
        update_committed_offset(message.topic, message.partition, self.group_id, next_offset)
        logger.debug(
            "Committed offset",
            extra={"topic": message.topic, "partition": message.partition, "committed_offset": next_offset},
        )

    @property
    def checkpoints(self) -> dict[TopicPartition, int]:
        """Committed next-offset per partition; only ever moves forward."""
        return dict(self._checkpoints)

    @property
    def is_running(self) -> bool:
        return self._running and self._consumer is not None


__all__ = [
    "MessageConsumer",
    "AIOKafkaConsumer",
    "ConsumerRecord",
]
