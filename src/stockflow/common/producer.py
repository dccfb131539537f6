"""Idempotent message producer for the trades topic."""

import asyncio
import logging
from typing import Any

from aiokafka import AIOKafkaProducer

from config.config import StockFlowConfig
from core.errors.exceptions import KafkaError
from stockflow.common.kafka_config import build_kafka_security_config
from stockflow.common.metrics import (
    record_message_produced,
    record_producer_error,
    update_connection_status,
)
from stockflow.common.types import ProduceResult

logger = logging.getLogger(__name__)


def _encode_key(key: str | bytes | None) -> bytes | None:
    if key is None or isinstance(key, bytes):
        return key
    return key.encode("utf-8")


class MessageProducer:
    """Async producer with idempotent, all-replica acknowledged delivery.

    Idempotence and ``acks`` are fixed when the client is built in
    ``start()``. ``send()`` waits for the broker acknowledgment, so callers
    learn the outcome of every record.
    """

    def __init__(self, config: StockFlowConfig, client_id: str | None = None):
        self.config = config
        self.client_id = client_id
        self.producer_config = config.get_producer_config()
        self._producer: AIOKafkaProducer | None = None

        logger.info(
            "Initialized message producer",
            extra={
                "bootstrap_servers": config.bootstrap_servers,
                "security_protocol": config.security_protocol,
                "producer_config": self.producer_config,
            },
        )

    def _build_kafka_config(self) -> dict[str, Any]:
        settings = self.producer_config
        cfg: dict[str, Any] = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "value_serializer": lambda v: v,
            "request_timeout_ms": self.config.request_timeout_ms,
            "metadata_max_age_ms": self.config.metadata_max_age_ms,
            "connections_max_idle_ms": self.config.connections_max_idle_ms,
            "acks": settings["acks"],
            "enable_idempotence": settings["enable_idempotence"],
            "retry_backoff_ms": settings.get("retry_backoff_ms", 100),
        }
        if self.client_id:
            cfg["client_id"] = self.client_id
        if "linger_ms" in settings:
            cfg["linger_ms"] = settings["linger_ms"]
        if "batch_size" in settings:
            cfg["max_batch_size"] = settings["batch_size"]
        if "compression_type" in settings:
            # "none" in YAML means no codec; aiokafka wants None
            cfg["compression_type"] = None if settings["compression_type"] == "none" else settings["compression_type"]

        cfg.update(build_kafka_security_config(self.config))
        return cfg

    def _require_started(self) -> AIOKafkaProducer:
        if self._producer is None:
            raise RuntimeError("Producer not started. Call start() first.")
        return self._producer

    async def start(self) -> None:
        if self._producer is not None:
            logger.warning("Producer already started, ignoring duplicate start call")
            return

        producer = AIOKafkaProducer(**self._build_kafka_config())
        try:
            await producer.start()
        except Exception:
            await producer.stop()
            raise

        self._producer = producer
        update_connection_status("producer", connected=True)
        logger.info(
            "Message producer started",
            extra={
                "bootstrap_servers": self.config.bootstrap_servers,
                "acks": self.producer_config["acks"],
                "enable_idempotence": self.producer_config["enable_idempotence"],
            },
        )

    async def stop(self) -> None:
        """Flush buffered records and close the client.

        Errors are logged, not raised, so they never mask the error that
        triggered shutdown.
        """
        producer, self._producer = self._producer, None
        if producer is None:
            logger.debug("Producer already stopped")
            return

        try:
            await producer.flush()
            await producer.stop()
            logger.info("Message producer stopped")
        except Exception as e:
            logger.error("Error stopping message producer", extra={"error": str(e)}, exc_info=True)
        finally:
            update_connection_status("producer", connected=False)

    async def partitions_for(self, topic: str) -> int:
        """Number of partitions the broker reports for ``topic``."""
        partitions = await self._require_started().partitions_for(topic)
        if not partitions:
            raise KafkaError(f"No partition metadata available for topic '{topic}'", context={"topic": topic})
        return len(partitions)

    async def send(
        self,
        topic: str,
        key: str | bytes | None,
        value: bytes,
        partition: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> ProduceResult:
        """Send one record and wait for its acknowledgment.

        Whatever aiokafka raises for an unacknowledged record propagates.
        """
        producer = self._require_started()
        header_list = [(name, v.encode("utf-8")) for name, v in headers.items()] if headers else None

        try:
            metadata = await producer.send_and_wait(
                topic,
                key=_encode_key(key),
                value=value,
                partition=partition,
                headers=header_list,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            record_message_produced(topic, success=False)
            record_producer_error(topic, type(e).__name__)
            logger.warning(
                "Failed to send message",
                extra={"topic": topic, "partition": partition, "error": str(e)},
            )
            raise

        record_message_produced(topic, success=True)
        logger.debug(
            "Message acknowledged",
            extra={"topic": metadata.topic, "partition": metadata.partition, "offset": metadata.offset},
        )
        return ProduceResult(topic=metadata.topic, partition=metadata.partition, offset=metadata.offset)

    async def flush(self) -> None:
        await self._require_started().flush()

    @property
    def is_started(self) -> bool:
        return self._producer is not None


__all__ = [
    "MessageProducer",
    "ProduceResult",
]
