"""
Prometheus metrics for trade publishing and consumption.

Exposed on the metrics HTTP endpoint started by ``python -m stockflow
--metrics-port``.
"""

from prometheus_client import Counter, Gauge, Histogram

messages_produced_total = Counter(
    "stockflow_messages_produced_total",
    "Trade events published to Kafka",
    ["topic", "status"],
)

producer_errors_total = Counter(
    "stockflow_producer_errors_total",
    "Trade publish failures by error type",
    ["topic", "error_type"],
)

batch_flush_duration_seconds = Histogram(
    "stockflow_batch_flush_duration_seconds",
    "Time to publish one batch and collect every outcome",
    ["topic"],
)

messages_consumed_total = Counter(
    "stockflow_messages_consumed_total",
    "Trade messages handled by the consumer",
    ["topic", "status"],
)

sink_rows_written_total = Counter(
    "stockflow_sink_rows_written_total",
    "Rows durably appended to the daily trade files",
)

committed_offset = Gauge(
    "stockflow_committed_offset",
    "Last committed offset (next offset to read) per partition",
    ["topic", "partition", "consumer_group"],
)

connection_status = Gauge(
    "stockflow_connection_status",
    "1 when the Kafka client is connected",
    ["component"],
)


def record_message_produced(topic: str, success: bool) -> None:
    messages_produced_total.labels(topic=topic, status="success" if success else "error").inc()


def record_producer_error(topic: str, error_type: str) -> None:
    producer_errors_total.labels(topic=topic, error_type=error_type).inc()


def record_message_consumed(topic: str, status: str) -> None:
    messages_consumed_total.labels(topic=topic, status=status).inc()


def record_sink_write() -> None:
    sink_rows_written_total.inc()


def update_committed_offset(topic: str, partition: int, consumer_group: str, offset: int) -> None:
    committed_offset.labels(topic=topic, partition=str(partition), consumer_group=consumer_group).set(offset)


def update_connection_status(component: str, connected: bool) -> None:
    connection_status.labels(component=component).set(1 if connected else 0)


__all__ = [
    "batch_flush_duration_seconds",
    "record_message_produced",
    "record_producer_error",
    "record_message_consumed",
    "record_sink_write",
    "update_committed_offset",
    "update_connection_status",
]
