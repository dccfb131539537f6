"""
Trade Consumer Worker - persists consumed trades to daily CSV files.

Consumes the trades topic through MessageConsumer and appends each trade to
the DailyCsvWriter before the consumer commits its offset. A crash between
the write and the commit redelivers the trade (a duplicate row); a trade is
never committed without having been written.

Consumer group: kafka.trades.consumer_group
Input topic: kafka.trades.topic
Output: <storage.output_dir>/<storage.file_prefix>_YYYY-MM-DD.csv
"""

import asyncio
import logging
from typing import Any

from config.config import StockFlowConfig
from core.errors.exceptions import TradeValidationError
from core.logging import log_startup_banner, set_log_context
from core.logging.periodic_logger import PeriodicStatsLogger
from stockflow.common.consumer import MessageConsumer
from stockflow.common.metrics import record_sink_write
from stockflow.common.types import PipelineMessage
from stockflow.schemas.trade import TradeEvent
from stockflow.writers.daily_csv import DailyCsvWriter

logger = logging.getLogger(__name__)


class TradeConsumerWorker:
    """Decodes trade messages and durably appends them to the sink.

    The sink is created in ``__init__`` so an unwritable output directory
    fails before any message is consumed.
    """

    WORKER_NAME = "consume"

    def __init__(
        self,
        config: StockFlowConfig,
        writer: DailyCsvWriter | None = None,
    ):
        self.config = config
        self.writer = writer or DailyCsvWriter(config.output_dir, config.file_prefix)
        self.consumer = MessageConsumer(config, self._handle_trade_message)
        self.worker_id = self.consumer.worker_id
        self._stats_logger: PeriodicStatsLogger | None = None

    async def start(self) -> None:
        """Run the consumer until stop() is called. Raises if Kafka is unreachable."""
        set_log_context(stage=self.WORKER_NAME, worker_id=self.worker_id)
        log_startup_banner(
            logger,
            "Trade Consumer",
            topic=self.consumer.topic,
            group_id=self.consumer.group_id,
            partitions=self.consumer.partitions,
            output_dir=str(self.writer.output_dir),
        )

        self._stats_logger = PeriodicStatsLogger(
            interval_seconds=self.config.stats_interval_seconds,
            get_stats=self._get_cycle_stats,
            stage=self.WORKER_NAME,
            worker_id=self.worker_id,
        )
        self._stats_logger.start()

        try:
            await self.consumer.start()
        finally:
            await self._stats_logger.stop()
            self._stats_logger = None
            logger.info(
                "TradeConsumerWorker stopped",
                extra={
                    "records_succeeded": self.consumer.records_succeeded,
                    "records_failed": self.consumer.records_failed,
                    "records_skipped": self.consumer.records_skipped,
                    "checkpoints": {
                        f"{tp.topic}:{tp.partition}": offset
                        for tp, offset in self.consumer.checkpoints.items()
                    },
                },
            )

    async def stop(self) -> None:
        await self.consumer.stop()

    async def _handle_trade_message(self, message: PipelineMessage) -> None:
        if not message.value:
            raise TradeValidationError(
                "Empty trade message",
                context={"topic": message.topic, "partition": message.partition, "offset": message.offset},
            )

        trade = TradeEvent.from_bytes(message.value)
        await asyncio.to_thread(self.writer.append, trade)
        record_sink_write()

        logger.debug(
            "Persisted trade",
            extra={
                "trade_id": trade.trade_id,
                "symbol": trade.symbol,
                "side": trade.side.value,
                "quantity": trade.quantity,
                "price": trade.price,
            },
        )

    def _get_cycle_stats(self, cycle_count: int) -> dict[str, Any]:
        return {
            "records_succeeded": self.consumer.records_succeeded,
            "records_failed": self.consumer.records_failed,
            "records_skipped": self.consumer.records_skipped,
            "rows_written": self.writer.rows_written,
        }


__all__ = ["TradeConsumerWorker"]
