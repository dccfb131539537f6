"""
Ingestion Worker - polls a sample source and publishes trade events.

One worker runs per symbol and owns its own producer. Each cycle:
1. Fetch the latest price samples (raced against the stop signal)
2. Keep samples newer than the symbol's high-water mark, oldest first
3. Build a TradeEvent per sample (invalid samples are logged and dropped)
4. Publish through TradePublisher and flush
5. Advance the high-water mark up to, not past, the earliest failed delivery

Failed deliveries are therefore retried on the next cycle. Fetch failures
are logged and the loop carries on; only stop() ends it. Any batch still
pending when the loop exits is flushed before the producer is closed.
"""

import asyncio
import contextlib
import logging
from datetime import datetime
from typing import Any

from config.config import StockFlowConfig
from core.errors.exceptions import TradeValidationError
from core.logging import generate_cycle_id, log_exception, set_log_context
from core.logging.periodic_logger import PeriodicStatsLogger
from core.utils import generate_worker_id
from stockflow.common.producer import MessageProducer
from stockflow.common.types import BatchResult
from stockflow.ingestion.trade_attributes import SyntheticTradeAttributes, TradeAttributeProvider
from stockflow.schemas.trade import TradeEvent, create_trade_event
from stockflow.sources.base import PriceSample, SampleSource
from stockflow.workers.trade_publisher import TradePublisher

logger = logging.getLogger(__name__)


class IngestionWorker:
    """Polls ``source`` for one symbol every ``poll_interval_seconds``."""

    WORKER_NAME = "ingest"

    def __init__(
        self,
        config: StockFlowConfig,
        symbol: str,
        source: SampleSource,
        attributes: TradeAttributeProvider | None = None,
        producer: MessageProducer | None = None,
    ):
        if not symbol or not symbol.strip():
            raise ValueError("IngestionWorker requires a non-empty symbol")

        self.config = config
        self.symbol = symbol
        self.source = source
        self.attributes = attributes or SyntheticTradeAttributes(seed=config.random_seed)
        self.poll_interval_seconds = config.poll_interval_seconds
        self.worker_id = generate_worker_id(f"{self.WORKER_NAME}-{symbol}")

        self.producer = producer or MessageProducer(config, client_id=self.worker_id)
        self.publisher = TradePublisher(
            self.producer,
            topic=config.topic,
            batch_size=config.batch_size,
            partition_count=config.partition_count,
        )

        self.high_water_mark: datetime | None = None
        self._running = False
        self._stop_event = asyncio.Event()
        self._stats_logger: PeriodicStatsLogger | None = None
        self._cycle_count = 0

        self._records_succeeded = 0
        self._records_failed = 0
        self._records_skipped = 0
        self._fetch_failures = 0

        logger.info(
            "Initialized IngestionWorker",
            extra={
                "worker_id": self.worker_id,
                "symbol": symbol,
                "topic": config.topic,
                "batch_size": config.batch_size,
                "poll_interval_seconds": self.poll_interval_seconds,
            },
        )

    async def start(self) -> None:
        """Connect the producer and run the poll loop until stop() is called.

        Raises if the producer cannot connect; the loop never starts degraded.
        """
        set_log_context(stage=self.WORKER_NAME, worker_id=self.worker_id, symbol=self.symbol)
        self._stop_event.clear()
        self._running = True

        try:
            await self.producer.start()
            await self.publisher.start()
        except Exception:
            self._running = False
            await self.producer.stop()
            raise

        if getattr(self.attributes, "synthetic", False):
            logger.warning(
                "Trade side and quantity are synthetic; the market-data source reports prices only",
                extra={"symbol": self.symbol},
            )

        self._stats_logger = PeriodicStatsLogger(
            interval_seconds=self.config.stats_interval_seconds,
            get_stats=self._get_cycle_stats,
            stage=self.WORKER_NAME,
            worker_id=self.worker_id,
        )
        self._stats_logger.start()

        try:
            await self._run_loop()
        finally:
            self._running = False
            await self._shutdown()

    async def stop(self) -> None:
        """Signal the loop to exit; a cycle in progress finishes its publish first."""
        if self._running:
            logger.info("Stopping IngestionWorker", extra={"symbol": self.symbol})
        self._running = False
        self._stop_event.set()

    async def _shutdown(self) -> None:
        dropped = self.publisher.take_dropped()
        if dropped:
            self._records_failed += len(dropped)
            logger.warning(
                "In-flight trades dropped on cancellation, samples will be refetched next run",
                extra={"symbol": self.symbol, "records_failed": len(dropped)},
            )
        try:
            if self.publisher.pending:
                logger.info(
                    "Flushing pending trades on shutdown",
                    extra={"symbol": self.symbol, "batch_size": len(self.publisher.pending)},
                )
                self._record_outcomes(await self.publisher.flush())
        except Exception as e:
            log_exception(logger, e, "Failed to flush pending trades on shutdown", symbol=self.symbol)
        finally:
            if self._stats_logger:
                await self._stats_logger.stop()
                self._stats_logger = None
            await self.producer.stop()
            logger.info(
                "IngestionWorker stopped",
                extra={
                    "symbol": self.symbol,
                    "records_succeeded": self._records_succeeded,
                    "records_failed": self._records_failed,
                    "records_skipped": self._records_skipped,
                },
            )

    async def _run_loop(self) -> None:
        while self._running:
            self._cycle_count += 1
            set_log_context(cycle_id=generate_cycle_id())
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log_exception(logger, e, "Unexpected error in ingestion cycle", symbol=self.symbol)

            if not self._running:
                break
            await self._wait_for_stop(self.poll_interval_seconds)

    async def _wait_for_stop(self, timeout: float) -> None:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)

    async def _fetch_samples(self) -> list[PriceSample] | None:
        """Fetch samples, returning None when stopped or the fetch failed."""
        fetch_task = asyncio.ensure_future(self.source.fetch(self.symbol))
        stop_task = asyncio.ensure_future(self._stop_event.wait())
        try:
            done, _ = await asyncio.wait({fetch_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (fetch_task, stop_task):
                if not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

        if fetch_task not in done:
            logger.info("Fetch abandoned on shutdown", extra={"symbol": self.symbol})
            return None

        try:
            return fetch_task.result()
        except Exception as e:
            self._fetch_failures += 1
            log_exception(
                logger,
                e,
                "Failed to fetch price samples, will retry next cycle",
                level=logging.WARNING,
                include_traceback=False,
                symbol=self.symbol,
            )
            return None

    def _build_event(self, sample: PriceSample) -> TradeEvent | None:
        side, quantity = self.attributes.attributes_for(sample)
        try:
            return create_trade_event(
                symbol=sample.symbol,
                side=side,
                quantity=quantity,
                price=sample.price,
                timestamp=sample.timestamp,
            )
        except TradeValidationError as e:
            self._records_skipped += 1
            logger.warning(
                "Dropping invalid price sample",
                extra={
                    "symbol": sample.symbol,
                    "price": sample.price,
                    "sample_timestamp": sample.timestamp.isoformat(),
                    "validation_errors": e.errors,
                },
            )
            return None

    async def run_cycle(self) -> None:
        """Fetch, publish and advance the high-water mark once."""
        samples = await self._fetch_samples()
        if not samples:
            return

        fresh = sorted(
            (s for s in samples if self.high_water_mark is None or s.timestamp > self.high_water_mark),
            key=lambda s: s.timestamp,
        )
        if not fresh:
            logger.debug("No new samples", extra={"symbol": self.symbol})
            return

        built: list[tuple[PriceSample, TradeEvent | None]] = [(s, self._build_event(s)) for s in fresh]

        results: list[BatchResult] = []
        for _, event in built:
            if event is None:
                continue
            result = await self.publisher.enqueue(event)
            if result is not None:
                results.append(result)
        results.append(await self.publisher.flush())

        delivered: set[str] = set()
        for result in results:
            self._record_outcomes(result)
            delivered.update(o.event.trade_id for o in result.succeeded)

        self._advance_high_water_mark(built, delivered)

    def _advance_high_water_mark(
        self,
        built: list[tuple[PriceSample, TradeEvent | None]],
        delivered: set[str],
    ) -> None:
        for sample, event in built:
            if event is not None and event.trade_id not in delivered:
                logger.info(
                    "Delivery failed, samples from this point will be retried next cycle",
                    extra={"symbol": self.symbol, "sample_timestamp": sample.timestamp.isoformat()},
                )
                break
            self.high_water_mark = sample.timestamp

    def _record_outcomes(self, result: BatchResult) -> None:
        failed = len(result.failed)
        self._records_failed += failed
        self._records_succeeded += len(result) - failed

    def _get_cycle_stats(self, cycle_count: int) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "records_succeeded": self._records_succeeded,
            "records_failed": self._records_failed,
            "records_skipped": self._records_skipped,
            "fetch_failures": self._fetch_failures,
            "high_water_mark": self.high_water_mark.isoformat() if self.high_water_mark else None,
        }


__all__ = ["IngestionWorker"]
