"""Worker execution patterns: startup retry, shutdown wiring and cleanup.

Each worker exposes ``start()`` (runs until stopped, raises if it cannot
connect) and ``stop()`` (signals the run loop). The runners here start a
worker with bounded retries, stop it when the shared shutdown event fires
and wait for it to unwind.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable

from config.config import StockFlowConfig
from core.logging.context import set_log_context
from stockflow.sources.alpha_vantage import AlphaVantageSource
from stockflow.sources.base import SampleSource
from stockflow.workers.ingestion_worker import IngestionWorker
from stockflow.workers.trade_consumer_worker import TradeConsumerWorker

logger = logging.getLogger(__name__)

DEFAULT_STARTUP_RETRIES = 5
DEFAULT_STARTUP_BACKOFF_BASE = 5  # seconds


async def _cleanup_watcher_task(task: asyncio.Task) -> None:
    """Cancel and await watcher task, suppressing expected exceptions."""
    try:
        task.cancel()
        await task
    except (asyncio.CancelledError, RuntimeError):
        pass


async def _start_with_retry(
    start_fn: Callable,
    label: str,
    max_retries: int = DEFAULT_STARTUP_RETRIES,
    backoff_base: int = DEFAULT_STARTUP_BACKOFF_BASE,
    shutdown_event: asyncio.Event | None = None,
) -> None:
    """Retry an async start function with linear backoff.

    On exhaustion, re-raises the last exception so startup failures surface
    to the caller instead of leaving a worker running degraded.
    """
    for attempt in range(1, max_retries + 1):
        try:
            await start_fn()
            return
        except Exception as e:
            if shutdown_event and shutdown_event.is_set():
                logger.info(f"Shutdown in progress, not retrying {label}")
                raise
            if attempt == max_retries:
                logger.error(
                    f"Failed to start {label} after {max_retries} attempts, giving up",
                    extra={"error": str(e), "attempt": attempt, "max_attempts": max_retries},
                )
                raise
            delay = backoff_base * attempt
            logger.warning(
                f"Failed to start {label} (attempt {attempt}/{max_retries}), "
                f"retrying in {delay}s",
                extra={
                    "error": str(e),
                    "attempt": attempt,
                    "max_attempts": max_retries,
                    "delay_seconds": delay,
                },
            )
            if shutdown_event is None:
                await asyncio.sleep(delay)
                continue
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(shutdown_event.wait(), timeout=delay)
            if shutdown_event.is_set():
                logger.info(f"Shutdown requested while waiting to retry {label}")
                return


async def execute_worker_with_shutdown(
    worker_instance,
    stage_name: str,
    shutdown_event: asyncio.Event,
    max_retries: int = DEFAULT_STARTUP_RETRIES,
    backoff_base: int = DEFAULT_STARTUP_BACKOFF_BASE,
) -> None:
    """Execute a worker with standard shutdown handling.

    Args:
        worker_instance: Worker instance with start() and stop() methods
        stage_name: Name for logging context
        shutdown_event: Event to signal graceful shutdown
        max_retries: Startup attempts before giving up
        backoff_base: Seconds of backoff per failed attempt

    Raises the worker's startup error when every attempt failed and no
    shutdown was requested.
    """
    set_log_context(stage=stage_name)
    logger.info("Starting %s...", stage_name)

    worker_stopped = False

    async def shutdown_watcher():
        nonlocal worker_stopped
        await shutdown_event.wait()
        logger.info(f"Shutdown signal received, stopping {stage_name}...")
        await worker_instance.stop()
        worker_stopped = True

    watcher_task = asyncio.create_task(shutdown_watcher())

    try:
        await _start_with_retry(
            worker_instance.start,
            stage_name,
            max_retries=max_retries,
            backoff_base=backoff_base,
            shutdown_event=shutdown_event,
        )
    except Exception:
        if not shutdown_event.is_set():
            raise
    finally:
        await _cleanup_watcher_task(watcher_task)
        if not worker_stopped:
            await worker_instance.stop()

    logger.info("%s finished", stage_name)


def create_sample_source(config: StockFlowConfig) -> SampleSource:
    return AlphaVantageSource(
        api_key=config.api_key,
        base_url=config.api_url,
        interval=config.interval,
        timeout_seconds=config.request_timeout_seconds,
    )


async def run_ingestion_worker(
    config: StockFlowConfig,
    symbol: str,
    source: SampleSource,
    shutdown_event: asyncio.Event,
) -> None:
    worker = IngestionWorker(config, symbol=symbol, source=source)
    await execute_worker_with_shutdown(
        worker,
        stage_name=f"ingest-{symbol}",
        shutdown_event=shutdown_event,
        max_retries=config.startup_max_retries,
        backoff_base=config.startup_backoff_seconds,
    )


async def run_ingestion_workers(
    config: StockFlowConfig,
    shutdown_event: asyncio.Event,
    symbols: list[str] | None = None,
    source: SampleSource | None = None,
) -> None:
    """Run one ingestion worker per symbol against a shared sample source."""
    symbols = symbols or config.symbols
    if not symbols:
        raise ValueError("No symbols configured; set ingestion.symbols or pass --symbol")

    owns_source = source is None
    source = source or create_sample_source(config)
    try:
        await _gather_tasks(
            [
                asyncio.create_task(
                    run_ingestion_worker(config, symbol, source, shutdown_event),
                    name=f"ingest-{symbol}",
                )
                for symbol in symbols
            ],
            "ingestion workers",
            shutdown_event,
        )
    finally:
        if owns_source:
            await source.close()


async def run_consumer_worker(config: StockFlowConfig, shutdown_event: asyncio.Event) -> None:
    worker = TradeConsumerWorker(config)
    await execute_worker_with_shutdown(
        worker,
        stage_name="consume",
        shutdown_event=shutdown_event,
        max_retries=config.startup_max_retries,
        backoff_base=config.startup_backoff_seconds,
    )


async def run_all_workers(
    config: StockFlowConfig,
    shutdown_event: asyncio.Event,
    symbols: list[str] | None = None,
) -> None:
    """Run the ingestion workers and the trade consumer concurrently.

    The two sides share nothing but the trades topic. One side failing to
    start sets the shutdown event so the other unwinds too.
    """
    logger.info("Starting all pipeline workers...")

    await _gather_tasks(
        [
            asyncio.create_task(run_ingestion_workers(config, shutdown_event, symbols), name="ingest"),
            asyncio.create_task(run_consumer_worker(config, shutdown_event), name="consume"),
        ],
        "pipeline workers",
        shutdown_event,
    )


async def _gather_tasks(tasks: list[asyncio.Task], label: str, shutdown_event: asyncio.Event) -> None:
    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        logger.info(f"{label} cancelled, shutting down...")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    except Exception:
        # Stop the remaining workers and let them unwind before surfacing the first error
        shutdown_event.set()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


__all__ = [
    "execute_worker_with_shutdown",
    "run_all_workers",
    "run_consumer_worker",
    "run_ingestion_worker",
    "run_ingestion_workers",
]
