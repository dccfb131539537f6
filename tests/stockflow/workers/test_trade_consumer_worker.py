"""Tests for TradeConsumerWorker message handling."""

import csv
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from config.config import StockFlowConfig
from core.errors.exceptions import SinkWriteError, TradeValidationError, classify_exception
from core.types import ErrorCategory
from stockflow.common.types import PipelineMessage
from stockflow.schemas.trade import create_trade_event
from stockflow.workers.trade_consumer_worker import TradeConsumerWorker
from stockflow.writers.daily_csv import CSV_HEADER, DailyCsvWriter


def _message(value: bytes | None, offset: int = 0) -> PipelineMessage:
    return PipelineMessage(
        topic="trades",
        partition=0,
        offset=offset,
        timestamp=1_700_000_000_000,
        key=b"AAPL",
        value=value,
    )


@pytest.fixture
def config(tmp_path):
    return StockFlowConfig(
        bootstrap_servers="localhost:9092",
        output_dir=str(tmp_path / "ConsumedTrades"),
        stats_interval_seconds=60,
    )


@pytest.fixture
def worker(config):
    return TradeConsumerWorker(config)


class TestTradeConsumerWorkerInit:
    def test_default_writer_uses_configured_directory(self, worker, config):
        assert isinstance(worker.writer, DailyCsvWriter)
        assert str(worker.writer.output_dir) == config.output_dir
        assert worker.writer.output_dir.is_dir()

    def test_consumer_configured_from_config(self, worker, config):
        assert worker.consumer.topic == config.topic
        assert worker.consumer.group_id == config.consumer_group
        assert worker.worker_id == worker.consumer.worker_id


class TestHandleTradeMessage:
    @pytest.mark.asyncio
    async def test_valid_trade_is_appended(self, worker):
        trade = create_trade_event("AAPL", "Buy", 10, 150.0)

        await worker._handle_trade_message(_message(trade.to_bytes()))

        path = worker.writer.current_path()
        with open(path, newline="", encoding="utf-8") as f:
            rows = list(csv.reader(f))
        assert rows[0] == list(CSV_HEADER)
        assert rows[1][:4] == ["AAPL", "Buy", "10", "150.0"]
        assert worker.writer.rows_written == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [None, b""])
    async def test_empty_message_is_permanent_error(self, worker, value):
        with pytest.raises(TradeValidationError) as exc_info:
            await worker._handle_trade_message(_message(value))
        assert classify_exception(exc_info.value) == ErrorCategory.PERMANENT

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "value",
        [b"not json", b'{"symbol": "AAPL", "side": "Buy", "quantity": -1, "price": 1.0}'],
    )
    async def test_malformed_message_is_permanent_error(self, worker, value):
        with pytest.raises(ValidationError) as exc_info:
            await worker._handle_trade_message(_message(value))
        assert classify_exception(exc_info.value) == ErrorCategory.PERMANENT
        assert worker.writer.rows_written == 0

    @pytest.mark.asyncio
    async def test_sink_failure_is_retryable(self, config):
        writer = MagicMock()
        writer.append.side_effect = SinkWriteError("disk full")
        worker = TradeConsumerWorker(config, writer=writer)

        with pytest.raises(SinkWriteError) as exc_info:
            await worker._handle_trade_message(_message(create_trade_event("AAPL", "Buy", 1, 1.0).to_bytes()))
        assert exc_info.value.is_retryable


class TestTradeConsumerWorkerLifecycle:
    @pytest.mark.asyncio
    async def test_start_runs_consumer(self, worker):
        worker.consumer.start = AsyncMock()

        await worker.start()

        worker.consumer.start.assert_awaited_once()
        assert worker._stats_logger is None

    @pytest.mark.asyncio
    async def test_start_failure_propagates(self, worker):
        worker.consumer.start = AsyncMock(side_effect=ConnectionError("no brokers"))

        with pytest.raises(ConnectionError):
            await worker.start()
        assert worker._stats_logger is None

    @pytest.mark.asyncio
    async def test_stop_signals_consumer(self, worker):
        worker.consumer.stop = AsyncMock()
        await worker.stop()
        worker.consumer.stop.assert_awaited_once()
