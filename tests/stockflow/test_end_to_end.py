"""
End-to-end flow: ingestion -> trades topic -> consumer -> daily CSV.

The Kafka clients are replaced by an in-memory log that keeps per-partition
records and committed offsets; everything above the aiokafka classes runs
for real.
"""

import csv
from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from aiokafka.structs import TopicPartition

from config.config import StockFlowConfig
from stockflow.common.partitioner import assign_partition
from stockflow.schemas.trade import TradeSide
from stockflow.sources.base import PriceSample
from stockflow.workers.ingestion_worker import IngestionWorker
from stockflow.workers.trade_consumer_worker import TradeConsumerWorker
from stockflow.writers.daily_csv import CSV_HEADER, DailyCsvWriter

TOPIC = "trades"
PARTITION_COUNT = 3
SAMPLE_TIME = datetime(2026, 1, 5, 14, 30, tzinfo=UTC)
CONSUME_TIME = datetime(2026, 1, 5, 15, 0, tzinfo=UTC)


class InMemoryLog:
    def __init__(self, partition_count: int):
        self.partitions = {p: [] for p in range(partition_count)}
        self.committed: dict[TopicPartition, int] = {}


class InMemoryProducer:
    def __init__(self, log: InMemoryLog, **kwargs):
        self.log = log
        self.kwargs = kwargs

    async def start(self):
        pass

    async def stop(self):
        pass

    async def flush(self):
        pass

    async def partitions_for(self, topic):
        return set(self.log.partitions)

    async def send_and_wait(self, topic, key=None, value=None, partition=None, headers=None):
        records = self.log.partitions[partition]
        offset = len(records)
        records.append(
            SimpleNamespace(
                topic=topic,
                partition=partition,
                offset=offset,
                timestamp=offset,
                key=key,
                value=value,
                headers=headers,
            )
        )
        return SimpleNamespace(topic=topic, partition=partition, offset=offset)


class InMemoryConsumer:
    def __init__(self, log: InMemoryLog):
        self.log = log
        self.owner = None
        self.positions = {}

    async def start(self):
        for p in self.log.partitions:
            tp = TopicPartition(TOPIC, p)
            self.positions[tp] = self.log.committed.get(tp, 0)

    async def stop(self):
        pass

    def seek(self, tp, offset):
        self.positions[tp] = offset

    async def commit(self, offsets):
        self.log.committed.update(offsets)

    async def getmany(self, timeout_ms=0):
        batch = {}
        for tp, position in self.positions.items():
            pending = self.log.partitions[tp.partition][position:]
            if pending:
                batch[tp] = pending
                self.positions[tp] = position + len(pending)
        if not batch:
            await self.owner.stop()
        return batch


class FixedAttributes:
    synthetic = False

    def __init__(self, side: TradeSide, quantity: int):
        self.side = side
        self.quantity = quantity

    def attributes_for(self, sample):
        return self.side, self.quantity


class StaticSource:
    def __init__(self, price: float):
        self.price = price

    async def fetch(self, symbol):
        return [PriceSample(symbol=symbol, timestamp=SAMPLE_TIME, price=self.price)]

    async def close(self):
        pass


@pytest.fixture
def log():
    return InMemoryLog(PARTITION_COUNT)


@pytest.fixture
def config(tmp_path):
    return StockFlowConfig(
        bootstrap_servers="localhost:9092",
        topic=TOPIC,
        poll_timeout_ms=10,
        retry_backoff_seconds=0.01,
        output_dir=str(tmp_path / "ConsumedTrades"),
        stats_interval_seconds=60,
    )


async def _ingest(config, log, symbol, side, quantity, price):
    worker = IngestionWorker(
        config,
        symbol,
        StaticSource(price),
        attributes=FixedAttributes(side, quantity),
    )
    with patch(
        "stockflow.common.producer.AIOKafkaProducer",
        side_effect=lambda **kwargs: InMemoryProducer(log, **kwargs),
    ):
        await worker.producer.start()
        await worker.publisher.start()
        await worker.run_cycle()
        await worker.producer.stop()
    return worker


async def _consume(config, log):
    writer = DailyCsvWriter(config.output_dir, clock=lambda: CONSUME_TIME)
    worker = TradeConsumerWorker(config, writer=writer)
    fake = InMemoryConsumer(log)
    fake.owner = worker.consumer
    with patch("stockflow.common.consumer.AIOKafkaConsumer", return_value=fake):
        await worker.start()
    return worker


def _read_rows(path):
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.reader(f))


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_trades_flow_from_ingestion_to_csv(self, config, log):
        await _ingest(config, log, "AAPL", TradeSide.BUY, 10, 150.0)
        await _ingest(config, log, "MSFT", TradeSide.SELL, 5, 300.0)

        aapl_partition = assign_partition("AAPL", PARTITION_COUNT)
        msft_partition = assign_partition("MSFT", PARTITION_COUNT)
        assert [r.key for r in log.partitions[aapl_partition]].count(b"AAPL") == 1
        assert [r.key for r in log.partitions[msft_partition]].count(b"MSFT") == 1

        worker = await _consume(config, log)

        path = worker.writer.path_for(CONSUME_TIME.date())
        assert path.name == "consumed_trades_2026-01-05.csv"
        rows = _read_rows(path)
        assert rows.count(list(CSV_HEADER)) == 1
        assert sorted(r[:4] for r in rows[1:]) == [
            ["AAPL", "Buy", "10", "150.0"],
            ["MSFT", "Sell", "5", "300.0"],
        ]
        assert all(r[4] == "2026-01-05T14:30:00+00:00" for r in rows[1:])

        assert log.committed[TopicPartition(TOPIC, aapl_partition)] >= 1
        assert log.committed[TopicPartition(TOPIC, msft_partition)] >= 1

    @pytest.mark.asyncio
    async def test_restarted_consumer_resumes_from_committed_offsets(self, config, log):
        await _ingest(config, log, "AAPL", TradeSide.BUY, 10, 150.0)
        first = await _consume(config, log)

        await _ingest(config, log, "MSFT", TradeSide.SELL, 5, 300.0)
        await _consume(config, log)

        rows = _read_rows(first.writer.path_for(CONSUME_TIME.date()))
        assert [r[0] for r in rows[1:]] == ["AAPL", "MSFT"]

    @pytest.mark.asyncio
    async def test_undecodable_message_is_skipped(self, config, log):
        partition = assign_partition("AAPL", PARTITION_COUNT)
        log.partitions[partition].append(
            SimpleNamespace(
                topic=TOPIC, partition=partition, offset=0, timestamp=0, key=b"AAPL", value=b"garbage", headers=None
            )
        )
        await _ingest(config, log, "AAPL", TradeSide.BUY, 10, 150.0)

        worker = await _consume(config, log)

        rows = _read_rows(worker.writer.path_for(CONSUME_TIME.date()))
        assert [r[0] for r in rows[1:]] == ["AAPL"]
        assert worker.consumer.records_skipped == 1
        assert log.committed[TopicPartition(TOPIC, partition)] == 2
