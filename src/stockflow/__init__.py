"""Stockflow: market-data ticks published to Kafka and persisted to daily CSV files.

Subpackages:
- schemas: the TradeEvent model and its wire format
- common: aiokafka producer/consumer wrappers, partitioning, metrics, signals
- sources: market-data sample sources
- ingestion: synthetic trade attributes for price-only samples
- workers: ingestion loop, trade publisher and trade consumer
- writers: durable daily CSV sink

Import classes directly from submodules to avoid loading aiokafka/aiohttp at
package import time.
"""

__all__: list[str] = []
