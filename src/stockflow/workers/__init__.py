"""
Pipeline workers.

- IngestionWorker: polls a sample source for one symbol and publishes trades
- TradePublisher: batches trade events and publishes them to their partitions
- TradeConsumerWorker: persists consumed trades to daily CSV files

Import classes directly from submodules to avoid loading aiokafka at package
import time:
    from stockflow.workers.ingestion_worker import IngestionWorker
"""

__all__: list[str] = []
