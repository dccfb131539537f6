"""Transport infrastructure shared by the ingestion and consumer workers.

- MessageProducer: idempotent aiokafka producer wrapper
- MessageConsumer: manual-commit aiokafka consumer wrapper
- assign_partition: stable key -> partition mapping
- Prometheus metrics and shutdown signal wiring

Import classes directly from submodules to avoid loading aiokafka at package
import time:
    from stockflow.common.consumer import MessageConsumer
    from stockflow.common.producer import MessageProducer
"""

__all__: list[str] = []
