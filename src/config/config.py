"""Stockflow pipeline configuration from YAML file.

Loads from config/config.yaml with all settings in one place:
- Kafka connection settings and producer/consumer defaults
- Trades topic, partitioning and consumer group
- Market-data ingestion (symbols, API, polling cadence, batching)
- Storage (daily CSV output directory)

Environment variables ARE supported using ${VAR_NAME} and
${VAR_NAME:-default} syntax in YAML files.
"""

import json
import logging
import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


# Default config file: config/config.yaml in src/ directory
DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.yaml"

DEFAULT_API_URL = "https://www.alphavantage.co/query"


@dataclass
class StockFlowConfig:
    """Stockflow pipeline configuration.

    Configuration structure:
        kafka:
          connection: {...}           # Shared connection settings
          consumer_defaults: {...}    # AIOKafkaConsumer overrides
          producer_defaults: {...}    # AIOKafkaProducer overrides
          trades:
            topic: trades
            partition_count: 3        # optional, discovered from broker when absent
            consumer_group: stockflow-trade-consumer
            partitions: [0, 1]        # optional explicit assignment
            poll_timeout_ms: 1000
            retry_backoff_seconds: 1.0
        ingestion:
          symbols: [AAPL]
          api_key: ${ALPHAVANTAGE_API_KEY}
          poll_interval_seconds: 60
          batch_size: 10
        storage:
          output_dir: ConsumedTrades

    All Kafka timing values in milliseconds unless otherwise noted.
    """

    # =========================================================================
    # CONNECTION SETTINGS
    # =========================================================================
    bootstrap_servers: str = ""
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"
    sasl_plain_username: str = ""
    sasl_plain_password: str = ""
    request_timeout_ms: int = 30000
    metadata_max_age_ms: int = 300000  # 5 minutes
    connections_max_idle_ms: int = 540000  # 9 minutes

    # =========================================================================
    # DEFAULT SETTINGS (passed to the aiokafka clients)
    # =========================================================================
    consumer_defaults: Dict[str, Any] = field(default_factory=dict)
    producer_defaults: Dict[str, Any] = field(default_factory=dict)

    # =========================================================================
    # TRADES TOPIC
    # =========================================================================
    topic: str = "trades"
    partition_count: Optional[int] = None
    consumer_group: str = "stockflow-trade-consumer"
    partitions: Optional[List[int]] = None
    poll_timeout_ms: int = 1000
    retry_backoff_seconds: float = 1.0

    # =========================================================================
    # INGESTION
    # =========================================================================
    symbols: List[str] = field(default_factory=list)
    api_key: str = ""
    api_url: str = DEFAULT_API_URL
    interval: str = "1min"
    poll_interval_seconds: float = 60.0
    batch_size: int = 10
    request_timeout_seconds: float = 30.0
    random_seed: Optional[int] = None

    # =========================================================================
    # STORAGE
    # =========================================================================
    output_dir: str = "ConsumedTrades"
    file_prefix: str = "consumed_trades"

    # =========================================================================
    # RUNTIME
    # =========================================================================
    startup_max_retries: int = 5
    startup_backoff_seconds: int = 5
    stats_interval_seconds: int = 30

    def get_producer_config(self) -> Dict[str, Any]:
        """Producer settings with idempotence constraints enforced.

        Idempotent delivery is on unless explicitly disabled, and requires
        ``acks="all"``.
        """
        result = dict(self.producer_defaults)
        result.setdefault("enable_idempotence", True)
        acks = result.get("acks", "all")
        if isinstance(acks, str) and acks.isdigit():
            acks = int(acks)
        if result["enable_idempotence"] and acks != "all":
            logger.warning(
                "Overriding acks to 'all' because enable_idempotence=True requires it",
                extra={"configured_acks": acks},
            )
            acks = "all"
        result["acks"] = acks
        return result

    def get_consumer_config(self) -> Dict[str, Any]:
        """Consumer settings; offsets are only ever committed manually."""
        result = dict(self.consumer_defaults)
        if result.get("enable_auto_commit"):
            logger.warning("Ignoring enable_auto_commit=True; offsets are committed after each durable write")
        result["enable_auto_commit"] = False
        result.setdefault("auto_offset_reset", "earliest")
        return result

    def validate(self) -> None:
        """Validate configuration for correctness and constraints."""
        if not self.bootstrap_servers:
            raise ValueError("bootstrap_servers is required in kafka.connection section")
        if not self.topic:
            raise ValueError("kafka.trades.topic must not be empty")
        if self.partition_count is not None and self.partition_count < 1:
            raise ValueError(f"kafka.trades.partition_count must be >= 1, got {self.partition_count}")
        if self.partitions is not None and any(p < 0 for p in self.partitions):
            raise ValueError(f"kafka.trades.partitions must be non-negative, got {self.partitions}")
        if self.poll_timeout_ms <= 0:
            raise ValueError(f"kafka.trades.poll_timeout_ms must be > 0, got {self.poll_timeout_ms}")
        if self.batch_size < 1:
            raise ValueError(f"ingestion.batch_size must be >= 1, got {self.batch_size}")
        if self.poll_interval_seconds <= 0:
            raise ValueError(
                f"ingestion.poll_interval_seconds must be > 0, got {self.poll_interval_seconds}"
            )
        if any(not s or not str(s).strip() for s in self.symbols):
            raise ValueError("ingestion.symbols must not contain empty entries")

        self._validate_consumer_settings(self.consumer_defaults, "consumer_defaults")
        self._validate_producer_settings(self.producer_defaults, "producer_defaults")

    @staticmethod
    def _validate_enum(
        settings: Dict[str, Any],
        key: str,
        valid_values: List[Any],
        context: str
    ) -> None:
        """Validate that a setting's value is in a list of valid values."""
        if key in settings and settings[key] not in valid_values:
            raise ValueError(
                f"{context}: {key} must be one of {valid_values}, "
                f"got '{settings[key]}'"
            )

    def _validate_consumer_settings(self, settings: Dict[str, Any], context: str) -> None:
        """Validate consumer settings against Kafka requirements and logical constraints."""
        if "heartbeat_interval_ms" in settings and "session_timeout_ms" in settings:
            heartbeat = settings["heartbeat_interval_ms"]
            session_timeout = settings["session_timeout_ms"]
            if heartbeat >= session_timeout / 3:
                raise ValueError(
                    f"{context}: heartbeat_interval_ms ({heartbeat}) must be < "
                    f"session_timeout_ms/3 ({session_timeout/3:.0f})"
                )

        if "max_poll_records" in settings and settings["max_poll_records"] < 1:
            raise ValueError(f"{context}: max_poll_records must be >= 1, got {settings['max_poll_records']}")
        self._validate_enum(settings, "auto_offset_reset", ["earliest", "latest", "none"], context)

    def _validate_producer_settings(self, settings: Dict[str, Any], context: str) -> None:
        self._validate_enum(settings, "acks", ["0", "1", "all", 0, 1], context)
        self._validate_enum(settings, "compression_type", ["none", "gzip", "snappy", "lz4", "zstd"], context)
        if "linger_ms" in settings and settings["linger_ms"] < 0:
            raise ValueError(f"{context}: linger_ms must be >= 0, got {settings['linger_ms']}")


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _parse_symbols(value: Any) -> List[str]:
    """Accept a YAML list or a comma-separated string (handy for ${SYMBOLS} env expansion)."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [str(s).strip().upper() for s in value if str(s).strip()]


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> StockFlowConfig:
    """Load stockflow configuration from config.yaml file.

    Environment variables ARE supported using ${VAR_NAME} syntax in YAML files.
    ``overrides`` is deep-merged over the file contents before parsing.
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_FILE

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n" f"Expected file: config/config.yaml"
        )

    logger.info(f"Loading configuration from file: {config_path}")
    yaml_data = _expand_env_vars(load_yaml(config_path))

    if overrides:
        logger.debug(f"Applying overrides: {list(overrides.keys())}")
        yaml_data = _deep_merge(yaml_data, overrides)

    if "kafka" not in yaml_data:
        raise ValueError(
            "Invalid config file: missing 'kafka:' section\n"
            "See config.yaml for the expected structure"
        )

    kafka = yaml_data["kafka"] or {}
    connection = kafka.get("connection", {})
    trades = kafka.get("trades", {})
    ingestion = yaml_data.get("ingestion", {}) or {}
    storage = yaml_data.get("storage", {}) or {}
    runtime = yaml_data.get("runtime", {}) or {}

    partitions = trades.get("partitions")

    config = StockFlowConfig(
        bootstrap_servers=connection.get("bootstrap_servers", ""),
        security_protocol=connection.get("security_protocol", "PLAINTEXT"),
        sasl_mechanism=connection.get("sasl_mechanism", "PLAIN"),
        sasl_plain_username=connection.get("sasl_plain_username", ""),
        sasl_plain_password=connection.get("sasl_plain_password", ""),
        request_timeout_ms=int(connection.get("request_timeout_ms", 30000)),
        metadata_max_age_ms=int(connection.get("metadata_max_age_ms", 300000)),
        connections_max_idle_ms=int(connection.get("connections_max_idle_ms", 540000)),
        consumer_defaults=kafka.get("consumer_defaults", {}) or {},
        producer_defaults=kafka.get("producer_defaults", {}) or {},
        topic=trades.get("topic", "trades"),
        partition_count=_optional_int(trades.get("partition_count")),
        consumer_group=trades.get("consumer_group", "stockflow-trade-consumer"),
        partitions=[int(p) for p in partitions] if partitions else None,
        poll_timeout_ms=int(trades.get("poll_timeout_ms", 1000)),
        retry_backoff_seconds=float(trades.get("retry_backoff_seconds", 1.0)),
        symbols=_parse_symbols(ingestion.get("symbols")),
        api_key=os.getenv("ALPHAVANTAGE_API_KEY") or ingestion.get("api_key", ""),
        api_url=ingestion.get("api_url", DEFAULT_API_URL),
        interval=ingestion.get("interval", "1min"),
        poll_interval_seconds=float(ingestion.get("poll_interval_seconds", 60)),
        batch_size=int(ingestion.get("batch_size", 10)),
        request_timeout_seconds=float(ingestion.get("request_timeout_seconds", 30)),
        random_seed=_optional_int(ingestion.get("random_seed")),
        output_dir=storage.get("output_dir", "ConsumedTrades"),
        file_prefix=storage.get("file_prefix", "consumed_trades"),
        startup_max_retries=int(runtime.get("startup_max_retries", 5)),
        startup_backoff_seconds=int(runtime.get("startup_backoff_seconds", 5)),
        stats_interval_seconds=int(runtime.get("stats_interval_seconds", 30)),
    )

    if not config.api_key:
        logger.warning("Market-data API key not configured")

    logger.debug(
        "Configuration loaded",
        extra={"topic": config.topic, "symbols": config.symbols},
    )

    config.validate()
    return config


_config: Optional[StockFlowConfig] = None


def get_config() -> StockFlowConfig:
    """Get or load the singleton config instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: StockFlowConfig) -> None:
    """Set the singleton config instance (useful for testing)."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the singleton config instance (forces reload on next get_config() call)."""
    global _config
    _config = None


def _cli_main() -> int:
    """CLI entry point for config validation and debugging."""
    import argparse

    parser = argparse.ArgumentParser(description="Stockflow Configuration Tool")
    parser.add_argument("--config", type=Path, help="Path to config.yaml file")
    parser.add_argument("--json", action="store_true", help="Output in JSON format")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

    try:
        config = load_config(config_path=args.config)
    except (FileNotFoundError, ValueError) as e:
        if args.json:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"✗ Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps({"validation": {"passed": True}, "topic": config.topic, "symbols": config.symbols}))
    else:
        print("✓ Configuration validation passed")
        print(f"  - Topic: {config.topic}")
        print(f"  - Symbols: {', '.join(config.symbols) or '(none)'}")
        print(f"  - Output dir: {config.output_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(_cli_main())
