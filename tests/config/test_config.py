import os
from pathlib import Path
from unittest.mock import patch

import pytest

from config.config import (
    DEFAULT_CONFIG_FILE,
    StockFlowConfig,
    _cli_main,
    _deep_merge,
    _expand_env_vars,
    _parse_symbols,
    get_config,
    load_config,
    load_yaml,
    reset_config,
    set_config,
)

MINIMAL_YAML = """
kafka:
  connection:
    bootstrap_servers: broker:9092
  trades:
    topic: trades
ingestion:
  symbols: [aapl, MSFT]
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(MINIMAL_YAML)
    return path


@pytest.fixture(autouse=True)
def _no_api_key_env():
    with patch.dict(os.environ, {}, clear=False):
        os.environ.pop("ALPHAVANTAGE_API_KEY", None)
        yield


# =========================================================================
# load_yaml / env expansion / merge
# =========================================================================


class TestLoadYaml:
    def test_returns_empty_dict_for_nonexistent_file(self):
        assert load_yaml(Path("/nonexistent/path/config.yaml")) == {}

    def test_loads_yaml_file(self, tmp_path):
        config_file = tmp_path / "test.yaml"
        config_file.write_text("key: value\nnested:\n  a: 1\n")
        assert load_yaml(config_file) == {"key": "value", "nested": {"a": 1}}


class TestExpandEnvVars:
    def test_expands_set_variable(self):
        with patch.dict(os.environ, {"BROKER": "kafka:9093"}):
            assert _expand_env_vars({"a": "${BROKER}"}) == {"a": "kafka:9093"}

    def test_uses_default_when_unset(self):
        with patch.dict(os.environ, {}, clear=True):
            assert _expand_env_vars(["${MISSING:-fallback}"]) == ["fallback"]

    def test_empty_default(self):
        with patch.dict(os.environ, {}, clear=True):
            assert _expand_env_vars("${MISSING:-}") == ""

    def test_leaves_unset_without_default(self):
        with patch.dict(os.environ, {}, clear=True):
            assert _expand_env_vars("${MISSING}") == "${MISSING}"

    def test_non_strings_untouched(self):
        assert _expand_env_vars({"n": 3, "b": True}) == {"n": 3, "b": True}


class TestDeepMerge:
    def test_nested_merge(self):
        base = {"kafka": {"connection": {"a": 1, "b": 2}}, "x": 1}
        overlay = {"kafka": {"connection": {"b": 3}}}
        assert _deep_merge(base, overlay) == {"kafka": {"connection": {"a": 1, "b": 3}}, "x": 1}

    def test_does_not_mutate_base(self):
        base = {"a": {"b": 1}}
        _deep_merge(base, {"a": {"b": 2}})
        assert base == {"a": {"b": 1}}


class TestParseSymbols:
    def test_list(self):
        assert _parse_symbols(["aapl", " msft "]) == ["AAPL", "MSFT"]

    def test_comma_separated(self):
        assert _parse_symbols("AAPL, MSFT,,") == ["AAPL", "MSFT"]

    def test_empty(self):
        assert _parse_symbols(None) == []


# =========================================================================
# load_config
# =========================================================================


class TestLoadConfig:
    def test_loads_minimal_file(self, config_file):
        config = load_config(config_file)

        assert config.bootstrap_servers == "broker:9092"
        assert config.topic == "trades"
        assert config.symbols == ["AAPL", "MSFT"]
        assert config.batch_size == 10
        assert config.partition_count is None
        assert config.partitions is None
        assert config.output_dir == "ConsumedTrades"
        assert config.file_prefix == "consumed_trades"

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_missing_kafka_section_raises(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("ingestion:\n  symbols: [AAPL]\n")
        with pytest.raises(ValueError, match="missing 'kafka:' section"):
            load_config(path)

    def test_overrides_are_deep_merged(self, config_file):
        config = load_config(
            config_file,
            overrides={"ingestion": {"symbols": ["IBM"]}, "kafka": {"trades": {"partition_count": 6}}},
        )
        assert config.symbols == ["IBM"]
        assert config.partition_count == 6
        assert config.bootstrap_servers == "broker:9092"

    def test_api_key_env_takes_priority(self, config_file):
        with patch.dict(os.environ, {"ALPHAVANTAGE_API_KEY": "from-env"}):
            config = load_config(config_file, overrides={"ingestion": {"api_key": "from-file"}})
        assert config.api_key == "from-env"

    def test_explicit_partitions(self, config_file):
        config = load_config(config_file, overrides={"kafka": {"trades": {"partitions": [0, "2"]}}})
        assert config.partitions == [0, 2]

    def test_validation_runs(self, config_file):
        with pytest.raises(ValueError, match="batch_size"):
            load_config(config_file, overrides={"ingestion": {"batch_size": 0}})

    def test_bundled_config_loads(self):
        with patch.dict(os.environ, {}, clear=True):
            config = load_config(DEFAULT_CONFIG_FILE)
        assert config.bootstrap_servers == "localhost:9092"
        assert config.symbols == ["AAPL"]
        assert config.partition_count == 3


# =========================================================================
# StockFlowConfig
# =========================================================================


class TestProducerConfig:
    def test_idempotence_on_by_default(self):
        result = StockFlowConfig(bootstrap_servers="b:9092").get_producer_config()
        assert result["enable_idempotence"] is True
        assert result["acks"] == "all"

    def test_idempotence_forces_acks_all(self):
        config = StockFlowConfig(bootstrap_servers="b:9092", producer_defaults={"acks": "1"})
        assert config.get_producer_config()["acks"] == "all"

    def test_acks_kept_when_idempotence_disabled(self):
        config = StockFlowConfig(
            bootstrap_servers="b:9092",
            producer_defaults={"acks": "1", "enable_idempotence": False},
        )
        assert config.get_producer_config()["acks"] == 1


class TestConsumerConfig:
    def test_auto_commit_always_off(self):
        config = StockFlowConfig(
            bootstrap_servers="b:9092", consumer_defaults={"enable_auto_commit": True}
        )
        result = config.get_consumer_config()
        assert result["enable_auto_commit"] is False
        assert result["auto_offset_reset"] == "earliest"

    def test_does_not_mutate_defaults(self):
        defaults = {"auto_offset_reset": "latest"}
        StockFlowConfig(bootstrap_servers="b:9092", consumer_defaults=defaults).get_consumer_config()
        assert defaults == {"auto_offset_reset": "latest"}


class TestValidate:
    def _config(self, **kwargs):
        kwargs.setdefault("bootstrap_servers", "b:9092")
        return StockFlowConfig(**kwargs)

    def test_valid_config_passes(self):
        self._config(symbols=["AAPL"]).validate()

    @pytest.mark.parametrize(
        "kwargs, message",
        [
            ({"bootstrap_servers": ""}, "bootstrap_servers"),
            ({"topic": ""}, "topic"),
            ({"partition_count": 0}, "partition_count"),
            ({"partitions": [-1]}, "partitions"),
            ({"poll_timeout_ms": 0}, "poll_timeout_ms"),
            ({"batch_size": 0}, "batch_size"),
            ({"poll_interval_seconds": 0}, "poll_interval_seconds"),
            ({"symbols": ["AAPL", " "]}, "symbols"),
            ({"producer_defaults": {"acks": "2"}}, "acks"),
            ({"producer_defaults": {"compression_type": "brotli"}}, "compression_type"),
            ({"consumer_defaults": {"auto_offset_reset": "middle"}}, "auto_offset_reset"),
            (
                {"consumer_defaults": {"heartbeat_interval_ms": 20000, "session_timeout_ms": 30000}},
                "heartbeat_interval_ms",
            ),
        ],
    )
    def test_invalid_values(self, kwargs, message):
        with pytest.raises(ValueError, match=message):
            self._config(**kwargs).validate()


class TestSingleton:
    def test_set_get_reset(self):
        reset_config()
        config = StockFlowConfig(bootstrap_servers="b:9092")
        set_config(config)
        assert get_config() is config
        reset_config()
        with patch("config.config.load_config", return_value=config) as mock_load:
            assert get_config() is config
            mock_load.assert_called_once()
        reset_config()


class TestConfigCli:
    def test_valid_config_prints_summary(self, config_file, capsys):
        with patch("sys.argv", ["config", "--config", str(config_file), "--json"]):
            assert _cli_main() == 0

        out = capsys.readouterr().out
        assert '"passed": true' in out
        assert '"AAPL"' in out

    def test_missing_file_reports_error(self, tmp_path, capsys):
        with patch("sys.argv", ["config", "--config", str(tmp_path / "missing.yaml")]):
            assert _cli_main() == 1

        assert "Error" in capsys.readouterr().err
