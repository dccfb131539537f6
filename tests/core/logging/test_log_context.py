"""Tests for log context variables and logging setup."""

import logging
import re
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

import pytest

from core.logging import (
    MessageLogContext,
    clear_log_context,
    clear_message_context,
    generate_cycle_id,
    get_log_context,
    get_log_file_path,
    get_message_context,
    set_log_context,
    setup_logging,
)
from core.logging.formatters import ConsoleFormatter, JSONFormatter


@pytest.fixture(autouse=True)
def _reset_context():
    clear_log_context()
    clear_message_context()
    yield
    clear_log_context()
    clear_message_context()


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestLogContext:
    def test_defaults_are_empty(self):
        assert get_log_context() == {"cycle_id": "", "stage": "", "worker_id": "", "symbol": ""}

    def test_partial_updates_keep_other_fields(self):
        set_log_context(stage="ingest", worker_id="ingest-aapl-1")
        set_log_context(symbol="AAPL")

        assert get_log_context() == {
            "cycle_id": "",
            "stage": "ingest",
            "worker_id": "ingest-aapl-1",
            "symbol": "AAPL",
        }

    def test_generate_cycle_id_format(self):
        assert re.fullmatch(r"c-\d{8}-\d{6}-[0-9a-f]{4}", generate_cycle_id())


class TestMessageLogContext:
    def test_sets_and_restores_context(self):
        assert get_message_context() == {}

        with MessageLogContext(topic="trades", partition=1, offset=0, key="AAPL", consumer_group="g"):
            assert get_message_context() == {
                "message_topic": "trades",
                "message_partition": 1,
                "message_offset": 0,
                "message_key": "AAPL",
                "message_consumer_group": "g",
            }

        assert get_message_context() == {}

    def test_nested_context_restores_outer(self):
        with MessageLogContext(topic="trades", partition=0, offset=5):
            with MessageLogContext(partition=2, offset=9):
                assert get_message_context()["message_partition"] == 2
            assert get_message_context() == {
                "message_topic": "trades",
                "message_partition": 0,
                "message_offset": 5,
            }

    def test_restored_after_exception(self):
        with pytest.raises(RuntimeError):
            with MessageLogContext(topic="trades", offset=3):
                raise RuntimeError("boom")
        assert get_message_context() == {}


class TestSetupLogging:
    def test_log_file_path_layout(self, tmp_path):
        path = get_log_file_path(tmp_path, stage="consume")
        assert path.parent.parent == tmp_path
        assert re.fullmatch(r"\d{4}-\d{2}-\d{2}", path.parent.name)
        assert re.fullmatch(r"stockflow_consume_\d{4}_\d{4}\.log", path.name)

    def test_stdout_only_mode(self, tmp_path, restore_root_logger):
        setup_logging(stage="ingest", log_dir=tmp_path, worker_id="w-1", log_to_stdout=True)

        handlers = restore_root_logger.handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, ConsoleFormatter)
        assert not any(tmp_path.iterdir())
        assert get_log_context()["worker_id"] == "w-1"
        assert get_log_context()["stage"] == "ingest"

    def test_file_mode_writes_json(self, tmp_path, restore_root_logger):
        setup_logging(stage="consume", log_dir=tmp_path, console_level=logging.WARNING)

        file_handlers = [
            h for h in restore_root_logger.handlers if isinstance(h, TimedRotatingFileHandler)
        ]
        assert len(file_handlers) == 1
        assert isinstance(file_handlers[0].formatter, JSONFormatter)
        assert Path(file_handlers[0].baseFilename).parent.parent == tmp_path

    def test_rotated_file_moves_to_archive(self, tmp_path, restore_root_logger):
        setup_logging(stage="ingest", log_dir=tmp_path, log_to_stdout=False)
        handler = next(h for h in restore_root_logger.handlers if isinstance(h, TimedRotatingFileHandler))
        source = Path(handler.baseFilename)
        rolled = source.with_name(source.name + ".2026-01-05")
        rolled.write_text("old\n", encoding="utf-8")

        handler.rotator(str(rolled), str(rolled))

        archived = tmp_path / "archive" / source.parent.name / rolled.name
        assert archived.read_text(encoding="utf-8") == "old\n"
        assert not rolled.exists()

    def test_noisy_loggers_suppressed(self, tmp_path, restore_root_logger):
        setup_logging(log_dir=tmp_path, log_to_stdout=True)
        assert logging.getLogger("aiokafka").level == logging.WARNING
