"""Logging setup: console plus an archived, time-rotated file per stage."""

import logging
import secrets
import shutil
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from core.logging.context import set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter

DEFAULT_LOG_DIR = Path("logs")
DEFAULT_ROTATION_WHEN = "midnight"
DEFAULT_ROTATION_INTERVAL = 1
DEFAULT_BACKUP_COUNT = 7
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

PLAIN_FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"

# Client libraries that log every reconnect and metadata refresh at INFO
NOISY_LOGGERS = ("aiokafka", "aiohttp")


def get_log_file_path(log_dir: Path, stage: str | None = None) -> Path:
    """
    Build a log file path inside a per-day folder.

    Examples:
        logs/2026-01-05/stockflow_ingest_0105_1430.log
        logs/2026-01-05/stockflow_0105_0930.log
    """
    now = datetime.now()
    name = "_".join(part for part in ("stockflow", stage, now.strftime("%m%d_%H%M")) if part)
    return log_dir / now.strftime("%Y-%m-%d") / f"{name}.log"


def _archive_rotator(archive_dir: Path):
    """Rotator that moves the rolled-over file into ``archive_dir``."""

    def rotate(source: str, dest: str) -> None:
        try:
            archive_dir.mkdir(parents=True, exist_ok=True)
            shutil.move(source, archive_dir / Path(dest).name)
        except OSError as e:
            # Not via logging: this runs inside a handler
            print(f"Warning: failed to archive {source}: {e}", file=sys.stderr)

    return rotate


def _build_file_handler(
    log_file: Path,
    archive_dir: Path,
    json_format: bool,
    level: int,
    when: str,
    interval: int,
    backup_count: int,
) -> TimedRotatingFileHandler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        log_file,
        when=when,
        interval=interval,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.rotator = _archive_rotator(archive_dir)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(PLAIN_FILE_FORMAT))
    return handler


def setup_logging(
    name: str = "stockflow",
    stage: str | None = None,
    log_dir: Path | None = None,
    json_format: bool = True,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    rotation_when: str = DEFAULT_ROTATION_WHEN,
    rotation_interval: int = DEFAULT_ROTATION_INTERVAL,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    worker_id: str | None = None,
    log_to_stdout: bool = False,
) -> logging.Logger:
    """
    Configure the root logger for a worker process.

    Args:
        name: Logger name to return
        stage: Worker stage (ingest/consume/all); part of the log file name
        log_dir: Directory for log files (default: ./logs)
        json_format: JSON lines in the file handler, plain text otherwise
        console_level: Console handler level
        file_level: File handler level
        rotation_when: TimedRotatingFileHandler ``when`` ('midnight', 'H', ...)
        rotation_interval: Rotation interval in ``rotation_when`` units
        backup_count: Rotated files to keep
        suppress_noisy: Raise aiokafka/aiohttp loggers to WARNING
        worker_id: Worker identifier stored in the log context
        log_to_stdout: Log everything to stdout at ``file_level`` and skip
            the file handler (containers that collect stdout)

    Rotated files are moved to ``<log_dir>/archive/<YYYY-MM-DD>/``.
    """
    log_dir = log_dir or DEFAULT_LOG_DIR
    set_log_context(stage=stage, worker_id=worker_id or None)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ConsoleFormatter())
    console_handler.setLevel(file_level if log_to_stdout else console_level)

    log_file = None
    if not log_to_stdout:
        log_file = get_log_file_path(log_dir, stage=stage)
        root_logger.addHandler(
            _build_file_handler(
                log_file,
                archive_dir=log_dir / "archive" / log_file.parent.name,
                json_format=json_format,
                level=file_level,
                when=rotation_when,
                interval=rotation_interval,
                backup_count=backup_count,
            )
        )
    root_logger.addHandler(console_handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug(
        "Logging initialized",
        extra={"file_path": str(log_file) if log_file else None, "json_format": json_format},
    )
    return logger


def generate_cycle_id() -> str:
    """Unique cycle id: ``c-YYYYMMDD-HHMMSS-xxxx`` with a random hex suffix."""
    return f"c-{datetime.now():%Y%m%d-%H%M%S}-{secrets.token_hex(2)}"
