"""Stockflow pipeline worker orchestration. Use --help for usage."""

import argparse
import asyncio
import logging
import os
import socket
import sys
from pathlib import Path

from dotenv import load_dotenv
from prometheus_client import start_http_server

from config.config import StockFlowConfig, load_config, set_config
from core.logging.setup import setup_logging
from core.utils import generate_worker_id
from stockflow import runners
from stockflow.common.signals import remove_shutdown_signal_handlers, setup_shutdown_signal_handlers

# Project root directory (where .env file is located)
# __main__.py is at src/stockflow/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

WORKER_CHOICES = ["ingest", "consume", "all"]

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m stockflow",
        description="Run stockflow pipeline workers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run ingestion and consumer together
    python -m stockflow

    # Ingest two symbols only
    python -m stockflow --worker ingest --symbol AAPL --symbol MSFT

    # Consume against a local broker with debug console output
    python -m stockflow --worker consume --dev --log-to-stdout
        """,
    )

    parser.add_argument(
        "--worker",
        choices=WORKER_CHOICES,
        default="all",
        help="Which worker(s) to run (default: all)",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.yaml (default: src/config/config.yaml)",
    )

    parser.add_argument(
        "--symbol",
        action="append",
        dest="symbols",
        default=None,
        help="Symbol to ingest; repeatable. Overrides ingestion.symbols",
    )

    parser.add_argument(
        "--dev",
        action="store_true",
        help="Development mode: DEBUG console logging and human-readable log files",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Console logging level (default: INFO)",
    )

    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Log directory path (default: from LOG_DIR env var or ./logs)",
    )

    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Send all log output to stdout only, skipping file handlers. "
        "Can also be set via LOG_TO_STDOUT environment variable.",
    )

    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Serve Prometheus metrics on this port (default: disabled)",
    )

    return parser.parse_args(argv)


def start_metrics_server(preferred_port: int) -> int:
    """Start Prometheus metrics server with automatic port fallback.
    Returns actual port number that the server is listening on."""
    try:
        start_http_server(preferred_port)
        return preferred_port
    except OSError as e:
        if e.errno != 98:
            raise
        logger.info(
            "Port already in use, finding available port",
            extra={"preferred_port": preferred_port},
        )
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("", 0))
            available_port = s.getsockname()[1]
        start_http_server(available_port)
        return available_port


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _setup_logging(args: argparse.Namespace) -> str:
    worker_id = os.getenv("WORKER_ID") or generate_worker_id(args.worker)
    console_level = logging.DEBUG if args.dev else getattr(logging, args.log_level)
    log_dir = Path(args.log_dir or os.getenv("LOG_DIR") or "logs")

    setup_logging(
        name="stockflow",
        stage=args.worker,
        log_dir=log_dir,
        json_format=not args.dev and _env_flag("JSON_LOGS", "true"),
        console_level=console_level,
        worker_id=worker_id,
        log_to_stdout=args.log_to_stdout or _env_flag("LOG_TO_STDOUT"),
    )
    return worker_id


def _load_config(args: argparse.Namespace) -> StockFlowConfig:
    overrides: dict = {}
    if args.symbols:
        overrides["ingestion"] = {"symbols": args.symbols}

    config = load_config(args.config, overrides=overrides or None)
    set_config(config)
    return config


async def _run(args: argparse.Namespace, config: StockFlowConfig) -> None:
    shutdown_event = asyncio.Event()

    def _request_shutdown() -> None:
        if shutdown_event.is_set():
            logger.warning("Shutdown already in progress")
            return
        shutdown_event.set()

    registered = setup_shutdown_signal_handlers(_request_shutdown)
    try:
        if args.worker == "ingest":
            await runners.run_ingestion_workers(config, shutdown_event)
        elif args.worker == "consume":
            await runners.run_consumer_worker(config, shutdown_event)
        else:
            await runners.run_all_workers(config, shutdown_event)
    finally:
        remove_shutdown_signal_handlers(registered)


def main(argv: list[str] | None = None) -> int:
    load_dotenv(PROJECT_ROOT / ".env")
    args = parse_args(argv)
    worker_id = _setup_logging(args)

    try:
        config = _load_config(args)
    except (ValueError, FileNotFoundError) as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 2

    logger.info(
        "Starting stockflow",
        extra={"worker": args.worker, "worker_id": worker_id, "topic": config.topic},
    )

    if args.metrics_port is not None:
        actual_port = start_metrics_server(args.metrics_port)
        logger.info("Metrics server started", extra={"port": actual_port})

    try:
        asyncio.run(_run(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except Exception as e:
        logger.error("Fatal error", extra={"error": str(e)}, exc_info=True)
        return 1

    logger.info("Shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
