"""Helpers that keep worker log lines uniform."""

import logging
from typing import Any

MAX_ERROR_MESSAGE_LENGTH = 500
BANNER_WIDTH = 50


def _truncate(text: str, limit: int = MAX_ERROR_MESSAGE_LENGTH) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log ``exc`` with its type, a truncated message and, for pipeline errors,
    its retry category. Remaining keyword arguments become ``extra`` fields.

    Example:
        try:
            writer.append(trade)
        except SinkWriteError as e:
            log_exception(logger, e, "Sink write failed", symbol=trade.symbol)
    """
    category = getattr(exc, "category", None)
    if category is not None:
        kwargs.setdefault("error_category", getattr(category, "value", str(category)))
    kwargs.setdefault("error_type", type(exc).__name__)
    kwargs["error_message"] = _truncate(str(exc))

    logger.log(level, msg, exc_info=exc if include_traceback else None, extra=kwargs)


def format_cycle_output(
    cycle_count: int,
    succeeded: int,
    failed: int,
    skipped: int = 0,
    since_last: dict[str, int] | None = None,
    interval_seconds: int = 30,
) -> str:
    """
    One-line cycle summary. Without ``since_last`` only totals are shown;
    with it the cycle's delta and throughput lead.

    Example:
        >>> format_cycle_output(1, 1200, 34, 50)
        'Cycle 1: processed=1284, succeeded=1200, failed=34, skipped=50'
        >>> format_cycle_output(5, 1200, 34, 50, {"succeeded": 240}, 30)
        'Cycle 5: +240 this cycle | total: 1200 succeeded, 34 failed, 50 skipped | 8.0 msg/s'
    """
    if since_last is None:
        fields = [("processed", succeeded + failed + skipped), ("succeeded", succeeded), ("failed", failed)]
        if skipped:
            fields.append(("skipped", skipped))
        return f"Cycle {cycle_count}: " + ", ".join(f"{name}={count}" for name, count in fields)

    delta = sum(since_last.get(key, 0) for key in ("succeeded", "failed", "skipped"))
    rate = delta / interval_seconds if interval_seconds > 0 else 0
    totals = [f"{succeeded} succeeded"]
    totals += [f"{count} {label}" for count, label in ((failed, "failed"), (skipped, "skipped")) if count]
    return f"Cycle {cycle_count}: +{delta} this cycle | total: {', '.join(totals)} | {rate:.1f} msg/s"


def log_startup_banner(
    logger: logging.Logger,
    worker_name: str,
    **fields: Any,
) -> None:
    """Log a ruled block naming the worker and each of its non-empty settings."""
    rule = "=" * BANNER_WIDTH
    rows = [
        f"{name.replace('_', ' ').title() + ':':<16}{value}"
        for name, value in fields.items()
        if value is not None and value != ""
    ]
    logger.info("\n".join(["", rule, worker_name, rule, *rows, rule]))
