"""Background task that logs a worker's running counters at a fixed interval."""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Any

from core.logging.utilities import format_cycle_output

logger = logging.getLogger(__name__)

_COUNTER_KEYS = ("succeeded", "failed", "skipped")


class PeriodicStatsLogger:
    """
    Logs cumulative counts and the change since the previous cycle.

    ``get_stats(cycle)`` returns the extra fields for the log line; the
    counters are read from its ``records_succeeded``, ``records_failed``
    and ``records_skipped`` keys. Cycle 0 is logged as soon as the task
    starts and shows totals only.
    """

    def __init__(
        self,
        interval_seconds: int,
        get_stats: Callable[[int], dict[str, Any]],
        stage: str,
        worker_id: str,
    ):
        self.interval_seconds = interval_seconds
        self.get_stats = get_stats
        self.stage = stage
        self.worker_id = worker_id
        self._task: asyncio.Task | None = None
        self._cycle_count = 0
        self._previous: dict[str, int] | None = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())
        else:
            logger.warning("Periodic logger already running", extra={"stage": self.stage})

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def log_cycle(self) -> None:
        extra = self.get_stats(self._cycle_count)
        current = {key: extra.get(f"records_{key}", 0) for key in _COUNTER_KEYS}
        fields = {"worker_id": self.worker_id, "stage": self.stage, **extra}

        if self._previous is None:
            msg = f"{format_cycle_output(self._cycle_count, **current)} [every {self.interval_seconds}s]"
        else:
            msg = format_cycle_output(
                self._cycle_count,
                **current,
                since_last={key: current[key] - self._previous[key] for key in _COUNTER_KEYS},
                interval_seconds=self.interval_seconds,
            )
            fields.setdefault("cycle_id", f"cycle-{self._cycle_count}")

        logger.info(msg, extra=fields)
        self._previous = current
        self._cycle_count += 1

    async def _run(self) -> None:
        while True:
            self.log_cycle()
            await asyncio.sleep(self.interval_seconds)
