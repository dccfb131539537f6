"""Append-only, one-file-per-day CSV sink for consumed trades."""

import csv
import logging
import os
from collections.abc import Callable
from datetime import UTC, date, datetime
from pathlib import Path

from core.errors.exceptions import SinkWriteError
from stockflow.schemas.trade import TradeEvent

logger = logging.getLogger(__name__)

CSV_HEADER = ("Symbol", "Side", "Quantity", "Price", "Timestamp")


def _utc_now() -> datetime:
    return datetime.now(UTC)


class DailyCsvWriter:
    """Durably appends trades to ``<output_dir>/<prefix>_YYYY-MM-DD.csv``.

    The file is chosen by the UTC date at the time of the write. A header row
    is written once, when the file is created (or found empty). Each append is
    flushed and fsynced before returning, so a returned append survives a
    crash. Re-appending the same trade adds another row; nothing is rewritten.

    The output directory is created at construction; OSError from that is
    left to propagate so a worker cannot start without a writable sink.
    """

    def __init__(
        self,
        output_dir: str | Path,
        file_prefix: str = "consumed_trades",
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.output_dir = Path(output_dir)
        self.file_prefix = file_prefix
        self._clock = clock
        self.rows_written = 0

        self.output_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Daily CSV sink ready", extra={"output_dir": str(self.output_dir)})

    def path_for(self, day: date) -> Path:
        return self.output_dir / f"{self.file_prefix}_{day.isoformat()}.csv"

    def current_path(self) -> Path:
        return self.path_for(self._clock().astimezone(UTC).date())

    @staticmethod
    def to_row(trade: TradeEvent) -> list[str]:
        return [
            trade.symbol,
            trade.side.value,
            str(trade.quantity),
            repr(trade.price),
            trade.timestamp.isoformat(),
        ]

    def append(self, trade: TradeEvent) -> Path:
        """Write one row and fsync; returns the file written to.

        Raises:
            SinkWriteError: the row could not be durably written
        """
        path = self.current_path()
        try:
            with open(path, "a", newline="", encoding="utf-8") as f:
                writer = csv.writer(f)
                if f.tell() == 0:
                    writer.writerow(CSV_HEADER)
                writer.writerow(self.to_row(trade))
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise SinkWriteError(
                f"Failed to append trade to {path}",
                cause=e,
                context={"path": str(path), "trade_id": trade.trade_id, "symbol": trade.symbol},
            ) from e

        self.rows_written += 1
        logger.debug(
            "Appended trade",
            extra={"trade_id": trade.trade_id, "symbol": trade.symbol, "file_path": str(path)},
        )
        return path


__all__ = ["CSV_HEADER", "DailyCsvWriter"]
