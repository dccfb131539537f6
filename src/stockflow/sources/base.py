"""Sample source abstraction: where price samples come from."""

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class PriceSample:
    """One timestamped price reported by a market-data source."""

    symbol: str
    timestamp: datetime
    price: float


@runtime_checkable
class SampleSource(Protocol):
    """Pull-based source of price samples for a symbol.

    ``fetch`` returns an empty list when the source has no data for the
    symbol; it raises SampleSourceError only when the request itself fails.
    """

    async def fetch(self, symbol: str) -> list[PriceSample]: ...

    async def close(self) -> None: ...


__all__ = ["PriceSample", "SampleSource"]
