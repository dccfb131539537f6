"""Alpha Vantage intraday time-series client."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import aiohttp

from config.config import DEFAULT_API_URL
from core.errors.exceptions import SampleSourceError
from stockflow.sources.base import PriceSample

logger = logging.getLogger(__name__)

DEFAULT_TIME_ZONE = "US/Eastern"
PRICE_FIELD = "1. open"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Keys Alpha Vantage uses for "no data" responses (rate limit, bad symbol, bad key)
_NO_DATA_KEYS = ("Note", "Information", "Error Message")


def _resolve_time_zone(name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo(name or DEFAULT_TIME_ZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(
            "Unknown time zone in response metadata, assuming %s",
            DEFAULT_TIME_ZONE,
            extra={"time_zone": name},
        )
        return ZoneInfo(DEFAULT_TIME_ZONE)


def parse_time_series(symbol: str, payload: dict[str, Any], interval: str = "1min") -> list[PriceSample]:
    """Extract price samples from an intraday response, oldest first.

    Timestamps are localized with the response's ``6. Time Zone`` metadata
    and converted to UTC. A response without the series is a "no data"
    outcome and yields an empty list; malformed entries are skipped.
    """
    series = payload.get(f"Time Series ({interval})")
    if not series:
        reason = next((payload[k] for k in _NO_DATA_KEYS if k in payload), None)
        logger.warning(
            "No time series data in response",
            extra={"symbol": symbol, "reason": reason},
        )
        return []

    meta = payload.get("Meta Data", {})
    tz = _resolve_time_zone(meta.get("6. Time Zone"))

    samples = []
    skipped = 0
    for raw_ts, values in series.items():
        try:
            local = datetime.strptime(raw_ts, TIMESTAMP_FORMAT).replace(tzinfo=tz)
            price = float(values[PRICE_FIELD])
        except (KeyError, TypeError, ValueError) as e:
            skipped += 1
            logger.debug(
                "Skipping malformed time series entry",
                extra={"symbol": symbol, "entry": raw_ts, "error": str(e)},
            )
            continue
        samples.append(PriceSample(symbol=symbol, timestamp=local.astimezone(timezone.utc), price=price))

    if skipped:
        logger.warning(
            "Skipped malformed time series entries",
            extra={"symbol": symbol, "records_skipped": skipped},
        )

    samples.sort(key=lambda s: s.timestamp)
    return samples


class AlphaVantageSource:
    """SampleSource backed by the TIME_SERIES_INTRADAY endpoint."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_API_URL,
        interval: str = "1min",
        timeout_seconds: float = 30.0,
    ):
        if not api_key:
            raise ValueError(
                "AlphaVantageSource requires 'api_key'. "
                "Set ALPHAVANTAGE_API_KEY environment variable or configure ingestion.api_key in config."
            )

        self.base_url = base_url
        self.interval = interval
        self.timeout_seconds = timeout_seconds
        self._api_key = api_key
        self._session: aiohttp.ClientSession | None = None
        self._closed = False

        logger.info(
            "AlphaVantageSource initialized",
            extra={"api_url": base_url, "interval": interval, "timeout_seconds": timeout_seconds},
        )

    async def __aenter__(self) -> "AlphaVantageSource":
        self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._closed:
            raise RuntimeError("AlphaVantageSource is closed, cannot create new session")
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
                headers={"Accept": "application/json"},
            )
        return self._session

    async def close(self) -> None:
        self._closed = True
        if self._session and not self._session.closed:
            await self._session.close()
            await asyncio.sleep(0)
        self._session = None

    async def _request_json(self, params: dict[str, str]) -> dict[str, Any]:
        session = self._ensure_session()
        try:
            async with session.get(self.base_url, params=params) as response:
                if response.status != 200:
                    body = await response.text()
                    raise SampleSourceError(
                        f"HTTP error ({response.status}) from market-data API",
                        context={"http_status": response.status, "response_body": body[:500]},
                    )
                return await response.json(content_type=None)
        except SampleSourceError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise SampleSourceError("Market-data request failed", cause=e) from e

    async def fetch(self, symbol: str) -> list[PriceSample]:
        params = {
            "function": "TIME_SERIES_INTRADAY",
            "symbol": symbol,
            "interval": self.interval,
            "apikey": self._api_key,
        }
        payload = await self._request_json(params)
        if not isinstance(payload, dict):
            raise SampleSourceError(
                "Unexpected market-data response shape",
                context={"symbol": symbol, "payload_type": type(payload).__name__},
            )

        samples = parse_time_series(symbol, payload, self.interval)
        logger.debug("Fetched price samples", extra={"symbol": symbol, "samples_fetched": len(samples)})
        return samples


__all__ = ["AlphaVantageSource", "parse_time_series"]
