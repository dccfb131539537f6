"""Market-data sample sources."""

from stockflow.sources.alpha_vantage import AlphaVantageSource
from stockflow.sources.base import PriceSample, SampleSource

__all__ = ["AlphaVantageSource", "PriceSample", "SampleSource"]
