"""Turning price samples into trade events."""

from stockflow.ingestion.trade_attributes import SyntheticTradeAttributes, TradeAttributeProvider

__all__ = ["SyntheticTradeAttributes", "TradeAttributeProvider"]
