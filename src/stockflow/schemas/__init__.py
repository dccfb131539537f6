"""Pydantic schemas for messages flowing through the trades topic."""

from stockflow.schemas.trade import TradeEvent, TradeSide, create_trade_event

__all__ = ["TradeEvent", "TradeSide", "create_trade_event"]
