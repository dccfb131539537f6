"""Tests for synthetic trade attributes."""

import random
from datetime import UTC, datetime

from stockflow.ingestion.trade_attributes import (
    MAX_QUANTITY,
    MIN_QUANTITY,
    SyntheticTradeAttributes,
    TradeAttributeProvider,
)
from stockflow.schemas.trade import TradeSide
from stockflow.sources.base import PriceSample

SAMPLE = PriceSample(symbol="AAPL", timestamp=datetime(2026, 1, 5, 14, 30, tzinfo=UTC), price=150.0)


class TestSyntheticTradeAttributes:
    def test_flagged_as_synthetic(self):
        attributes: TradeAttributeProvider = SyntheticTradeAttributes(seed=1)
        assert attributes.synthetic is True

    def test_values_within_bounds(self):
        attributes = SyntheticTradeAttributes(seed=7)
        for _ in range(500):
            side, quantity = attributes.attributes_for(SAMPLE)
            assert side in (TradeSide.BUY, TradeSide.SELL)
            assert MIN_QUANTITY <= quantity <= MAX_QUANTITY

    def test_both_sides_generated(self):
        attributes = SyntheticTradeAttributes(seed=3)
        sides = {attributes.attributes_for(SAMPLE)[0] for _ in range(100)}
        assert sides == {TradeSide.BUY, TradeSide.SELL}

    def test_same_seed_is_reproducible(self):
        first = SyntheticTradeAttributes(seed=42)
        second = SyntheticTradeAttributes(seed=42)
        assert [first.attributes_for(SAMPLE) for _ in range(20)] == [
            second.attributes_for(SAMPLE) for _ in range(20)
        ]

    def test_injected_generator_is_used(self):
        rng = random.Random(5)
        expected = random.Random(5)
        attributes = SyntheticTradeAttributes(rng=rng)

        side, quantity = attributes.attributes_for(SAMPLE)

        assert side == expected.choice((TradeSide.BUY, TradeSide.SELL))
        assert quantity == expected.randint(MIN_QUANTITY, MAX_QUANTITY)
