"""Trade side and quantity for price-only market data.

The market-data API reports prices, not trades. Until a real source of
trade attributes exists, side and quantity are generated synthetically from
an injected random generator so runs can be reproduced with a seed.
"""

import random
from typing import Protocol

from stockflow.schemas.trade import TradeSide
from stockflow.sources.base import PriceSample

MIN_QUANTITY = 1
MAX_QUANTITY = 99


class TradeAttributeProvider(Protocol):
    """Supplies the side and quantity for a trade built from a price sample."""

    synthetic: bool

    def attributes_for(self, sample: PriceSample) -> tuple[TradeSide, int]: ...


class SyntheticTradeAttributes:
    """Uniformly random side and a quantity in [1, 99].

    Not real trade data: events built with these attributes are test data.
    """

    synthetic = True

    def __init__(self, rng: random.Random | None = None, seed: int | None = None):
        self._rng = rng if rng is not None else random.Random(seed)

    def attributes_for(self, sample: PriceSample) -> tuple[TradeSide, int]:
        side = self._rng.choice((TradeSide.BUY, TradeSide.SELL))
        quantity = self._rng.randint(MIN_QUANTITY, MAX_QUANTITY)
        return side, quantity


__all__ = ["TradeAttributeProvider", "SyntheticTradeAttributes"]
