"""Market data structures and types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Tick:
    """Individual aggregated trade.

    ``is_buyer_maker`` is False when a buy-side aggressor lifted the offer.
    """

    price: float
    is_buyer_maker: bool
    timestamp: datetime | None = None

    @property
    def is_aggressive_buy(self) -> bool:
        return not self.is_buyer_maker
