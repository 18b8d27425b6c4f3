"""
pricing.py - Token price feed.

The exchange poller that keeps MXI/USDT current lives outside the ledger
core; the engines only need a read-only `usd_per_token()` to convert the
unlock fee and to stamp a USD value on transactions for display.
"""

import logging
from typing import Optional

from maxcoin.errors import InvalidAmount

logger = logging.getLogger("pricing")

# Launch price used until a feed publishes something else
DEFAULT_USD_PER_TOKEN = 0.4


class PriceFeed:
    """Interface for price sources. Subclasses override `usd_per_token`."""

    def usd_per_token(self) -> float:
        raise NotImplementedError

    def to_usd(self, tokens: float) -> float:
        return round(tokens * self.usd_per_token(), 6)

    def to_tokens(self, usd: float) -> float:
        price = self.usd_per_token()
        if price <= 0:
            raise InvalidAmount("Token price unavailable", price=price)
        return round(usd / price, 8)


class FixedPriceFeed(PriceFeed):
    """Price held in memory; `set_price` is how an external poller pushes updates."""

    def __init__(self, usd_per_token: float = DEFAULT_USD_PER_TOKEN):
        self._price = 0.0
        self.set_price(usd_per_token)

    def usd_per_token(self) -> float:
        return self._price

    def set_price(self, usd_per_token: float, source: Optional[str] = None):
        if not usd_per_token > 0:
            raise InvalidAmount("Price must be positive", price=usd_per_token)
        if usd_per_token != self._price:
            logger.info("MXI price set to $%.6f%s", usd_per_token,
                        f" ({source})" if source else "")
        self._price = usd_per_token
