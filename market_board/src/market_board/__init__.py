"""
Market board price services for FFXIV dyes.

This package fetches dye prices from the Universalis API and shares them
between consumers.  :class:`~market_board.services.PriceFetchService`
owns network access and a TTL cache; :class:`~market_board.services.MarketBoardService`
is the single shared coordinator consumers subscribe to.
"""

from .config import PriceApiSettings  # noqa: F401
from .models import CacheEntry, CategoryFilterSettings, Dye, PriceRecord  # noqa: F401

__version__ = "0.1.0"
