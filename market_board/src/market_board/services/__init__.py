"""Service layer for the market board.

This package exposes the cache backends, the price fetch service, the
shared market board coordinator and the helpers built around them.
"""

from .cache_backend import (  # noqa: F401
    CacheBackend,
    InMemoryCacheBackend,
    JsonFileCacheBackend,
    RedisCacheBackend,
    build_cache_backend,
)
from .event_bus import EventBus, EventStream  # noqa: F401
from .market_board_service import MarketBoardService  # noqa: F401
from .price_fetcher import PriceFetchService  # noqa: F401
from .settings_store import InMemorySettingsStore, JsonFileSettingsStore  # noqa: F401
