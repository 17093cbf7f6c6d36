"""
Market Board Service
====================

Shared coordinator for market board prices.  One instance is created at
application start and passed to every consumer that displays prices.
It owns:

* the region scope (world or data center) prices are fetched for;
* a scope-lifetime price cache that consumers read synchronously;
* a monotonic request epoch used to discard responses that arrive after
  the scope changed;
* the category filters deciding which dyes are priced at all, persisted
  through an injected :class:`SettingsStore`;
* an :class:`EventBus` broadcasting changes to subscribers.

Network access is delegated to :class:`PriceFetchService`, which has its
own TTL cache, request collapsing, rate limiting and retries.

Events
------

``prices-updated``   ``{"prices", "fetched_count"}``
``scope-changed``    ``{"scope", "previous_scope"}``
``settings-changed`` ``{"enabled", "categories"}``
``fetch-started``    ``{"count"}``
``fetch-completed``  ``{"count"}``
``fetch-error``      ``{"reason", "count"}``

Usage
-----

    fetcher = PriceFetchService(UniversalisClient(settings))
    service = MarketBoardService(fetcher, InMemorySettingsStore(), prices_enabled=True)
    service.subscribe("prices-updated", on_prices)
    await service.fetch_prices_for(dyes)
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from pydantic import ValidationError

from ..config import DEFAULT_REGION_SCOPE
from ..errors import PriceFetchError
from ..models import (
    PRICE_CATEGORY_ACQUISITIONS,
    SPECIAL_DYE_CATEGORY,
    CategoryFilterSettings,
    Dye,
    PriceRecord,
)
from ..models_events import (
    FETCH_COMPLETED,
    FETCH_ERROR,
    FETCH_STARTED,
    PRICES_UPDATED,
    SCOPE_CHANGED,
    SETTINGS_CHANGED,
)
from .event_bus import EventBus, EventStream, Subscriber
from .price_fetcher import PriceFetchService
from .settings_store import InMemorySettingsStore, SettingsStore

logger = logging.getLogger(__name__)

STORAGE_KEY_CATEGORIES = "market_board_categories"

ProgressCallback = Callable[[int, int], None]


class MarketBoardService:
    """Coordinate price fetches, the shared price cache and change events."""

    def __init__(
        self,
        fetcher: PriceFetchService,
        settings_store: Optional[SettingsStore] = None,
        *,
        region_scope: str = DEFAULT_REGION_SCOPE,
        prices_enabled: bool = False,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        """Initialise the coordinator.

        Args:
            fetcher: Service used for all network access.
            settings_store: Persistence for category filters.  Defaults to an
                in-memory store.
            region_scope: Initial world or data center.
            prices_enabled: Whether fetching is switched on initially.
            event_bus: Optional bus to broadcast on; a private one is created
                when omitted.
        """
        self.fetcher = fetcher
        self.settings_store: SettingsStore = settings_store if settings_store is not None else InMemorySettingsStore()
        self.event_bus = event_bus or EventBus()
        self._region_scope = region_scope
        self._prices_enabled = prices_enabled
        self._categories = self._load_categories()
        self._prices: Dict[int, PriceRecord] = {}
        self._epoch = 0
        self._active_fetches = 0
        logger.info("MarketBoardService initialised for %s", region_scope)

    def _load_categories(self) -> CategoryFilterSettings:
        stored = self.settings_store.get(STORAGE_KEY_CATEGORIES)
        if stored is None:
            return CategoryFilterSettings()
        try:
            return CategoryFilterSettings.model_validate(stored)
        except ValidationError as exc:
            logger.warning("Ignoring invalid stored price categories: %s", exc)
            return CategoryFilterSettings()

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------

    @property
    def region_scope(self) -> str:
        return self._region_scope

    @property
    def prices_enabled(self) -> bool:
        return self._prices_enabled

    @property
    def category_filters(self) -> CategoryFilterSettings:
        return self._categories.model_copy()

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def is_fetching(self) -> bool:
        return self._active_fetches > 0

    def get_cached_price(self, item_id: int) -> Optional[PriceRecord]:
        return self._prices.get(item_id)

    def get_all_cached_prices(self) -> Dict[int, PriceRecord]:
        return dict(self._prices)

    def get_world_name_for_price(self, record: Optional[PriceRecord]) -> str:
        """Name of the market a price came from, defaulting to the current scope."""
        if record is None or not record.market_region_id:
            return self._region_scope
        return record.market_region_id

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def subscribe(self, event_type: str, callback: Subscriber) -> Callable[[], None]:
        return self.event_bus.subscribe(event_type, callback)

    def events(self, event_type: str) -> EventStream:
        return self.event_bus.stream(event_type)

    def _settings_payload(self) -> Dict[str, Any]:
        return {"enabled": self._prices_enabled, "categories": self._categories.model_copy()}

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def set_region_scope(self, scope: str) -> None:
        """Switch market scope, invalidating cached and in-flight prices."""
        if scope == self._region_scope:
            return
        previous = self._region_scope
        self._region_scope = scope
        self._epoch += 1
        self._prices.clear()
        self.event_bus.emit(SCOPE_CHANGED, {"scope": scope, "previous_scope": previous})
        logger.info("Market scope changed from %s to %s", previous, scope)

    def set_prices_enabled(self, enabled: bool) -> None:
        if enabled == self._prices_enabled:
            return
        self._prices_enabled = enabled
        self.event_bus.emit(SETTINGS_CHANGED, self._settings_payload())

    def set_category_filters(self, categories: Optional[Mapping[str, bool]] = None, **changes: bool) -> bool:
        """Merge ``categories`` into the filters; return whether anything changed.

        Raises:
            ValueError: If a key is not a known category.
        """
        updates = dict(categories or {})
        updates.update(changes)
        unknown = set(updates) - set(CategoryFilterSettings.model_fields)
        if unknown:
            raise ValueError(f"Unknown price categories: {', '.join(sorted(unknown))}")
        merged = self._categories.model_copy(update={key: bool(value) for key, value in updates.items()})
        if merged == self._categories:
            return False
        self._categories = merged
        self.settings_store.set(STORAGE_KEY_CATEGORIES, merged.model_dump())
        self.event_bus.emit(SETTINGS_CHANGED, self._settings_payload())
        logger.debug("Price categories updated: %s", merged)
        return True

    def should_fetch_price(self, dye: Dye) -> bool:
        """Whether ``dye`` belongs to an enabled price category."""
        for field_name, acquisitions in PRICE_CATEGORY_ACQUISITIONS.items():
            if getattr(self._categories, field_name) and dye.acquisition in acquisitions:
                return True
        return self._categories.special_dyes and dye.category == SPECIAL_DYE_CATEGORY

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    @staticmethod
    def _report_progress(on_progress: Optional[ProgressCallback], current: int, total: int) -> None:
        if on_progress is None:
            return
        try:
            on_progress(current, total)
        except Exception:
            logger.exception("Progress callback raised")

    async def fetch_prices_for(
        self,
        dyes: Iterable[Dye],
        on_progress: Optional[ProgressCallback] = None,
    ) -> Dict[int, PriceRecord]:
        """Fetch prices for the eligible subset of ``dyes`` in the current scope.

        Returns the freshly resolved prices.  If the scope changes while the
        request is outstanding, the response is dropped and ``{}`` returned.
        Failures are reported through ``fetch-error`` and never raised.
        """
        epoch = self._epoch
        scope = self._region_scope
        to_fetch = [dye for dye in dyes if self._prices_enabled and self.should_fetch_price(dye)]
        total = len(to_fetch)
        if total == 0:
            self._report_progress(on_progress, 0, 0)
            return {}

        self._active_fetches += 1
        try:
            self.event_bus.emit(FETCH_STARTED, {"count": total})
            self._report_progress(on_progress, 0, total)
            try:
                fetched = await self.fetcher.fetch_prices_for_scope([dye.item_id for dye in to_fetch], scope)
            except Exception as exc:
                if epoch != self._epoch:
                    logger.debug("Dropping failure for abandoned scope %s: %s", scope, exc)
                    return {}
                reason = exc.reason if isinstance(exc, PriceFetchError) else str(exc) or type(exc).__name__
                self._report_progress(on_progress, total, total)
                self.event_bus.emit(FETCH_ERROR, {"reason": reason, "count": total})
                logger.error("Failed to fetch prices for %d dyes: %s", total, reason)
                return {}

            # No await between this check and the merge below.
            if epoch != self._epoch:
                logger.debug(
                    "Discarding stale price response for %s (epoch %d, current %d)", scope, epoch, self._epoch
                )
                return {}

            self._prices.update(fetched)
            self._report_progress(on_progress, total, total)
            self.event_bus.emit(PRICES_UPDATED, {"prices": dict(self._prices), "fetched_count": len(fetched)})
            self.event_bus.emit(FETCH_COMPLETED, {"count": len(fetched)})
            logger.info("Fetched prices for %d dyes", len(fetched))
            return fetched
        finally:
            self._active_fetches -= 1

    # ------------------------------------------------------------------
    # Cache maintenance
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        self._prices.clear()
        logger.info("Market board price cache cleared")

    async def refresh_prices(self) -> None:
        """Drop both the shared cache and the fetch service's TTL cache."""
        await self.fetcher.clear_cache()
        self._prices.clear()
        logger.info("Full price cache refresh (fetcher + shared)")

    def close(self) -> None:
        self.event_bus.clear()
        self._prices.clear()
        logger.info("MarketBoardService closed")
