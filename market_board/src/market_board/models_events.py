"""Event schema definitions for the market board service.

Every event broadcast by :class:`~market_board.services.market_board_service.MarketBoardService`
has a typed payload defined here.  The structures are
:class:`typing.TypedDict` so subscribers receive plain dictionaries
without any runtime dependency on this module.
"""

from __future__ import annotations

from typing import Dict, TypedDict

from .models import CategoryFilterSettings, PriceRecord

PRICES_UPDATED = "prices-updated"
SCOPE_CHANGED = "scope-changed"
SETTINGS_CHANGED = "settings-changed"
FETCH_STARTED = "fetch-started"
FETCH_COMPLETED = "fetch-completed"
FETCH_ERROR = "fetch-error"

EVENT_TYPES = (
    PRICES_UPDATED,
    SCOPE_CHANGED,
    SETTINGS_CHANGED,
    FETCH_STARTED,
    FETCH_COMPLETED,
    FETCH_ERROR,
)


class PricesUpdatedEvent(TypedDict):
    """Snapshot of the shared cache after a merge.

    * ``prices``: every cached price, keyed by item id.
    * ``fetched_count``: how many prices the triggering fetch resolved.
    """

    prices: Dict[int, PriceRecord]
    fetched_count: int


class ScopeChangedEvent(TypedDict):
    scope: str
    previous_scope: str


class SettingsChangedEvent(TypedDict):
    enabled: bool
    categories: CategoryFilterSettings


class FetchStartedEvent(TypedDict):
    count: int


class FetchCompletedEvent(TypedDict):
    count: int


class FetchErrorEvent(TypedDict):
    """A fetch failed after retries.

    * ``reason``: human readable failure description.
    * ``count``: number of items the failed fetch covered.
    """

    reason: str
    count: int
