"""Formatting and card-assembly helpers for displaying dye prices.

Everything here is a pure function over price records; no I/O and no
state.  ``prepare_price_card_data`` reads from a
:class:`MarketBoardService` but does not modify it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, List, Literal, Mapping, Optional, TypedDict

from ..models import Dye, PriceRecord

if TYPE_CHECKING:
    from .market_board_service import MarketBoardService

TREND_THRESHOLD = 0.05


class PriceCardData(TypedDict):
    market_server: Optional[str]
    price: Optional[int]
    show_price: bool


class PriceTrend(TypedDict):
    trend: Literal["up", "down", "stable"]
    change: float
    change_percent: float


def format_price(price: float) -> str:
    """Format as whole gil with a ``G`` suffix, e.g. ``69,420G``."""
    return f"{int(round(price)):,}G"


def format_price_with_suffix(price: float, suffix: str = " gil") -> str:
    return f"{int(round(price)):,}{suffix}"


def get_price_trend(current_price: float, previous_price: float) -> PriceTrend:
    """Classify a price move as up, down or stable (moves within 5% are stable)."""
    change = current_price - previous_price
    change_percent = 0.0 if previous_price == 0 else change / previous_price * 100
    if change > previous_price * TREND_THRESHOLD:
        trend: Literal["up", "down", "stable"] = "up"
    elif change < -previous_price * TREND_THRESHOLD:
        trend = "down"
    else:
        trend = "stable"
    return {"trend": trend, "change": change, "change_percent": round(change_percent, 2)}


def get_price_info(dye: Dye, price_data: Mapping[int, PriceRecord]) -> Optional[PriceRecord]:
    return price_data.get(dye.item_id)


def get_dye_price_display(
    dye: Dye,
    price_data: Mapping[int, PriceRecord],
    *,
    show_prices: bool,
    suffix: str = " gil",
    use_locale: bool = True,
) -> Optional[str]:
    """Display string for a dye's price, or ``None`` when hidden or unknown."""
    if not show_prices:
        return None
    record = price_data.get(dye.item_id)
    if record is None or not record.current_min_price:
        return None
    if not use_locale:
        return f"{record.current_min_price}{suffix}"
    return format_price_with_suffix(record.current_min_price, suffix)


def prepare_price_card_data(dye: Dye, service: "MarketBoardService") -> PriceCardData:
    record = service.get_cached_price(dye.item_id)
    return {
        "market_server": service.get_world_name_for_price(record),
        "price": record.current_min_price if record is not None else None,
        "show_price": service.prices_enabled,
    }


def prepare_price_card_data_from_map(
    dye: Dye,
    price_data: Mapping[int, PriceRecord],
    show_prices: bool,
    server_name: Optional[str] = None,
) -> PriceCardData:
    record = price_data.get(dye.item_id)
    return {
        "market_server": server_name,
        "price": record.current_min_price if record is not None else None,
        "show_price": show_prices,
    }


def get_item_ids_for_price_fetch(dyes: Iterable[Dye], service: "MarketBoardService") -> List[int]:
    return [dye.item_id for dye in dyes if service.should_fetch_price(dye)]


def has_cached_prices(dyes: Iterable[Dye], price_data: Mapping[int, PriceRecord]) -> bool:
    return any(dye.item_id in price_data for dye in dyes)
