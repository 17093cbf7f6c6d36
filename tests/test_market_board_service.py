"""Tests for the MarketBoardService coordinator.

The coordinator runs on top of a real PriceFetchService backed by the
fake Universalis client.  Tests hold the fake's response open with an
``asyncio.Event`` to change scope while a fetch is in flight.
"""

from __future__ import annotations

import asyncio
from typing import List, Tuple

import pytest

from market_board.config import PriceApiSettings
from market_board.errors import HttpStatusError
from market_board.models import CategoryFilterSettings, Dye
from market_board.services.cache_backend import InMemoryCacheBackend
from market_board.services.market_board_service import STORAGE_KEY_CATEGORIES, MarketBoardService
from market_board.services.price_fetcher import PriceFetchService
from market_board.services.settings_store import InMemorySettingsStore
from tests.helpers.fake_bus import EventRecorder
from tests.helpers.fake_client import FakeUniversalisClient

ALLIED = Dye(item_id=5729, name="Snow White Dye", acquisition="Ixali Vendor", category="Neutral")
COSMIC = Dye(item_id=30116, name="Pure White Dye", acquisition="Cosmic Fortunes", category="Neutral")
SPECIAL = Dye(item_id=13114, name="Pastel Pink Dye", acquisition="Event", category="Special")
VENDOR = Dye(item_id=5730, name="Ash Grey Dye", acquisition="Dye Vendor", category="Neutral")
CRAFTED = Dye(item_id=5740, name="Rolanberry Red Dye", acquisition="Crafting", category="Red")
QUEST = Dye(item_id=5800, name="Quest Dye", acquisition="Quest", category="Red")


def make_board(prices=None, *, store=None, enabled=True):
    client = FakeUniversalisClient(prices, settings=PriceApiSettings(retry_delay_ms=0, rate_limit_delay_ms=0))
    fetcher = PriceFetchService(client, InMemoryCacheBackend())
    board = MarketBoardService(fetcher, store or InMemorySettingsStore(), prices_enabled=enabled)
    return board, client


@pytest.mark.asyncio
async def test_fetch_merges_and_broadcasts() -> None:
    board, client = make_board({ALLIED.item_id: 120, COSMIC.item_id: 340})
    recorder = EventRecorder(board)
    progress: List[Tuple[int, int]] = []

    prices = await board.fetch_prices_for([ALLIED, COSMIC], lambda cur, tot: progress.append((cur, tot)))

    assert set(prices) == {ALLIED.item_id, COSMIC.item_id}
    assert board.get_cached_price(ALLIED.item_id).current_min_price == 120
    assert set(board.get_all_cached_prices()) == {ALLIED.item_id, COSMIC.item_id}
    assert client.calls == [([ALLIED.item_id, COSMIC.item_id], "Crystal")]
    assert recorder.types() == ["fetch-started", "prices-updated", "fetch-completed"]
    assert recorder.of_type("fetch-started") == [{"count": 2}]
    assert recorder.of_type("prices-updated")[0]["fetched_count"] == 2
    assert recorder.of_type("fetch-completed") == [{"count": 2}]
    assert progress == [(0, 2), (2, 2)]
    assert not board.is_fetching


@pytest.mark.asyncio
async def test_scope_change_during_fetch_discards_response() -> None:
    board, client = make_board({ALLIED.item_id: 120})
    recorder = EventRecorder(board)
    client.gate = asyncio.Event()

    pending = asyncio.create_task(board.fetch_prices_for([ALLIED]))
    await client.started.wait()
    assert board.is_fetching
    board.set_region_scope("Aether")
    client.gate.set()

    assert await pending == {}
    assert board.get_all_cached_prices() == {}
    assert "prices-updated" not in recorder.types()
    assert "fetch-completed" not in recorder.types()
    assert recorder.of_type("scope-changed") == [{"scope": "Aether", "previous_scope": "Crystal"}]


@pytest.mark.asyncio
async def test_failure_for_abandoned_scope_is_silent() -> None:
    board, client = make_board()
    recorder = EventRecorder(board)
    client.gate = asyncio.Event()
    client.error = HttpStatusError(503)

    pending = asyncio.create_task(board.fetch_prices_for([ALLIED]))
    await client.started.wait()
    board.set_region_scope("Light")
    client.gate.set()

    assert await pending == {}
    assert recorder.of_type("fetch-error") == []


@pytest.mark.asyncio
async def test_fetch_failure_emits_error_event() -> None:
    board, client = make_board()
    recorder = EventRecorder(board)
    client.error = HttpStatusError(503)
    progress: List[Tuple[int, int]] = []

    assert await board.fetch_prices_for([ALLIED, COSMIC], lambda cur, tot: progress.append((cur, tot))) == {}
    assert recorder.of_type("fetch-error") == [{"reason": "HTTP 503", "count": 2}]
    assert progress == [(0, 2), (2, 2)]
    assert not board.is_fetching


@pytest.mark.asyncio
async def test_scope_change_clears_cache_and_bumps_epoch() -> None:
    board, _ = make_board({ALLIED.item_id: 120})
    await board.fetch_prices_for([ALLIED])
    epoch = board.epoch
    board.set_region_scope("Crystal")
    assert board.epoch == epoch
    assert board.get_cached_price(ALLIED.item_id) is not None

    board.set_region_scope("Primal")
    assert board.epoch == epoch + 1
    assert board.region_scope == "Primal"
    assert board.get_all_cached_prices() == {}


@pytest.mark.asyncio
async def test_new_scope_fetch_uses_new_scope() -> None:
    board, client = make_board({ALLIED.item_id: 120})
    board.set_region_scope("Chaos")
    await board.fetch_prices_for([ALLIED])
    assert client.calls == [([ALLIED.item_id], "Chaos")]
    assert board.get_world_name_for_price(board.get_cached_price(ALLIED.item_id)) == "Chaos"


@pytest.mark.asyncio
async def test_disabled_prices_skip_network() -> None:
    board, client = make_board({ALLIED.item_id: 120}, enabled=False)
    recorder = EventRecorder(board)
    progress: List[Tuple[int, int]] = []
    assert await board.fetch_prices_for([ALLIED], lambda cur, tot: progress.append((cur, tot))) == {}
    assert client.calls == []
    assert progress == [(0, 0)]
    assert recorder.events == []


@pytest.mark.asyncio
async def test_only_eligible_dyes_are_requested() -> None:
    board, client = make_board({ALLIED.item_id: 1, QUEST.item_id: 2, VENDOR.item_id: 3})
    await board.fetch_prices_for([ALLIED, QUEST, VENDOR])
    assert client.calls == [([ALLIED.item_id], "Crystal")]


def test_category_rules() -> None:
    board, _ = make_board()
    assert board.should_fetch_price(ALLIED)
    assert board.should_fetch_price(COSMIC)
    assert board.should_fetch_price(SPECIAL)
    assert not board.should_fetch_price(VENDOR)
    assert not board.should_fetch_price(CRAFTED)
    assert not board.should_fetch_price(QUEST)

    board.set_category_filters(base_dyes=True, craft_dyes=True, special_dyes=False)
    assert board.should_fetch_price(VENDOR)
    assert board.should_fetch_price(CRAFTED)
    assert not board.should_fetch_price(SPECIAL)


def test_category_filters_emit_only_on_change_and_persist() -> None:
    store = InMemorySettingsStore()
    board, _ = make_board(store=store)
    recorder = EventRecorder(board)

    assert board.set_category_filters({"cosmic_dyes": True}) is False
    assert recorder.events == []

    assert board.set_category_filters({"cosmic_dyes": False}) is True
    events = recorder.of_type("settings-changed")
    assert len(events) == 1
    assert events[0]["enabled"] is True
    assert events[0]["categories"].cosmic_dyes is False
    assert store.get(STORAGE_KEY_CATEGORIES)["cosmic_dyes"] is False

    reloaded, _ = make_board(store=store)
    assert reloaded.category_filters.cosmic_dyes is False


def test_unknown_category_is_rejected() -> None:
    board, _ = make_board()
    with pytest.raises(ValueError):
        board.set_category_filters({"glamour_dyes": True})


def test_invalid_stored_categories_fall_back_to_defaults() -> None:
    store = InMemorySettingsStore({STORAGE_KEY_CATEGORIES: {"base_dyes": "definitely"}})
    board, _ = make_board(store=store)
    assert board.category_filters == CategoryFilterSettings()


def test_prices_enabled_toggle_emits_settings_changed() -> None:
    board, _ = make_board(enabled=False)
    recorder = EventRecorder(board)
    board.set_prices_enabled(False)
    board.set_prices_enabled(True)
    assert recorder.types() == ["settings-changed"]
    assert recorder.of_type("settings-changed")[0]["enabled"] is True


@pytest.mark.asyncio
async def test_throwing_subscriber_does_not_block_others() -> None:
    board, _ = make_board({ALLIED.item_id: 120})
    delivered: List[str] = []

    def broken(_event):
        raise RuntimeError("widget exploded")

    board.subscribe("prices-updated", lambda _e: delivered.append("first"))
    board.subscribe("prices-updated", broken)
    board.subscribe("prices-updated", lambda _e: delivered.append("third"))

    await board.fetch_prices_for([ALLIED])
    assert delivered == ["first", "third"]


@pytest.mark.asyncio
async def test_event_stream_yields_broadcasts() -> None:
    board, _ = make_board()
    stream = board.events("scope-changed")
    assert board.event_bus.subscriber_count("scope-changed") == 1
    board.set_region_scope("Dynamis")
    board.set_region_scope("Light")
    first = await asyncio.wait_for(stream.__anext__(), timeout=1)
    second = await asyncio.wait_for(stream.__anext__(), timeout=1)
    assert first == {"scope": "Dynamis", "previous_scope": "Crystal"}
    assert second == {"scope": "Light", "previous_scope": "Dynamis"}
    await stream.aclose()
    assert board.event_bus.subscriber_count("scope-changed") == 0


@pytest.mark.asyncio
async def test_closed_event_stream_stops_iteration() -> None:
    board, _ = make_board()
    received = []
    async with board.events("scope-changed") as stream:
        board.set_region_scope("Chaos")
        async for event in stream:
            received.append(event["scope"])
            await stream.aclose()
    board.set_region_scope("Light")
    assert received == ["Chaos"]
    assert board.event_bus.subscriber_count("scope-changed") == 0


@pytest.mark.asyncio
async def test_refresh_prices_clears_both_caches() -> None:
    board, client = make_board({ALLIED.item_id: 120})
    await board.fetch_prices_for([ALLIED])
    await board.refresh_prices()
    assert board.get_all_cached_prices() == {}
    await board.fetch_prices_for([ALLIED])
    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_close_drops_subscribers_and_prices() -> None:
    board, _ = make_board({ALLIED.item_id: 120})
    recorder = EventRecorder(board)
    await board.fetch_prices_for([ALLIED])
    board.close()
    assert board.get_all_cached_prices() == {}
    count = len(recorder.events)
    board.set_region_scope("Materia")
    assert len(recorder.events) == count
