"""Tests for the ``market-board`` command line entry point."""

from __future__ import annotations

import pytest

import market_board.__main__ as cli_main
from market_board.services.cache_backend import InMemoryCacheBackend


class ClosingBackend(InMemoryCacheBackend):
    def __init__(self) -> None:
        super().__init__()
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class StubFetcher:
    def __init__(self, cache=None, settings=None) -> None:
        self.cache = cache
        self.closed = False

    async def get_api_status(self):
        return {"available": True, "latency_ms": 5}

    async def close(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_health_closes_fetcher_and_cache_backend(monkeypatch, capsys) -> None:
    backend = ClosingBackend()
    fetchers = []

    def make_fetcher(**kwargs):
        fetcher = StubFetcher(**kwargs)
        fetchers.append(fetcher)
        return fetcher

    monkeypatch.setattr(cli_main, "build_cache_backend", lambda settings: backend)
    monkeypatch.setattr(cli_main, "PriceFetchService", make_fetcher)

    assert await cli_main.main(["health"]) == 0
    assert "available (5 ms)" in capsys.readouterr().out
    assert fetchers[0].cache is backend
    assert fetchers[0].closed
    assert backend.closed


@pytest.mark.asyncio
async def test_backend_without_close_is_tolerated(monkeypatch) -> None:
    monkeypatch.setattr(cli_main, "build_cache_backend", lambda settings: InMemoryCacheBackend())
    monkeypatch.setattr(cli_main, "PriceFetchService", StubFetcher)
    assert await cli_main.main(["health"]) == 0
