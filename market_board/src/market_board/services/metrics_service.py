"""
Metrics Service
===============

Exposes market board activity as Prometheus metrics.  The service
subscribes to the events broadcast by :class:`MarketBoardService` and
updates its collectors as they arrive; it holds no other state.

Metrics
-------

* ``market_board_fetches_total`` – batch fetches started.
* ``market_board_fetch_errors_total`` – batch fetches that failed after retries.
* ``market_board_prices_fetched_total`` – prices resolved by completed fetches.
* ``market_board_scope_changes_total`` – region scope switches.
* ``market_board_cached_prices`` – prices currently held in the shared cache.

Configuration
-------------

``PROMETHEUS_PORT``
    When set, :func:`start_metrics_server` exposes the default registry
    over HTTP on this port.  Unset means no HTTP endpoint.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, List, Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, start_http_server

from ..models_events import FETCH_COMPLETED, FETCH_ERROR, FETCH_STARTED, PRICES_UPDATED, SCOPE_CHANGED
from .market_board_service import MarketBoardService

logger = logging.getLogger(__name__)


class MetricsService:
    """Translate market board events into Prometheus counters and gauges."""

    def __init__(self, service: MarketBoardService, registry: Optional[CollectorRegistry] = None) -> None:
        self.service = service
        registry = registry if registry is not None else REGISTRY
        self.fetches = Counter(
            "market_board_fetches_total",
            "Batch price fetches started",
            registry=registry,
        )
        self.fetch_errors = Counter(
            "market_board_fetch_errors_total",
            "Batch price fetches that failed after retries",
            registry=registry,
        )
        self.prices_fetched = Counter(
            "market_board_prices_fetched_total",
            "Prices resolved by completed fetches",
            registry=registry,
        )
        self.scope_changes = Counter(
            "market_board_scope_changes_total",
            "Region scope changes",
            registry=registry,
        )
        self.cached_prices = Gauge(
            "market_board_cached_prices",
            "Prices currently held in the shared cache",
            registry=registry,
        )
        self._unsubscribers: List[Callable[[], None]] = [
            service.subscribe(FETCH_STARTED, self._on_fetch_started),
            service.subscribe(FETCH_COMPLETED, self._on_fetch_completed),
            service.subscribe(FETCH_ERROR, self._on_fetch_error),
            service.subscribe(PRICES_UPDATED, self._on_prices_updated),
            service.subscribe(SCOPE_CHANGED, self._on_scope_changed),
        ]

    def _on_fetch_started(self, _event: Any) -> None:
        self.fetches.inc()

    def _on_fetch_completed(self, event: Any) -> None:
        self.prices_fetched.inc(int(event.get("count", 0)))

    def _on_fetch_error(self, _event: Any) -> None:
        self.fetch_errors.inc()

    def _on_prices_updated(self, event: Any) -> None:
        self.cached_prices.set(len(event.get("prices") or {}))

    def _on_scope_changed(self, _event: Any) -> None:
        self.scope_changes.inc()
        self.cached_prices.set(0)

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()


def start_metrics_server(port: Optional[int] = None) -> bool:
    """Start the Prometheus HTTP endpoint; return whether one is running."""
    if port is None:
        raw = os.environ.get("PROMETHEUS_PORT")
        if not raw:
            return False
        port = int(raw)
    try:
        start_http_server(port)
    except OSError as exc:
        # Likely already started by another component
        logger.debug("Prometheus server likely already running: %s", exc)
    return True
