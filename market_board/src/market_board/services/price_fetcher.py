"""
Price fetch service: the single owner of Universalis network access.

``PriceFetchService`` sits between callers and :class:`UniversalisClient`
and adds:

* a per-key TTL cache stored in a pluggable :class:`CacheBackend`, with
  schema version and checksum validation on every read;
* collapsing of concurrent requests for the same key onto one
  ``asyncio.Task`` (the in-flight registry);
* batch lookups that serve cached items locally and fetch the rest in a
  single comma-joined request;
* extraction of one representative price from the nested
  quality-tier/geographic-scope response.

Rate limiting, timeouts and retries happen inside the client, so every
outbound request made through this service shares one polite budget.

Failures never escape ``get_price`` or ``get_prices_for_scope``; they are
logged and the affected items are simply missing from the result.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..clients.universalis import UniversalisClient
from ..config import PriceApiSettings
from ..errors import PriceFetchError
from ..models import CacheEntry, PriceRecord
from .cache_backend import CacheBackend, InMemoryCacheBackend

logger = logging.getLogger(__name__)

# Extraction priority: normal quality before high quality, and within a
# tier data center before world before region.
QUALITY_TIERS = ("nq", "hq")
GEOGRAPHIC_SCOPES = ("dc", "world", "region")


def build_cache_key(item_id: int, region_scope: Optional[str] = None) -> str:
    if region_scope:
        return f"{item_id}_{region_scope}"
    return f"{item_id}_global"


def _positive_price(node: Any) -> Optional[float]:
    if not isinstance(node, Mapping):
        return None
    price = node.get("price")
    if isinstance(price, bool) or not isinstance(price, (int, float)):
        return None
    if not math.isfinite(price) or price <= 0:
        return None
    return float(price)


def extract_price(result: Mapping[str, Any]) -> Optional[float]:
    """Resolve the representative price of one aggregated result.

    Returns ``None`` when neither quality tier carries a usable listing
    price at any geographic scope.
    """
    for tier in QUALITY_TIERS:
        tier_data = result.get(tier)
        if not isinstance(tier_data, Mapping):
            continue
        min_listing = tier_data.get("minListing")
        if not isinstance(min_listing, Mapping):
            continue
        for scope in GEOGRAPHIC_SCOPES:
            price = _positive_price(min_listing.get(scope))
            if price is not None:
                return price
    return None


def parse_aggregated_response(
    data: Any,
    requested_ids: Iterable[int],
    region_scope: Optional[str] = None,
) -> Dict[int, PriceRecord]:
    """Map an aggregated document back onto the requested item ids.

    Results are matched on their ``itemId`` field, never on position.
    Results for items that were not requested are ignored.  A document
    without a ``results`` list resolves nothing.
    """
    wanted = set(requested_ids)
    records: Dict[int, PriceRecord] = {}
    if not isinstance(data, Mapping) or not isinstance(data.get("results"), list):
        logger.warning("Invalid aggregated response structure for scope %s", region_scope or "global")
        return records
    for result in data["results"]:
        if not isinstance(result, Mapping):
            continue
        item_id = result.get("itemId")
        if isinstance(item_id, bool) or not isinstance(item_id, int) or item_id not in wanted:
            continue
        price = extract_price(result)
        if price is None:
            logger.debug("No price data available for item %s", item_id)
            continue
        records[item_id] = PriceRecord.from_price(item_id, price, region_scope)
    return records


class PriceFetchService:
    """Cached, deduplicated access to Universalis prices."""

    def __init__(
        self,
        client: Optional[UniversalisClient] = None,
        cache: Optional[CacheBackend] = None,
        settings: Optional[PriceApiSettings] = None,
    ) -> None:
        """Initialise the service.

        Args:
            client: HTTP client used for every request.  Built from
                ``settings`` when omitted.
            cache: Cache backend; defaults to :class:`InMemoryCacheBackend`.
            settings: Configuration for TTL and schema version.  Falls back to
                the client's settings, then to defaults.
        """
        if settings is None:
            settings = client.settings if client is not None else PriceApiSettings()
        self.settings = settings
        self.client = client or UniversalisClient(settings)
        self.cache: CacheBackend = cache if cache is not None else InMemoryCacheBackend()
        self._in_flight: Dict[str, asyncio.Task] = {}

    async def close(self) -> None:
        await self.client.close()

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    async def _get_cached(self, cache_key: str) -> Optional[PriceRecord]:
        entry = await self.cache.get(cache_key)
        if entry is None:
            return None
        if entry.schema_version != self.settings.cache_version:
            await self.cache.delete(cache_key)
            return None
        if entry.is_expired():
            await self.cache.delete(cache_key)
            return None
        if not entry.is_intact():
            logger.warning("Cache corruption detected for key: %s", cache_key)
            await self.cache.delete(cache_key)
            return None
        return entry.data

    async def _set_cached(self, cache_key: str, record: PriceRecord) -> None:
        entry = CacheEntry.wrap(
            record,
            ttl_ms=self.settings.cache_ttl_ms,
            schema_version=self.settings.cache_version,
        )
        await self.cache.set(cache_key, entry)

    async def clear_cache(self) -> None:
        await self.cache.clear()
        logger.info("Price cache cleared")

    async def get_cache_stats(self) -> Dict[str, Any]:
        keys = await self.cache.keys()
        return {"size": len(keys), "keys": keys}

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    # ------------------------------------------------------------------
    # Single item lookups
    # ------------------------------------------------------------------

    async def get_price(self, item_id: int, region_scope: Optional[str] = None) -> Optional[PriceRecord]:
        """Return the price of one item, or ``None`` if it cannot be resolved.

        Cache hits return without network access.  Concurrent calls for the
        same key share one in-flight request.  Errors are logged, not raised.
        """
        cache_key = build_cache_key(item_id, region_scope)
        try:
            cached = await self._get_cached(cache_key)
            if cached is not None:
                logger.debug("Price cache hit for item %s", item_id)
                return cached

            pending = self._in_flight.get(cache_key)
            if pending is not None:
                logger.debug("Using pending request for item %s", item_id)
                return await asyncio.shield(pending)

            task = asyncio.create_task(self._fetch_and_store(cache_key, item_id, region_scope))
            self._in_flight[cache_key] = task
            return await asyncio.shield(task)
        except PriceFetchError as exc:
            logger.error("Failed to fetch price data for item %s: %s", item_id, exc.reason)
            return None
        except Exception:
            logger.exception("Unexpected error fetching price data for item %s", item_id)
            return None

    async def _fetch_and_store(
        self, cache_key: str, item_id: int, region_scope: Optional[str]
    ) -> Optional[PriceRecord]:
        try:
            data = await self.client.fetch_aggregated([item_id], region_scope)
            record = self._parse_single(data, item_id, region_scope)
            if record is not None:
                await self._set_cached(cache_key, record)
            return record
        finally:
            if self._in_flight.get(cache_key) is asyncio.current_task():
                self._in_flight.pop(cache_key, None)

    @staticmethod
    def _parse_single(data: Any, item_id: int, region_scope: Optional[str]) -> Optional[PriceRecord]:
        if not isinstance(data, Mapping):
            logger.warning("Invalid API response structure for item %s", item_id)
            return None
        results = data.get("results")
        if not isinstance(results, list) or not results:
            logger.warning("No price data available for item %s", item_id)
            return None
        result = results[0]
        if not isinstance(result, Mapping):
            logger.warning("Invalid result structure for item %s", item_id)
            return None
        if result.get("itemId") != item_id:
            logger.warning("Item ID mismatch: expected %s, got %s", item_id, result.get("itemId"))
            return None
        price = extract_price(result)
        if price is None:
            logger.info("No price data available for item %s", item_id)
            return None
        return PriceRecord.from_price(item_id, price, region_scope)

    async def get_prices_for_items(
        self, item_ids: Iterable[int], region_scope: Optional[str] = None
    ) -> Dict[int, PriceRecord]:
        """Look items up one at a time through :meth:`get_price`."""
        results: Dict[int, PriceRecord] = {}
        for item_id in item_ids:
            record = await self.get_price(item_id, region_scope)
            if record is not None:
                results[item_id] = record
        return results

    # ------------------------------------------------------------------
    # Batch lookups
    # ------------------------------------------------------------------

    async def get_prices_for_scope(self, item_ids: Iterable[int], region_scope: str) -> Dict[int, PriceRecord]:
        """Batch lookup that never raises; a failed request resolves no new items."""
        try:
            return await self.fetch_prices_for_scope(item_ids, region_scope, raise_on_error=False)
        except Exception:
            logger.exception("Unexpected error in batch price lookup for %s", region_scope)
            return {}

    async def fetch_prices_for_scope(
        self,
        item_ids: Iterable[int],
        region_scope: str,
        *,
        raise_on_error: bool = True,
    ) -> Dict[int, PriceRecord]:
        """Serve cached items locally and fetch the rest in one request.

        With ``raise_on_error`` the :class:`PriceFetchError` of a failed
        batch request propagates, so callers that report failures can do
        so.  Otherwise it is logged and the cached subset is returned.
        """
        unique_ids: List[int] = list(dict.fromkeys(item_ids))
        results: Dict[int, PriceRecord] = {}
        if not unique_ids:
            return results

        missing: List[int] = []
        for item_id in unique_ids:
            cached = await self._get_cached(build_cache_key(item_id, region_scope))
            if cached is not None:
                results[item_id] = cached
            else:
                missing.append(item_id)

        # No await between this registry check and registering the batch keys.
        uncached: List[int] = []
        pending: Dict[int, asyncio.Task] = {}
        for item_id in missing:
            task = self._in_flight.get(build_cache_key(item_id, region_scope))
            if task is not None:
                pending[item_id] = task
            else:
                uncached.append(item_id)

        if not missing:
            logger.debug("All %d prices served from cache for %s", len(results), region_scope)
            return results

        error: Optional[PriceFetchError] = None
        if uncached:
            batch = asyncio.create_task(self._fetch_batch(uncached, region_scope))
            handles = []
            for item_id in uncached:
                cache_key = build_cache_key(item_id, region_scope)
                handle = asyncio.create_task(self._resolve_from_batch(batch, cache_key, item_id))
                self._in_flight[cache_key] = handle
                handles.append(handle)
            try:
                results.update(await asyncio.shield(batch))
            except PriceFetchError as exc:
                logger.error("Failed to fetch batch price data for %s: %s", region_scope, exc.reason)
                error = exc
            finally:
                await asyncio.gather(*handles, return_exceptions=True)

        for item_id, task in pending.items():
            try:
                record = await asyncio.shield(task)
            except PriceFetchError as exc:
                logger.debug("Pending request for item %s failed: %s", item_id, exc.reason)
                continue
            if record is not None:
                results[item_id] = record

        if error is not None and raise_on_error:
            raise error
        return results

    async def _fetch_batch(self, item_ids: List[int], region_scope: Optional[str]) -> Dict[int, PriceRecord]:
        data = await self.client.fetch_aggregated(item_ids, region_scope)
        fetched = parse_aggregated_response(data, item_ids, region_scope)
        for item_id, record in fetched.items():
            await self._set_cached(build_cache_key(item_id, region_scope), record)
        logger.info("Batch fetched prices for %d/%d items", len(fetched), len(item_ids))
        return fetched

    async def _resolve_from_batch(
        self, batch: asyncio.Task, cache_key: str, item_id: int
    ) -> Optional[PriceRecord]:
        # Registry handle for one key of a shared batch request.
        try:
            return (await asyncio.shield(batch)).get(item_id)
        except PriceFetchError:
            # Reported by the batch owner.
            return None
        finally:
            if self._in_flight.get(cache_key) is asyncio.current_task():
                self._in_flight.pop(cache_key, None)

    # ------------------------------------------------------------------
    # Health checks
    # ------------------------------------------------------------------

    async def get_api_status(self) -> Dict[str, Any]:
        return await self.client.get_status()

    async def is_api_available(self) -> bool:
        status = await self.get_api_status()
        return bool(status["available"])
