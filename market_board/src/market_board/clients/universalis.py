"""
HTTP client for the Universalis aggregated price API.

This module defines a small asynchronous client that issues read-only
``GET`` requests against ``/aggregated/{scope}/{ids}`` and validates the
responses before handing the decoded JSON back.  Every attempt is
spaced by the shared :class:`MinIntervalRateLimiter`, bounded by a
per-call timeout, and wrapped in a fixed-delay retry loop that only
retries transport failures.

Validation rules, in order:

* non-2xx status → :class:`HttpStatusError` (retried)
* content-type other than ``application/json`` → :class:`InvalidContentTypeError`
* ``Content-Length`` or streamed body above the size cap → :class:`ResponseTooLargeError`
* body that fails to decode → :class:`InvalidJsonError`
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Dict, Iterable, Optional

import aiohttp
from aiohttp import ClientResponse
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from ..config import GLOBAL_REGION_SCOPE, PriceApiSettings
from ..errors import (
    HttpStatusError,
    InvalidContentTypeError,
    InvalidJsonError,
    RequestTimeoutError,
    ResponseTooLargeError,
    TransientNetworkError,
)
from .rate_limiter import MinIntervalRateLimiter

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


def _reject_constant(token: str) -> Any:
    raise ValueError(f"non-standard JSON constant {token}")


class UniversalisClient:
    """Asynchronous Universalis REST client with validation and retries."""

    def __init__(
        self,
        settings: Optional[PriceApiSettings] = None,
        *,
        rate_limiter: Optional[MinIntervalRateLimiter] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        """Construct the client.

        Args:
            settings: API configuration; defaults to ``PriceApiSettings()``.
            rate_limiter: Limiter shared by every request this client makes.
                A new one is built from ``settings.rate_limit_delay_ms`` when
                omitted.
            session: Optional externally managed aiohttp session.  When not
                supplied the client opens its own on first use and closes it
                in :meth:`close`.
        """
        self.settings = settings or PriceApiSettings()
        self.base_url = self.settings.api_base.rstrip("/")
        self.rate_limiter = rate_limiter or MinIntervalRateLimiter(self.settings.rate_limit_delay_ms / 1000.0)
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=self.settings.timeout_ms / 1000.0)

    async def __aenter__(self) -> "UniversalisClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def build_aggregated_url(self, item_ids: Iterable[int], region_scope: Optional[str] = None) -> str:
        """Build ``{base}/aggregated/{scope}/{id1,id2,...}``."""
        scope = region_scope or GLOBAL_REGION_SCOPE
        ids = ",".join(str(int(item_id)) for item_id in item_ids)
        return f"{self.base_url}/aggregated/{scope}/{ids}"

    async def fetch_aggregated(self, item_ids: Iterable[int], region_scope: Optional[str] = None) -> Any:
        """Fetch and decode the aggregated document for ``item_ids``."""
        return await self.get_json(self.build_aggregated_url(item_ids, region_scope))

    async def get_json(self, url: str) -> Any:
        """GET ``url`` with retries; raise a :class:`PriceFetchError` on final failure."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.retry_count),
            wait=wait_fixed(self.settings.retry_delay_ms / 1000.0),
            retry=retry_if_exception_type(TransientNetworkError),
            before_sleep=self._log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._request_once(url)

    @staticmethod
    def _log_retry(retry_state: Any) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning("Price request attempt %d failed: %s", retry_state.attempt_number, exc)

    async def _request_once(self, url: str) -> Any:
        await self.rate_limiter.acquire()
        session = self._get_session()
        try:
            async with session.get(url, timeout=self._timeout, headers={"Accept": "application/json"}) as resp:
                self._check_status(resp, url)
                self._check_content_type(resp, url)
                body = await self._read_limited(resp, url)
        except asyncio.TimeoutError as exc:
            raise RequestTimeoutError(f"Request timed out after {self.settings.timeout_ms} ms", url=url) from exc
        except aiohttp.ClientError as exc:
            raise TransientNetworkError(f"Connection error: {exc}", url=url) from exc
        try:
            return json.loads(body, parse_constant=_reject_constant)
        except ValueError as exc:
            raise InvalidJsonError(f"Invalid JSON response: {exc}", url=url) from exc

    @staticmethod
    def _check_status(resp: ClientResponse, url: str) -> None:
        if not 200 <= resp.status < 300:
            logger.error("Universalis API error %s for %s", resp.status, url)
            raise HttpStatusError(resp.status, url=url)

    @staticmethod
    def _check_content_type(resp: ClientResponse, url: str) -> None:
        content_type = resp.headers.get("Content-Type", "")
        if "application/json" not in content_type.lower():
            raise InvalidContentTypeError(
                f"Invalid content type: expected application/json, got {content_type or 'none'}",
                url=url,
            )

    async def _read_limited(self, resp: ClientResponse, url: str) -> bytes:
        limit = self.settings.max_response_size
        declared = resp.headers.get("Content-Length")
        if declared is not None:
            try:
                size = int(declared)
            except ValueError:
                size = -1
            if size > limit:
                raise ResponseTooLargeError(size, limit, url=url)
        chunks = []
        total = 0
        async for chunk in resp.content.iter_chunked(_CHUNK_SIZE):
            total += len(chunk)
            if total > limit:
                raise ResponseTooLargeError(total, limit, url=url)
            chunks.append(chunk)
        return b"".join(chunks)

    async def get_status(self) -> Dict[str, Any]:
        """Probe ``/data-centers`` and report availability and latency in ms."""
        start = time.monotonic()
        try:
            session = self._get_session()
            async with session.get(f"{self.base_url}/data-centers", timeout=self._timeout) as resp:
                available = 200 <= resp.status < 300
        except (asyncio.TimeoutError, aiohttp.ClientError) as exc:
            logger.warning("Universalis health check failed: %s", exc)
            return {"available": False, "latency_ms": -1}
        latency_ms = int((time.monotonic() - start) * 1000)
        return {"available": available, "latency_ms": latency_ms}
