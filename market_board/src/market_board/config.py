"""
Runtime configuration for the price fetch layer.

All tunables are plain constants supplied by the embedding application.
They are collected into a :class:`PriceApiSettings` model so that the
fetch service, the cache backends and the CLI share one validated view
of them.  ``PriceApiSettings.from_env()`` reads the following
environment variables, falling back to the defaults below:

``UNIVERSALIS_API_BASE``
    Base URL of the Universalis v2 API.

``UNIVERSALIS_API_TIMEOUT_MS`` / ``UNIVERSALIS_API_RETRY_COUNT`` /
``UNIVERSALIS_API_RETRY_DELAY_MS``
    Per-call timeout, number of attempts and fixed delay between them.

``API_CACHE_TTL_MS`` / ``API_CACHE_VERSION``
    Lifetime of a cached price and the schema tag written with it.
    Bumping the version invalidates every stored entry.

``API_RATE_LIMIT_DELAY_MS``
    Minimum spacing between the start of two outbound requests.

``API_MAX_RESPONSE_SIZE``
    Hard cap on response bodies, in bytes.

``PRICE_CACHE_BACKEND`` / ``PRICE_CACHE_PATH`` / ``REDIS_HOST`` /
``REDIS_PORT``
    Which cache backend to build (``memory``, ``file`` or ``redis``) and
    where it lives.
"""

from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, Field

UNIVERSALIS_API_BASE = "https://universalis.app/api/v2"
UNIVERSALIS_API_TIMEOUT_MS = 5000
UNIVERSALIS_API_RETRY_COUNT = 3
UNIVERSALIS_API_RETRY_DELAY_MS = 1000

API_CACHE_TTL_MS = 5 * 60 * 1000
API_CACHE_VERSION = "1.0.0"
API_MAX_RESPONSE_SIZE = 1024 * 1024
API_RATE_LIMIT_DELAY_MS = 200

DEFAULT_REGION_SCOPE = "Crystal"
GLOBAL_REGION_SCOPE = "universal"


class PriceApiSettings(BaseModel):
    """Validated configuration for :class:`PriceFetchService`."""

    api_base: str = Field(UNIVERSALIS_API_BASE, description="Universalis API root")
    timeout_ms: int = Field(UNIVERSALIS_API_TIMEOUT_MS, gt=0)
    retry_count: int = Field(UNIVERSALIS_API_RETRY_COUNT, ge=1, description="Total attempts per call")
    retry_delay_ms: int = Field(UNIVERSALIS_API_RETRY_DELAY_MS, ge=0)
    cache_ttl_ms: int = Field(API_CACHE_TTL_MS, gt=0)
    cache_version: str = API_CACHE_VERSION
    max_response_size: int = Field(API_MAX_RESPONSE_SIZE, gt=0)
    rate_limit_delay_ms: int = Field(API_RATE_LIMIT_DELAY_MS, ge=0)
    cache_backend: Literal["memory", "file", "redis"] = "memory"
    cache_path: str = "price_cache.json"
    redis_host: str = "localhost"
    redis_port: int = 6379

    @classmethod
    def from_env(cls) -> "PriceApiSettings":
        """Build settings from environment variables, keeping defaults for unset keys."""
        env_map = {
            "api_base": "UNIVERSALIS_API_BASE",
            "timeout_ms": "UNIVERSALIS_API_TIMEOUT_MS",
            "retry_count": "UNIVERSALIS_API_RETRY_COUNT",
            "retry_delay_ms": "UNIVERSALIS_API_RETRY_DELAY_MS",
            "cache_ttl_ms": "API_CACHE_TTL_MS",
            "cache_version": "API_CACHE_VERSION",
            "max_response_size": "API_MAX_RESPONSE_SIZE",
            "rate_limit_delay_ms": "API_RATE_LIMIT_DELAY_MS",
            "cache_backend": "PRICE_CACHE_BACKEND",
            "cache_path": "PRICE_CACHE_PATH",
            "redis_host": "REDIS_HOST",
            "redis_port": "REDIS_PORT",
        }
        values = {}
        for field_name, env_key in env_map.items():
            raw = os.getenv(env_key)
            if raw is not None and raw.strip() != "":
                values[field_name] = raw.strip()
        return cls(**values)
