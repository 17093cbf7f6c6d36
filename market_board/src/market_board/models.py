"""
Domain models for market board pricing using Pydantic.  These models
give the price records, cache entries and dye descriptions a single
validated shape that is shared by the fetch service, the cache
backends (which serialise entries to JSON) and the display helpers.
"""

from __future__ import annotations

import hashlib
import json
import time
from typing import Optional

from pydantic import BaseModel, Field


def now_ms() -> float:
    """Wall-clock time in milliseconds, the unit used by cached entries."""
    return time.time() * 1000.0


class PriceRecord(BaseModel):
    """Best known market price for one tradeable item.

    The upstream aggregated endpoint exposes one representative figure per
    query, so ``current_average``, ``current_min_price`` and
    ``current_max_price`` are all populated from it.
    """

    item_id: int = Field(..., description="Universalis/FFXIV item identifier")
    current_average: int = Field(..., ge=0)
    current_min_price: int = Field(..., ge=0)
    current_max_price: int = Field(..., ge=0)
    last_update: float = Field(default_factory=now_ms, description="Epoch milliseconds")
    market_region_id: Optional[str] = Field(None, description="World or data center the price came from")

    @classmethod
    def from_price(cls, item_id: int, price: float, market_region_id: Optional[str] = None) -> "PriceRecord":
        rounded = int(round(price))
        return cls(
            item_id=item_id,
            current_average=rounded,
            current_min_price=rounded,
            current_max_price=rounded,
            market_region_id=market_region_id,
        )


def generate_checksum(data: BaseModel) -> str:
    """Return a stable SHA-256 digest of a model's JSON form."""
    payload = json.dumps(data.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class CacheEntry(BaseModel):
    """One cached price with the metadata needed to validate it on read."""

    data: PriceRecord
    fetched_at: float
    ttl_ms: int
    schema_version: str
    integrity_tag: str

    @classmethod
    def wrap(cls, data: PriceRecord, *, ttl_ms: int, schema_version: str) -> "CacheEntry":
        return cls(
            data=data,
            fetched_at=now_ms(),
            ttl_ms=ttl_ms,
            schema_version=schema_version,
            integrity_tag=generate_checksum(data),
        )

    def is_expired(self, at_ms: Optional[float] = None) -> bool:
        current = now_ms() if at_ms is None else at_ms
        return current - self.fetched_at >= self.ttl_ms

    def is_intact(self) -> bool:
        return generate_checksum(self.data) == self.integrity_tag


class Dye(BaseModel):
    """Subset of a dye definition needed to decide whether to price it."""

    item_id: int
    name: str = ""
    acquisition: str = ""
    category: str = ""


class CategoryFilterSettings(BaseModel):
    """Which dye categories are eligible for price fetching."""

    base_dyes: bool = False
    craft_dyes: bool = False
    allied_society_dyes: bool = True
    cosmic_dyes: bool = True
    special_dyes: bool = True


# Acquisition sources that place a dye in each category.  Special dyes are
# matched on ``Dye.category`` instead.
PRICE_CATEGORY_ACQUISITIONS = {
    "base_dyes": ("Dye Vendor",),
    "craft_dyes": ("Crafting", "Treasure Chest"),
    "allied_society_dyes": (
        "Amalj'aa Vendor",
        "Ixali Vendor",
        "Sahagin Vendor",
        "Kobold Vendor",
        "Sylphic Vendor",
    ),
    "cosmic_dyes": ("Cosmic Exploration", "Cosmic Fortunes"),
}
SPECIAL_DYE_CATEGORY = "Special"
