"""
In-memory query evaluation over the asset collection.

The whole collection is sorted first and then filtered, which keeps the
predicates simple. Collections are expected to stay in the hundreds to low
thousands of rows.
"""
from __future__ import annotations

import unicodedata
from datetime import datetime
from operator import attrgetter
from typing import Any, Iterable, Optional, TypeVar

from models import AssetFilter, AssetSummary, SortOption

T = TypeVar("T")

# sort option -> (attribute, descending)
SORT_KEYS: dict[str, tuple[str, bool]] = {
    "registerDateDesc": ("registered_at", True),
    "registerDateAsc": ("registered_at", False),
    "priceDesc": ("price", True),
    "priceAsc": ("price", False),
    "purchaseDateDesc": ("purchase_date", True),
    "purchaseDateAsc": ("purchase_date", False),
    "updatedDesc": ("updated_at", True),
}

KEYWORD_FIELDS = ("name", "serial_number", "owner", "location")


def fold(text: str) -> str:
    # 全角/半角・大文字/小文字を区別しない
    return unicodedata.normalize("NFKC", text).casefold()


def sort_assets(assets: Iterable[T], sort: SortOption) -> list[T]:
    attr, descending = SORT_KEYS[sort]
    # sorted() is stable for reverse=True as well
    return sorted(assets, key=attrgetter(attr), reverse=descending)


def matches_keyword(asset: Any, keyword: str) -> bool:
    if not keyword:
        return True
    needle = fold(keyword)
    for field in KEYWORD_FIELDS:
        value = getattr(asset, field, None)
        if value and needle in fold(value):
            return True
    return False


def matches_status(asset: Any, status: Optional[str]) -> bool:
    return status is None or asset.status == status


def matches_category(asset: Any, category: Optional[str]) -> bool:
    if not category:
        return True
    return (asset.category or "") == category


def within_dates(asset: Any, start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is not None and asset.registered_at < start:
        return False
    if end is not None and asset.registered_at > end:
        return False
    return True


def matches(asset: Any, criteria: AssetFilter) -> bool:
    return (
        matches_keyword(asset, criteria.keyword)
        and matches_status(asset, criteria.status)
        and matches_category(asset, criteria.category)
        and within_dates(asset, criteria.start_date, criteria.end_date)
    )


def evaluate(assets: Iterable[T], criteria: AssetFilter) -> list[T]:
    return [a for a in sort_assets(assets, criteria.sort) if matches(a, criteria)]


def summarize(assets: Iterable[Any]) -> AssetSummary:
    counts = {"inUse": 0, "retired": 0, "maintenance": 0, "idle": 0}
    total = 0
    total_value = 0.0
    for a in assets:
        total += 1
        total_value += a.price
        counts[a.status] = counts.get(a.status, 0) + 1
    return AssetSummary(
        total=total,
        in_use=counts["inUse"],
        retired=counts["retired"],
        maintenance=counts["maintenance"],
        idle=counts["idle"],
        total_value=round(total_value, 2),
    )
