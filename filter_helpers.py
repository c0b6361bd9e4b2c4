from datetime import date, datetime, time
from typing import Optional, get_args

from fastapi import HTTPException

from models import DEFAULT_SORT, STATUS_VALUES, AssetFilter, SortOption

VALID_STATUSES = set(STATUS_VALUES)
VALID_SORTS = set(get_args(SortOption))


def blank_to_none(value: Optional[str]) -> Optional[str]:
    if value == "":
        return None
    return value


def normalize_status(status: Optional[str]) -> Optional[str]:
    if status in VALID_STATUSES:
        return status
    return None


def normalize_sort(sort: str) -> str:
    if sort in VALID_SORTS:
        return sort
    return DEFAULT_SORT


def normalize_limit(limit: int, *, min_value: int = 1, max_value: int = 500) -> int:
    if limit < min_value:
        return min_value
    if limit > max_value:
        return max_value
    return limit


def normalize_offset(offset: int) -> int:
    if offset < 0:
        return 0
    return offset


def parse_date_bound(value: Optional[str], name: str, *, end_of_day: bool = False) -> Optional[datetime]:
    value = blank_to_none(value)
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} must be an ISO-8601 date")

    # 日付だけの終了日はその日の終わりまで含める
    if end_of_day and _is_date_only(value):
        parsed = datetime.combine(parsed.date(), time.max)
    return parsed


def _is_date_only(value: str) -> bool:
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def build_filter(
    q: Optional[str],
    status: Optional[str],
    category: Optional[str],
    start: Optional[str],
    end: Optional[str],
    sort: str,
) -> AssetFilter:
    return AssetFilter(
        keyword=(q or "").strip(),
        status=normalize_status(status),
        category=blank_to_none(category),
        start_date=parse_date_bound(start, "start"),
        end_date=parse_date_bound(end, "end", end_of_day=True),
        sort=normalize_sort(sort),
    )
