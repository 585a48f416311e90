"""Pagination helpers for list endpoints.

``sanitize`` turns raw query parameters into safe values, the store applies
``offset``/``limit`` to its query, and ``paginate`` wraps the fetched page
with its metadata.
"""

from __future__ import annotations

import math
from typing import Any, Literal, Mapping, Optional, Sequence, TypeVar

from mindwell.schemas import PaginatedResult, PaginationMeta, PaginationParams

T = TypeVar("T")

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100


def _to_int(raw: Any) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


def sanitize(raw: Mapping[str, Any]) -> PaginationParams:
    """Build pagination params from untrusted input.

    Non-numeric or non-positive values fall back to the defaults; a limit
    above ``MAX_LIMIT`` is clamped to it.
    """
    page = _to_int(raw.get("page"))
    limit = _to_int(raw.get("limit"))

    if page is None or page < 1:
        page = DEFAULT_PAGE
    if limit is None or limit < 1:
        limit = DEFAULT_LIMIT
    limit = min(limit, MAX_LIMIT)

    order_by = raw.get("orderBy", raw.get("order_by"))
    if not isinstance(order_by, str) or not order_by.strip():
        order_by = None
    order: Literal["asc", "desc"] = "desc" if raw.get("order") == "desc" else "asc"

    return PaginationParams(page=page, limit=limit, order_by=order_by, order=order)


def offset(params: PaginationParams) -> int:
    return (params.page - 1) * params.limit


def paginate(rows: Sequence[T], total: int, params: PaginationParams) -> PaginatedResult[T]:
    total_pages = math.ceil(total / params.limit) if total > 0 else 0
    return PaginatedResult[T](
        data=list(rows),
        pagination=PaginationMeta(
            total_items=total,
            total_pages=total_pages,
            current_page=params.page,
            items_per_page=params.limit,
            has_next_page=params.page < total_pages,
            has_previous_page=params.page > 1,
        ),
    )
