from math import ceil
from typing import Any

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def page_window(page: int, limit: int) -> tuple[int, int]:
    """Clamp page/limit and return ``(limit, offset)``."""
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)
    return limit, (page - 1) * limit


def page_meta(total: int, page: int, limit: int) -> dict[str, Any]:
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": ceil(total / limit) if total else 0,
    }


def paginate(query, page: int, limit: int) -> dict[str, Any]:
    size, offset = page_window(page, limit)
    total = query.order_by(None).count()
    return {"data": query.limit(size).offset(offset).all(), "meta": page_meta(total, page, size)}
