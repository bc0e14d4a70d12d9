"""
Pagination helpers for list endpoints.
"""

import math
from typing import Any, Dict, List, Tuple, Union

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100


def _to_int(value: Union[str, int, None], default: int) -> int:
    try:
        return int(value) or default
    except (TypeError, ValueError):
        return default


def get_pagination_params(
    page: Union[str, int, None] = None,
    limit: Union[str, int, None] = None,
) -> Tuple[int, int]:
    """
    Clamp raw query values to a valid (page, limit) pair.

    Missing, zero or non-numeric values fall back to the defaults.
    """
    page = _to_int(page, DEFAULT_PAGE)
    limit = _to_int(limit, DEFAULT_LIMIT)
    return max(1, page), min(MAX_LIMIT, max(1, limit))


def paginate(items: List[Any], page: int = DEFAULT_PAGE, limit: int = DEFAULT_LIMIT) -> Dict[str, Any]:
    """Slice ``items`` for one page and describe the page set."""
    offset = (page - 1) * limit
    total = len(items)

    return {
        "data": items[offset:offset + limit],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit) if limit else 0,
            "hasNext": offset + limit < total,
            "hasPrev": page > 1,
        },
    }
