"""
Domain helpers for the Clinic API.
"""

from .pagination import get_pagination_params, paginate

__all__ = [
    "get_pagination_params",
    "paginate",
]
