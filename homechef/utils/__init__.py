"""Utility modules."""

from homechef.utils.pagination import (
    PaginatedResponse,
    PaginationParams,
    get_limit_pagination,
    get_pagination,
)

__all__ = [
    # Pagination
    "PaginationParams",
    "PaginatedResponse",
    "get_limit_pagination",
    "get_pagination",
]
