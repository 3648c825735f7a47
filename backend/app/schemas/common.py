"""Common schemas used across the application."""

from typing import Generic, TypeVar
from pydantic import BaseModel

T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    """Offset-paginated response for filtered listings.

    Usage:
        response_model=PaginatedResponse[AuditEntryOut]
    """
    items: list[T]
    total: int
    limit: int
    offset: int


class CursorPaginatedResponse(BaseModel, Generic[T]):
    """Cursor-based paginated response for append-only, id-ordered collections.

    Usage:
        response_model=CursorPaginatedResponse[AuditEntryOut]

    `next_cursor` is the id of the last item; pass it back as `before`
    to fetch the next (older) page.  No OFFSET scan, so deep pages cost
    the same as the first.
    """
    items: list[T]
    total: int
    limit: int
    next_cursor: str | None = None
    has_more: bool
