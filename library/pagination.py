"""Offset/limit arithmetic shared by the list endpoints.

``page`` and ``limit`` arrive as raw query strings.  Anything absent or
non-numeric falls back to the defaults (page 1, ``default_page_size``), a
leading numeric prefix is honoured (``"3abc"`` reads as 3) and zero reads as
"not given".  With ``strict_pagination`` enabled negative values are rejected
and ``limit`` is clamped to ``max_page_size``; otherwise the values pass
through the arithmetic untouched.  In both modes an offset or limit that
does not fit a 64-bit SQL integer is rejected.
"""

import math
import re
from dataclasses import dataclass
from typing import Optional

from library.config import Settings
from library.exceptions import BadRequestError

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")

# Largest value the store accepts for OFFSET and LIMIT.
MAX_SQL_INT = 2**63 - 1


@dataclass(frozen=True)
class Pagination:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def _parse_int(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    match = _LEADING_INT.match(raw)
    if not match:
        return None
    return int(match.group(1))


def parse_pagination(
    page: Optional[str], limit: Optional[str], settings: Settings
) -> Pagination:
    parsed_page = _parse_int(page) or 1
    parsed_limit = _parse_int(limit) or settings.default_page_size

    if settings.strict_pagination:
        if parsed_page < 1:
            raise BadRequestError("page must be a positive integer")
        if parsed_limit < 1:
            raise BadRequestError("limit must be a positive integer")
        parsed_limit = min(parsed_limit, settings.max_page_size)

    pagination = Pagination(page=parsed_page, limit=parsed_limit)
    if abs(pagination.offset) > MAX_SQL_INT or abs(pagination.limit) > MAX_SQL_INT:
        raise BadRequestError("page or limit is too large")
    return pagination


def total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit)


def page_envelope(pagination: Pagination, total: int, name: str, items: list) -> dict:
    """Build the list response, e.g. ``{"currentPage", "limit", "totalPages", "totalBooks", "books"}``."""
    return {
        "currentPage": pagination.page,
        "limit": pagination.limit,
        "totalPages": total_pages(total, pagination.limit),
        f"total{name.capitalize()}": total,
        name: items,
    }
