"""
Pagination of catalog listings.

Turns a page number, page size and match count into an offset and the
first/previous/next/last navigation URLs. Sibling URLs are the current URL
with only its ``page`` parameter rewritten.
"""

from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

PAGE_PARAM = 'page'
MAX_PAGE = 2 ** 31 - 1


def parse_page(value: Optional[str]) -> int:
    """Parse the requested page; anything but a positive integer is page 1.

    Pages beyond MAX_PAGE are clamped so offsets stay within SQLite's
    64-bit integers.
    """
    try:
        page = int(value)
    except (TypeError, ValueError):
        return 1
    if page < 1:
        return 1
    return min(page, MAX_PAGE)


def with_page(url: str, page: int) -> str:
    """Return ``url`` with its page parameter set to ``page``.

    Other parameters keep their values and position; a missing page
    parameter is appended.
    """
    parts = urlsplit(url)
    params = parse_qsl(parts.query, keep_blank_values=True)

    replaced = False
    rewritten = []
    for key, value in params:
        if key == PAGE_PARAM:
            if replaced:
                continue
            value = str(page)
            replaced = True
        rewritten.append((key, value))
    if not replaced:
        rewritten.append((PAGE_PARAM, str(page)))

    return urlunsplit(parts._replace(query=urlencode(rewritten)))


@dataclass(frozen=True)
class Pagination:
    """Offset and navigation links for one page of a listing."""
    page: int
    page_size: int
    total: int
    offset: int
    last_page: int
    first_link: str = ""
    prev_link: str = ""
    next_link: str = ""
    last_link: str = ""

    @property
    def start_index(self) -> int:
        """1-based index of the first item on this page."""
        return self.offset + 1


def paginate(page: int, page_size: int, total: int, url: str) -> Pagination:
    """
    Compute offset and navigation links.

    Args:
        page: Requested page, 1-based
        page_size: Items per page, positive
        total: Number of items matching the active filter
        url: Current request URL (path and query string)

    Returns:
        Pagination
    """
    offset = page_size * (page - 1)
    # Over-counts by one when total is an exact multiple of page_size;
    # existing clients rely on this value.
    last_page = total // page_size + 1

    first_link = prev_link = ""
    if page > 1:
        prev_link = with_page(url, page - 1)
        first_link = with_page(url, 1)

    next_link = with_page(url, page + 1)
    if offset + page_size >= total:
        next_link = ""

    last_link = with_page(url, last_page) if last_page != page else ""

    return Pagination(
        page=page,
        page_size=page_size,
        total=total,
        offset=offset,
        last_page=last_page,
        first_link=first_link,
        prev_link=prev_link,
        next_link=next_link,
        last_link=last_link,
    )
