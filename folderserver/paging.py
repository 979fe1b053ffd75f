"""Pagination link metadata.

Links are derived from the request's own URL: every query parameter is kept
and only ``offset`` and ``limit`` are replaced.
"""

from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from folderserver.models import PagingLinks

PAGING_PARAMS = ("offset", "limit")


def page_url(base_url: str, offset: int, limit: int) -> str:
    """``base_url`` with its offset/limit query parameters replaced."""
    parts = urlsplit(base_url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in PAGING_PARAMS]
    query.append(("offset", str(offset)))
    query.append(("limit", str(limit)))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def last_offset(total_count: int, limit: int) -> int:
    """Offset of the last page, never negative."""
    return max(0, ((total_count - 1) // limit) * limit)


def build_links(base_url: str, total_count: int, limit: int, offset: int) -> PagingLinks:
    """Build first/prev/next/last links for one page.

    Args:
        base_url: Absolute URL of the current request
        total_count: Number of matching items
        limit: Page size (>= 1)
        offset: Offset of the current page

    Returns:
        PagingLinks; ``prev`` is None on the first page and ``next`` is
        None once ``offset + limit`` reaches the total
    """
    if limit < 1:
        raise ValueError(f"limit must be positive, got {limit}")

    prev_url: Optional[str] = None
    if offset > 0:
        prev_url = page_url(base_url, max(0, offset - limit), limit)

    next_url: Optional[str] = None
    if offset + limit < total_count:
        next_url = page_url(base_url, offset + limit, limit)

    return PagingLinks(
        first=page_url(base_url, 0, limit),
        prev=prev_url,
        next=next_url,
        last=page_url(base_url, last_offset(total_count, limit), limit),
    )


def link_header(links: PagingLinks) -> str:
    """Render links as an RFC 8288 ``Link`` header value."""
    return ", ".join(f'<{url}>; rel="{rel}"' for rel, url in links.to_dict().items())
