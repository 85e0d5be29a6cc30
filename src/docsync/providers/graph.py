"""
Microsoft Graph helpers shared by the Outlook and calendar connectors.
"""

import re
from typing import Any

from docsync.logic.models import Page

GRAPH_API = "https://graph.microsoft.com/v1.0"

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000

_TAG_RE = re.compile(r"<[^>]*>")


def delta_page(data: dict[str, Any]) -> Page:
    """
    Convert a Graph delta response into a Page.

    Intermediate pages carry @odata.nextLink; the last page carries
    @odata.deltaLink, which is the resume token for the next run.
    """
    return Page(
        items=data.get("value", []),
        next_page=data.get("@odata.nextLink") or None,
        resume_token=data.get("@odata.deltaLink") or None,
    )


def is_removed(item: dict[str, Any]) -> bool:
    """Return True for a delta item tombstone."""
    return "@removed" in item


def max_page_size_header(page_size: int) -> dict[str, str]:
    """Build the Prefer header that sets the delta page size."""
    return {"Prefer": f"odata.maxpagesize={page_size}"}


def strip_html_tags(html: str) -> str:
    """Drop markup from an HTML body, keeping the text."""
    return _TAG_RE.sub("", html).strip()


def email_address(entry: dict[str, Any] | None) -> tuple[str, str]:
    """
    Extract (name, address) from a Graph recipient-like object.

    Args:
        entry: Object with an emailAddress member, or None.

    Returns:
        Tuple of display name and address, empty strings if missing.
    """
    address = (entry or {}).get("emailAddress") or {}
    return address.get("name", ""), address.get("address", "")
