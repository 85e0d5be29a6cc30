"""
Records exchanged between sources, connectors and the downstream indexer.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ChangeType(str, Enum):
    """Kind of change reported by an incremental sync."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class Source:
    """
    A configured remote origin.

    Immutable for the duration of a run.
    """

    id: str
    type: str
    config: dict[str, str] = field(default_factory=dict)
    authorization_id: str = ""


@dataclass
class RawDocument:
    """
    One synced item, before normalization.

    Content is None when the item is above the size ceiling, its type is
    not downloadable, or the download failed.
    """

    source_id: str
    uri: str
    mime_type: str = ""
    content: bytes | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    # Hierarchy: folder, thread, series or conversation
    parent_uri: str | None = None


@dataclass
class RawDocumentChange:
    """A change detected by incremental sync. Deletions carry a URI-only document."""

    change_type: ChangeType
    document: RawDocument


@dataclass(frozen=True)
class Capabilities:
    """
    Declarative connector capability flags.

    Callers use these to decide which operations are safe without probing.
    """

    supports_incremental: bool = False
    supports_watch: bool = False
    supports_hierarchy: bool = False
    supports_binary: bool = False
    requires_auth: bool = True
    supports_validation: bool = True
    supports_cursor_return: bool = False
    supports_partial_sync: bool = False
    supports_rate_limiting: bool = False
    supports_pagination: bool = False


@dataclass
class Page:
    """
    One page of provider results.

    Attributes:
        items: Raw provider items on this page.
        next_page: Continuation token for the next page of the same pass,
            None on the last page.
        resume_token: Token to resume from on the next run; usually only
            present on the last page.
    """

    items: list[dict[str, Any]] = field(default_factory=list)
    next_page: str | None = None
    resume_token: str | None = None


def parse_page_size(value: str | None, default: int, maximum: int) -> int:
    """
    Parse a page size configuration value.

    Zero, negative and non-numeric values silently fall back to the
    default; values above the provider maximum are capped.

    Args:
        value: Raw configuration string.
        default: Provider default page size.
        maximum: Provider documented maximum.

    Returns:
        Page size to use.
    """
    if not value:
        return default
    try:
        size = int(value.strip())
    except ValueError:
        return default
    if size <= 0:
        return default
    return min(size, maximum)


def parse_list(value: str | None) -> list[str]:
    """Split a comma-separated configuration value, dropping blanks."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def parse_bool(value: str | None, default: bool) -> bool:
    """Parse a "true"/"1" style configuration flag."""
    if not value:
        return default
    return value.strip().lower() in ("true", "1")
