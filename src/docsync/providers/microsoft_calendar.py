"""
Microsoft (Outlook/Exchange) Calendar connector.

Supports:
- Multi-calendar support (configured IDs or every listed calendar)
- Per-calendar delta links for incremental sync
- Full event fetch for each delta item (delta returns minimal fields)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar
from urllib.parse import quote

import httpx
from pydantic import Field

from docsync.config import SyncSettings
from docsync.logic.cancellation import CancellationToken
from docsync.logic.credentials import CredentialProvider
from docsync.logic.cursor import TokenMapCursor
from docsync.logic.models import (
    Capabilities,
    Page,
    RawDocument,
    Source,
    parse_bool,
    parse_list,
    parse_page_size,
)
from docsync.logic.rate_limiter import GRAPH_RATE_LIMIT, RateLimitConfig, RateLimiter
from docsync.providers.base import BaseConnector
from docsync.providers.graph import (
    DEFAULT_PAGE_SIZE,
    GRAPH_API,
    MAX_PAGE_SIZE,
    delta_page,
    email_address,
    is_removed,
    max_page_size_header,
    strip_html_tags,
)

logger = logging.getLogger("docsync.microsoft_calendar")


class MicrosoftCalendarCursor(TokenMapCursor):
    """Per-calendar Graph delta links."""

    tokens: dict[str, str] = Field(default_factory=dict, alias="delta_links")


@dataclass
class MicrosoftCalendarConfig:
    """Microsoft Calendar source configuration."""

    calendar_ids: list[str] = field(default_factory=list)
    max_results: int = DEFAULT_PAGE_SIZE
    show_cancelled: bool = False

    @classmethod
    def from_source(cls, source: Source) -> "MicrosoftCalendarConfig":
        config = source.config
        return cls(
            calendar_ids=parse_list(config.get("calendar_ids")),
            max_results=parse_page_size(
                config.get("max_results"), DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
            ),
            show_cancelled=parse_bool(config.get("show_cancelled"), False),
        )


def format_attendees(attendees: list[dict[str, Any]] | None) -> str:
    """Format attendees as "Attendees: a, b", preferring display names."""
    names = []
    for attendee in attendees or []:
        name, address = email_address(attendee)
        if name or address:
            names.append(name or address)
    if not names:
        return ""
    return "Attendees: " + ", ".join(names)


def build_event_content(event: dict[str, Any]) -> str:
    """Render an event as plain text for indexing."""
    parts = []
    if event.get("subject"):
        parts.append(event["subject"])

    body = event.get("body") or {}
    text = body.get("content", "")
    if text and body.get("contentType") == "html":
        text = strip_html_tags(text)
    if text:
        parts.append(text)

    location = (event.get("location") or {}).get("displayName", "")
    if location:
        parts.append(f"Location: {location}")

    attendees = format_attendees(event.get("attendees"))
    if attendees:
        parts.append(attendees)

    return "\n\n".join(parts)


class MicrosoftCalendarConnector(BaseConnector):
    """
    Connector for Microsoft 365 calendar events via Graph delta queries.

    Delta items only carry minimal fields, so every live item is
    re-fetched in full; a failed fetch skips that event.
    """

    connector_type: ClassVar[str] = "microsoft-calendar"
    rate_limit: ClassVar[RateLimitConfig] = GRAPH_RATE_LIMIT
    cursor_class: ClassVar[type[MicrosoftCalendarCursor]] = MicrosoftCalendarCursor
    isolates_sub_resources: ClassVar[bool] = True

    def __init__(
        self,
        source: Source,
        credentials: CredentialProvider,
        settings: SyncSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        super().__init__(source, credentials, settings, http_client, rate_limiter)
        self._config = MicrosoftCalendarConfig.from_source(source)

    @property
    def config(self) -> MicrosoftCalendarConfig:
        return self._config

    @property
    def capabilities(self) -> Capabilities:
        return Capabilities(
            supports_incremental=True,
            supports_hierarchy=True,
            supports_cursor_return=True,
            supports_partial_sync=True,
            supports_rate_limiting=True,
            supports_pagination=True,
        )

    def _calendar_url(self, calendar_id: str) -> str:
        return f"{GRAPH_API}/me/calendars/{quote(calendar_id, safe='')}"

    async def validate_request(
        self, access_token: str, cancel_token: CancellationToken
    ) -> None:
        await self._api.request(
            "GET",
            f"{GRAPH_API}/me/calendars",
            access_token,
            cancel_token,
            params={"$top": 1},
        )

    async def list_sub_resources(
        self, access_token: str, cancel_token: CancellationToken
    ) -> list[str]:
        if self._config.calendar_ids:
            return list(self._config.calendar_ids)

        calendar_ids: list[str] = []
        url: str | None = f"{GRAPH_API}/me/calendars"

        while url:
            data = await self._api.get_json(url, access_token, cancel_token)
            calendar_ids.extend(cal["id"] for cal in data.get("value", []) if cal.get("id"))
            url = data.get("@odata.nextLink")

        logger.info(f"📅 [microsoft-calendar] Found {len(calendar_ids)} calendars")
        return calendar_ids

    async def fetch_page(
        self,
        sub_resource: str,
        access_token: str,
        cancel_token: CancellationToken,
        page_token: str | None = None,
        resume_token: str | None = None,
    ) -> Page:
        # nextLink and deltaLink are absolute URLs with their own query string
        url = page_token or resume_token or f"{self._calendar_url(sub_resource)}/events/delta"
        data = await self._api.get_json(
            url,
            access_token,
            cancel_token,
            headers=max_page_size_header(self._config.max_results),
        )
        return delta_page(data)

    def deleted_uri(self, sub_resource: str, item: dict[str, Any]) -> str | None:
        if not item.get("id"):
            return None
        if is_removed(item) or (item.get("isCancelled") and not self._config.show_cancelled):
            return f"mscal://{sub_resource}/events/{item['id']}"
        return None

    def should_sync(self, sub_resource: str, item: dict[str, Any]) -> bool:
        return bool(item.get("id"))

    async def hydrate(
        self,
        sub_resource: str,
        item: dict[str, Any],
        access_token: str,
        cancel_token: CancellationToken,
    ) -> dict[str, Any] | None:
        return await self._api.get_json(
            f"{self._calendar_url(sub_resource)}/events/{quote(item['id'], safe='')}",
            access_token,
            cancel_token,
        )

    def to_document(
        self,
        sub_resource: str,
        item: dict[str, Any],
        content: bytes | None,
    ) -> RawDocument:
        event_id = item["id"]
        series_id = item.get("seriesMasterId", "")

        metadata: dict[str, Any] = {
            "event_id": event_id,
            "calendar_id": sub_resource,
            "title": item.get("subject", ""),
            "start_time": (item.get("start") or {}).get("dateTime", ""),
            "end_time": (item.get("end") or {}).get("dateTime", ""),
            "is_all_day": item.get("isAllDay", False),
            "is_cancelled": item.get("isCancelled", False),
            "importance": item.get("importance", ""),
            "sensitivity": item.get("sensitivity", ""),
            "show_as": item.get("showAs", ""),
            "html_link": item.get("webLink", ""),
            "created": item.get("createdDateTime", ""),
            "updated": item.get("lastModifiedDateTime", ""),
        }

        location = (item.get("location") or {}).get("displayName", "")
        if location:
            metadata["location"] = location
        if item.get("organizer"):
            name, address = email_address(item["organizer"])
            metadata["organiser"] = address
            metadata["organiser_name"] = name
        if series_id:
            metadata["series_master_id"] = series_id
        if item.get("categories"):
            metadata["categories"] = item["categories"]

        return RawDocument(
            source_id=self.source_id,
            uri=f"mscal://{sub_resource}/events/{event_id}",
            mime_type="text/calendar",
            content=build_event_content(item).encode("utf-8"),
            metadata=metadata,
            parent_uri=f"mscal://{sub_resource}/events/{series_id}" if series_id else None,
        )
