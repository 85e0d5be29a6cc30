"""
Google Calendar connector.

Supports:
- Multi-calendar support (configured IDs or every listed calendar)
- Per-calendar syncToken incremental sync
- 410 GONE handling (calendar re-enumerated from empty)
- Cancelled events reported as deletions
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
    parse_list,
    parse_page_size,
)
from docsync.logic.rate_limiter import GOOGLE_RATE_LIMIT, RateLimitConfig, RateLimiter
from docsync.providers.base import BaseConnector

logger = logging.getLogger("docsync.google_calendar")

CALENDAR_API = "https://www.googleapis.com/calendar/v3"

DEFAULT_PAGE_SIZE = 250
MAX_PAGE_SIZE = 2500

# Calendars per calendarList page
CALENDAR_LIST_PAGE_SIZE = 250


class GoogleCalendarCursor(TokenMapCursor):
    """Per-calendar sync tokens."""

    tokens: dict[str, str] = Field(default_factory=dict, alias="sync_tokens")


def _flag(value: str | None, default: bool) -> bool:
    # Only an explicit "false" turns a default-on flag off
    if value is None or not value.strip():
        return default
    return value.strip().lower() != "false"


@dataclass
class GoogleCalendarConfig:
    """Google Calendar source configuration."""

    calendar_ids: list[str] = field(default_factory=list)
    max_results: int = DEFAULT_PAGE_SIZE
    show_deleted: bool = True
    single_events: bool = True

    @classmethod
    def from_source(cls, source: Source) -> "GoogleCalendarConfig":
        config = source.config
        return cls(
            calendar_ids=parse_list(config.get("calendar_ids")),
            max_results=parse_page_size(
                config.get("max_results"), DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
            ),
            show_deleted=_flag(config.get("show_deleted"), True),
            single_events=_flag(config.get("single_events"), True),
        )


def format_attendees(attendees: list[dict[str, Any]] | None) -> str:
    """
    Format an attendee list for event content.

    Args:
        attendees: Calendar API attendee objects.

    Returns:
        "Attendees: a, b" or "" if nobody has a name or email.
    """
    names = [
        a.get("displayName") or a.get("email")
        for a in attendees or []
        if a.get("displayName") or a.get("email")
    ]
    if not names:
        return ""
    return "Attendees: " + ", ".join(names)


def build_event_content(event: dict[str, Any]) -> str:
    """Render an event as plain text for indexing."""
    parts = []
    if event.get("summary"):
        parts.append(event["summary"])
    if event.get("description"):
        parts.append(event["description"])
    if event.get("location"):
        parts.append(f"Location: {event['location']}")
    attendees = format_attendees(event.get("attendees"))
    if attendees:
        parts.append(attendees)
    return "\n\n".join(parts)


def event_times(event: dict[str, Any]) -> tuple[str, str]:
    """Return (start, end); all-day events use their date."""
    start = event.get("start") or {}
    end = event.get("end") or {}
    return (
        start.get("dateTime") or start.get("date", ""),
        end.get("dateTime") or end.get("date", ""),
    )


class GoogleCalendarConnector(BaseConnector):
    """
    Connector for Google Calendar events.

    Each calendar is a sub-resource with its own sync token; one calendar
    failing does not stop the others.
    """

    connector_type: ClassVar[str] = "google-calendar"
    rate_limit: ClassVar[RateLimitConfig] = GOOGLE_RATE_LIMIT
    cursor_class: ClassVar[type[GoogleCalendarCursor]] = GoogleCalendarCursor
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
        self._config = GoogleCalendarConfig.from_source(source)

    @property
    def config(self) -> GoogleCalendarConfig:
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

    async def validate_request(
        self, access_token: str, cancel_token: CancellationToken
    ) -> None:
        await self._api.request(
            "GET",
            f"{CALENDAR_API}/users/me/calendarList",
            access_token,
            cancel_token,
            params={"maxResults": 1},
        )

    async def list_sub_resources(
        self, access_token: str, cancel_token: CancellationToken
    ) -> list[str]:
        """
        List calendar IDs to sync.

        Returns:
            Configured calendar IDs, or every calendar on the account.
        """
        if self._config.calendar_ids:
            return list(self._config.calendar_ids)

        calendar_ids: list[str] = []
        page_token: str | None = None

        while True:
            params: dict[str, Any] = {"maxResults": CALENDAR_LIST_PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token

            data = await self._api.get_json(
                f"{CALENDAR_API}/users/me/calendarList",
                access_token,
                cancel_token,
                params=params,
            )
            calendar_ids.extend(cal["id"] for cal in data.get("items", []) if cal.get("id"))

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        logger.info(f"📅 [google-calendar] Found {len(calendar_ids)} calendars")
        return calendar_ids

    async def fetch_page(
        self,
        sub_resource: str,
        access_token: str,
        cancel_token: CancellationToken,
        page_token: str | None = None,
        resume_token: str | None = None,
    ) -> Page:
        params: dict[str, Any] = {
            "maxResults": self._config.max_results,
            # Deletions are needed whenever we resume from a sync token
            "showDeleted": "true" if resume_token or self._config.show_deleted else "false",
            "singleEvents": "true" if self._config.single_events else "false",
        }
        if page_token:
            params["pageToken"] = page_token
        elif resume_token:
            params["syncToken"] = resume_token

        data = await self._api.get_json(
            f"{CALENDAR_API}/calendars/{quote(sub_resource, safe='')}/events",
            access_token,
            cancel_token,
            params=params,
        )
        return Page(
            items=data.get("items", []),
            next_page=data.get("nextPageToken") or None,
            resume_token=data.get("nextSyncToken") or None,
        )

    def deleted_uri(self, sub_resource: str, item: dict[str, Any]) -> str | None:
        if item.get("status") == "cancelled" and item.get("id"):
            return f"gcal://{sub_resource}/events/{item['id']}"
        return None

    def should_sync(self, sub_resource: str, item: dict[str, Any]) -> bool:
        return bool(item.get("id"))

    def to_document(
        self,
        sub_resource: str,
        item: dict[str, Any],
        content: bytes | None,
    ) -> RawDocument:
        event_id = item["id"]
        start_time, end_time = event_times(item)
        recurring_id = item.get("recurringEventId", "")

        metadata: dict[str, Any] = {
            "event_id": event_id,
            "calendar_id": sub_resource,
            "title": item.get("summary", ""),
            "description": item.get("description", ""),
            "location": item.get("location", ""),
            "start_time": start_time,
            "end_time": end_time,
            "status": item.get("status", ""),
            "html_link": item.get("htmlLink", ""),
            "organiser": (item.get("organizer") or {}).get("email", ""),
        }
        if recurring_id:
            metadata["recurring_event_id"] = recurring_id

        return RawDocument(
            source_id=self.source_id,
            uri=f"gcal://{sub_resource}/events/{event_id}",
            mime_type="text/calendar",
            content=build_event_content(item).encode("utf-8"),
            metadata=metadata,
            parent_uri=f"gcal://{sub_resource}/events/{recurring_id}" if recurring_id else None,
        )
