"""Unit tests for the Google Calendar connector."""

import httpx
import pytest

from docsync.config import SyncSettings
from docsync.logic.cancellation import CancellationToken
from docsync.logic.credentials import StaticCredentialProvider
from docsync.logic.models import ChangeType
from docsync.logic.streams import SyncComplete
from docsync.providers.google_calendar import (
    GoogleCalendarConfig,
    GoogleCalendarConnector,
    GoogleCalendarCursor,
    build_event_content,
    event_times,
    format_attendees,
)

EVENT = {
    "id": "ev1",
    "status": "confirmed",
    "summary": "Standup",
    "description": "Daily sync",
    "location": "Room 4",
    "start": {"dateTime": "2024-01-20T09:00:00Z"},
    "end": {"dateTime": "2024-01-20T09:15:00Z"},
    "attendees": [{"email": "a@example.com", "displayName": "Alice"}, {"email": "b@example.com"}],
    "organizer": {"email": "boss@example.com"},
    "htmlLink": "https://calendar.google.com/event?eid=ev1",
}


class FakeCalendar:
    """In-memory Calendar API with scripted event responses per calendar."""

    def __init__(self) -> None:
        self.calendars: list[dict] = [{"items": [{"id": "primary"}, {"id": "work"}]}]
        self.events: dict[str, list[httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/calendar/v3/users/me/calendarList":
            return httpx.Response(200, json=self.calendars.pop(0))
        if path.startswith("/calendar/v3/calendars/") and path.endswith("/events"):
            calendar_id = path.split("/")[4]
            return self.events[calendar_id].pop(0)
        return httpx.Response(404, text=f"unexpected {path}")

    def event_params(self, calendar_id: str) -> list[httpx.QueryParams]:
        return [
            r.url.params
            for r in self.requests
            if r.url.path == f"/calendar/v3/calendars/{calendar_id}/events"
        ]


@pytest.fixture
def api() -> FakeCalendar:
    return FakeCalendar()


@pytest.fixture
def make_connector(
    api: FakeCalendar,
    credentials: StaticCredentialProvider,
    settings: SyncSettings,
    make_source,
):
    """Factory for connectors talking to the fake API."""

    def _make(**config: str) -> GoogleCalendarConnector:
        client = httpx.AsyncClient(transport=httpx.MockTransport(api))
        return GoogleCalendarConnector(
            make_source("google-calendar", **config), credentials, settings, http_client=client
        )

    return _make


class TestGoogleCalendarConfig:
    """Tests for GoogleCalendarConfig."""

    def test_defaults(self, make_source) -> None:
        """Test default configuration values."""
        config = GoogleCalendarConfig.from_source(make_source("google-calendar"))

        assert config.calendar_ids == []
        assert config.max_results == 250
        assert config.show_deleted is True
        assert config.single_events is True

    @pytest.mark.parametrize(
        "value,expected",
        [("false", False), ("FALSE", False), ("no", True), ("true", True), ("", True)],
    )
    def test_flags(self, make_source, value: str, expected: bool) -> None:
        """Test only an explicit false disables a default-on flag."""
        config = GoogleCalendarConfig.from_source(
            make_source("google-calendar", single_events=value)
        )
        assert config.single_events is expected


class TestEventFormatting:
    """Tests for event content helpers."""

    def test_build_event_content(self) -> None:
        """Test content joins summary, description, location and attendees."""
        assert build_event_content(EVENT) == (
            "Standup\n\nDaily sync\n\nLocation: Room 4\n\nAttendees: Alice, b@example.com"
        )

    def test_format_attendees_empty(self) -> None:
        """Test attendees without names or emails produce nothing."""
        assert format_attendees([{"responseStatus": "accepted"}]) == ""
        assert format_attendees(None) == ""

    def test_all_day_times(self) -> None:
        """Test all-day events fall back to their dates."""
        event = {"start": {"date": "2024-01-20"}, "end": {"date": "2024-01-21"}}
        assert event_times(event) == ("2024-01-20", "2024-01-21")


class TestGoogleCalendarFullSync:
    """Tests for Google Calendar full sync."""

    @pytest.mark.asyncio
    async def test_discovers_calendars(
        self, api: FakeCalendar, make_connector, cancel_token: CancellationToken
    ) -> None:
        """Test every listed calendar is synced and cancelled events skipped."""
        api.events = {
            "primary": [
                httpx.Response(
                    200,
                    json={
                        "items": [EVENT, {"id": "gone", "status": "cancelled"}],
                        "nextSyncToken": "sync-p",
                    },
                )
            ],
            "work": [
                httpx.Response(
                    200,
                    json={
                        "items": [{**EVENT, "id": "ev2", "recurringEventId": "series1"}],
                        "nextSyncToken": "sync-w",
                    },
                )
            ],
        }

        docs, result = await make_connector().full_sync(cancel_token).collect()

        assert [d.uri for d in docs] == ["gcal://primary/events/ev1", "gcal://work/events/ev2"]
        first, second = docs
        assert first.mime_type == "text/calendar"
        assert first.content is not None and first.content.startswith(b"Standup")
        assert first.metadata["organiser"] == "boss@example.com"
        assert first.parent_uri is None
        assert second.parent_uri == "gcal://work/events/series1"
        assert second.metadata["recurring_event_id"] == "series1"

        assert isinstance(result, SyncComplete)
        assert result.stats.skipped == 1
        cursor = GoogleCalendarCursor.decode(result.new_cursor)
        assert cursor.get_token("primary") == "sync-p"
        assert cursor.get_token("work") == "sync-w"

    @pytest.mark.asyncio
    async def test_configured_calendars(
        self, api: FakeCalendar, make_connector, cancel_token: CancellationToken
    ) -> None:
        """Test configured calendar IDs skip discovery."""
        api.events = {"work": [httpx.Response(200, json={"items": [], "nextSyncToken": "s"})]}

        _, result = await make_connector(calendar_ids="work").full_sync(cancel_token).collect()

        assert isinstance(result, SyncComplete)
        assert all(r.url.path != "/calendar/v3/users/me/calendarList" for r in api.requests)

    @pytest.mark.asyncio
    async def test_failed_calendar_isolated(
        self, api: FakeCalendar, make_connector, cancel_token: CancellationToken
    ) -> None:
        """Test one failing calendar does not stop the others."""
        api.events = {
            "primary": [httpx.Response(500, text="backend error")],
            "work": [httpx.Response(200, json={"items": [EVENT], "nextSyncToken": "sync-w"})],
        }

        docs, result = await make_connector().full_sync(cancel_token).collect()

        assert [d.uri for d in docs] == ["gcal://work/events/ev1"]
        assert isinstance(result, SyncComplete)
        assert result.stats.failed_sub_resources == ("primary",)
        cursor = GoogleCalendarCursor.decode(result.new_cursor)
        assert not cursor.has_token("primary")
        assert cursor.get_token("work") == "sync-w"


class TestGoogleCalendarIncrementalSync:
    """Tests for Google Calendar incremental sync."""

    @pytest.mark.asyncio
    async def test_sync_token_changes(
        self, api: FakeCalendar, make_connector, cancel_token: CancellationToken
    ) -> None:
        """Test stored sync tokens are sent and cancellations become deletions."""
        api.events = {
            "primary": [
                httpx.Response(
                    200,
                    json={
                        "items": [{"id": "gone", "status": "cancelled"}, EVENT],
                        "nextSyncToken": "sync-p2",
                    },
                )
            ],
        }
        cursor = GoogleCalendarCursor(tokens={"primary": "sync-p"}).encode()

        changes, result = await make_connector(
            calendar_ids="primary", show_deleted="false"
        ).incremental_sync(cancel_token, cursor).collect()

        assert [(c.change_type, c.document.uri) for c in changes] == [
            (ChangeType.DELETED, "gcal://primary/events/gone"),
            (ChangeType.UPDATED, "gcal://primary/events/ev1"),
        ]
        assert changes[0].document.content is None
        params = api.event_params("primary")[0]
        assert params["syncToken"] == "sync-p"
        assert params["showDeleted"] == "true"
        assert GoogleCalendarCursor.decode(result.new_cursor).get_token("primary") == "sync-p2"  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_expired_sync_token(
        self, api: FakeCalendar, make_connector, cancel_token: CancellationToken
    ) -> None:
        """Test a 410 re-enumerates the calendar without a sync token."""
        api.events = {
            "primary": [
                httpx.Response(410, json={"error": {"code": 410, "message": "Sync token expired"}}),
                httpx.Response(200, json={"items": [EVENT], "nextSyncToken": "fresh"}),
            ],
        }
        cursor = GoogleCalendarCursor(tokens={"primary": "stale"}).encode()

        changes, result = await make_connector(calendar_ids="primary").incremental_sync(
            cancel_token, cursor
        ).collect()

        assert [c.document.uri for c in changes] == ["gcal://primary/events/ev1"]
        first, second = api.event_params("primary")
        assert first["syncToken"] == "stale"
        assert "syncToken" not in second
        assert isinstance(result, SyncComplete)
        assert result.stats.retried_sub_resources == ("primary",)
        assert GoogleCalendarCursor.decode(result.new_cursor).get_token("primary") == "fresh"
