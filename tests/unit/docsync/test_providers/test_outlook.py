"""Unit tests for the Outlook connector."""

import httpx
import pytest

from docsync.config import SyncSettings
from docsync.logic.cancellation import CancellationToken
from docsync.logic.credentials import StaticCredentialProvider
from docsync.logic.models import ChangeType
from docsync.logic.streams import SyncComplete
from docsync.providers.outlook import (
    MESSAGE_FIELDS,
    OutlookConfig,
    OutlookConnector,
    OutlookCursor,
    build_message_content,
    format_mail_date,
    format_recipients,
)

GRAPH = "https://graph.microsoft.com/v1.0"

MESSAGE = {
    "id": "m1",
    "subject": "Quarterly numbers",
    "from": {"emailAddress": {"name": "Alice", "address": "alice@example.com"}},
    "toRecipients": [
        {"emailAddress": {"name": "Bob", "address": "bob@example.com"}},
        {"emailAddress": {"name": "Team"}},
    ],
    "ccRecipients": [{"emailAddress": {"address": "carol@example.com"}}],
    "receivedDateTime": "2024-01-20T14:00:00Z",
    "sentDateTime": "2024-01-20T13:59:00Z",
    "body": {"contentType": "text", "content": "See attached."},
    "conversationId": "conv1",
    "internetMessageId": "<abc@example.com>",
    "isRead": True,
    "importance": "high",
    "webLink": "https://outlook.office365.com/owa/?ItemID=m1",
}


class FakeOutlook:
    """In-memory Graph mail API."""

    def __init__(self) -> None:
        self.delta_pages: list[dict] = []
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/messages/delta"):
            return httpx.Response(200, json=self.delta_pages.pop(0))
        if path.startswith("/v1.0/me/mailFolders/"):
            return httpx.Response(200, json={"id": path.rsplit("/", 1)[-1]})
        return httpx.Response(404, text=f"unexpected {path}")


@pytest.fixture
def api() -> FakeOutlook:
    return FakeOutlook()


@pytest.fixture
def make_connector(
    api: FakeOutlook,
    credentials: StaticCredentialProvider,
    settings: SyncSettings,
    make_source,
):
    """Factory for connectors talking to the fake API."""

    def _make(**config: str) -> OutlookConnector:
        client = httpx.AsyncClient(transport=httpx.MockTransport(api))
        return OutlookConnector(
            make_source("outlook", **config), credentials, settings, http_client=client
        )

    return _make


class TestOutlookConfig:
    """Tests for OutlookConfig."""

    @pytest.mark.parametrize("config", [{}, {"folder_id": "  "}])
    def test_default_folder(self, make_source, config: dict[str, str]) -> None:
        """Test a missing or blank folder means the inbox."""
        assert OutlookConfig.from_source(make_source("outlook", **config)).folder_id == "inbox"

    def test_parsing(self, make_source) -> None:
        """Test folder and page size parsing."""
        config = OutlookConfig.from_source(
            make_source("outlook", folder_id="archive", max_results="25")
        )

        assert config.folder_id == "archive"
        assert config.max_results == 25


class TestMessageFormatting:
    """Tests for message content helpers."""

    def test_format_recipients(self) -> None:
        """Test addresses are preferred over names."""
        assert format_recipients(MESSAGE["toRecipients"]) == "bob@example.com, Team"
        assert format_recipients(None) == ""

    def test_format_mail_date(self) -> None:
        """Test ISO timestamps become mail dates; junk passes through."""
        assert format_mail_date("2024-01-20T14:00:00Z") == "Sat, 20 Jan 2024 14:00:00 +0000"
        assert format_mail_date("yesterday") == "yesterday"

    def test_build_message_content(self) -> None:
        """Test headers, blank line, then body."""
        assert build_message_content(MESSAGE) == (
            "Subject: Quarterly numbers\n"
            "From: Alice <alice@example.com>\n"
            "To: bob@example.com, Team\n"
            "Cc: carol@example.com\n"
            "Date: Sat, 20 Jan 2024 14:00:00 +0000\n"
            "\n"
            "See attached."
        )

    def test_body_preview_fallback(self) -> None:
        """Test the preview is used when the body is missing."""
        content = build_message_content({"subject": "Hi", "bodyPreview": "Short"})
        assert content == "Subject: Hi\n\nShort"


class TestOutlookFullSync:
    """Tests for Outlook full sync."""

    @pytest.mark.asyncio
    async def test_delta_pages(
        self, api: FakeOutlook, make_connector, cancel_token: CancellationToken
    ) -> None:
        """Test the folder delta is paged and removals skipped."""
        api.delta_pages = [
            {
                "value": [MESSAGE, {"id": "gone", "@removed": {"reason": "deleted"}}],
                "@odata.nextLink": f"{GRAPH}/me/mailFolders/inbox/messages/delta?$skiptoken=p2",
            },
            {
                "value": [{**MESSAGE, "id": "conv1", "subject": "Kickoff"}],
                "@odata.deltaLink": f"{GRAPH}/me/mailFolders/inbox/messages/delta?$deltatoken=d1",
            },
        ]

        docs, result = await make_connector(max_results="10").full_sync(cancel_token).collect()

        assert [d.uri for d in docs] == ["outlook://messages/m1", "outlook://messages/conv1"]
        reply, first_message = docs
        assert reply.mime_type == "message/rfc822"
        assert reply.content is not None and reply.content.startswith(b"Subject: Quarterly numbers")
        assert reply.parent_uri == "outlook://conversations/conv1"
        assert reply.metadata["from"] == "alice@example.com"
        assert reply.metadata["from_name"] == "Alice"
        assert reply.metadata["folder_id"] == "inbox"
        assert reply.metadata["internet_message_id"] == "<abc@example.com>"
        assert first_message.parent_uri is None

        assert isinstance(result, SyncComplete)
        assert result.stats.skipped == 1
        assert OutlookCursor.decode(result.new_cursor).get_token().endswith("$deltatoken=d1")

        first, second = api.requests
        assert first.url.path == "/v1.0/me/mailFolders/inbox/messages/delta"
        assert first.url.params["$select"] == MESSAGE_FIELDS
        assert first.url.params["$top"] == "10"
        assert first.headers["Prefer"] == "odata.maxpagesize=10"
        assert second.url.params["$skiptoken"] == "p2"


class TestOutlookIncrementalSync:
    """Tests for Outlook incremental sync."""

    @pytest.mark.asyncio
    async def test_delta_link_changes(
        self, api: FakeOutlook, make_connector, cancel_token: CancellationToken
    ) -> None:
        """Test removals become deletions and the delta link advances."""
        api.delta_pages = [
            {
                "value": [{"id": "m2", "@removed": {"reason": "deleted"}}, MESSAGE],
                "@odata.deltaLink": f"{GRAPH}/me/mailFolders/inbox/messages/delta?$deltatoken=d2",
            }
        ]
        stored = f"{GRAPH}/me/mailFolders/inbox/messages/delta?$deltatoken=d1"

        changes, result = await make_connector().incremental_sync(
            cancel_token, OutlookCursor(token=stored).encode()
        ).collect()

        assert [(c.change_type, c.document.uri) for c in changes] == [
            (ChangeType.DELETED, "outlook://messages/m2"),
            (ChangeType.UPDATED, "outlook://messages/m1"),
        ]
        assert api.requests[0].url.params["$deltatoken"] == "d1"
        assert OutlookCursor.decode(result.new_cursor).get_token().endswith("$deltatoken=d2")  # type: ignore[union-attr]


class TestOutlookValidate:
    """Tests for Outlook validate."""

    @pytest.mark.asyncio
    async def test_validate_folder(
        self, api: FakeOutlook, make_connector, cancel_token: CancellationToken
    ) -> None:
        """Test validate reads the configured folder."""
        await make_connector(folder_id="archive").validate(cancel_token)
        assert api.requests[0].url.path == "/v1.0/me/mailFolders/archive"
