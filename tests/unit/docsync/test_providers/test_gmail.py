"""Unit tests for the Gmail connector."""

import base64

import httpx
import pytest

from docsync.config import SyncSettings
from docsync.logic.cancellation import CancellationToken
from docsync.logic.credentials import StaticCredentialProvider
from docsync.logic.models import ChangeType
from docsync.logic.streams import SyncComplete
from docsync.providers.gmail import (
    GmailConfig,
    GmailConnector,
    GmailCursor,
    decode_raw_message,
    history_items,
    should_sync_message,
)

RAW_BYTES = b"From: alice@example.com\r\nSubject: Hello\r\n\r\nHi there?"
RAW = base64.urlsafe_b64encode(RAW_BYTES).decode().rstrip("=")


def message(message_id: str, thread_id: str = "", labels: list[str] | None = None) -> dict:
    return {
        "id": message_id,
        "threadId": thread_id or message_id,
        "labelIds": labels if labels is not None else ["INBOX"],
        "snippet": f"snippet {message_id}",
        "historyId": "120",
        "internalDate": "1705760000000",
        "sizeEstimate": len(RAW_BYTES),
        "raw": RAW,
    }


class FakeGmail:
    """In-memory Gmail API."""

    def __init__(self) -> None:
        self.history_id = "100"
        self.list_pages: list[dict] = []
        self.history_pages: list[httpx.Response] = []
        self.messages: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/gmail/v1/users/me")
        if path == "/profile":
            return httpx.Response(200, json={"historyId": self.history_id})
        if path == "/messages":
            return httpx.Response(200, json=self.list_pages.pop(0))
        if path == "/history":
            return self.history_pages.pop(0)
        if path.startswith("/messages/"):
            found = self.messages.get(path.rsplit("/", 1)[-1])
            if found is None:
                return httpx.Response(404, json={"error": {"code": 404}})
            return httpx.Response(200, json=found)
        return httpx.Response(404, text=f"unexpected {path}")


@pytest.fixture
def api() -> FakeGmail:
    return FakeGmail()


@pytest.fixture
def make_connector(
    api: FakeGmail,
    credentials: StaticCredentialProvider,
    settings: SyncSettings,
    make_source,
):
    """Factory for connectors talking to the fake API."""

    def _make(**config: str) -> GmailConnector:
        client = httpx.AsyncClient(transport=httpx.MockTransport(api))
        return GmailConnector(
            make_source("gmail", **config), credentials, settings, http_client=client
        )

    return _make


class TestGmailConfig:
    """Tests for GmailConfig and message helpers."""

    def test_parsing(self, make_source) -> None:
        """Test labels, query, page size and spam/trash flag."""
        config = GmailConfig.from_source(
            make_source(
                "gmail",
                label_ids="INBOX, Label_1",
                query=" from:alice ",
                max_results="900",
                include_spam_trash="true",
            )
        )

        assert config.label_ids == ["INBOX", "Label_1"]
        assert config.query == "from:alice"
        assert config.max_results == 500
        assert config.include_spam_trash is True

    @pytest.mark.parametrize(
        "labels,config,expected",
        [
            (["INBOX"], GmailConfig(), True),
            (["SPAM"], GmailConfig(), False),
            (["TRASH"], GmailConfig(include_spam_trash=True), True),
            (["INBOX"], GmailConfig(label_ids=["Label_1"]), False),
            (["INBOX", "Label_1"], GmailConfig(label_ids=["Label_1"]), True),
        ],
    )
    def test_should_sync_message(
        self, labels: list[str], config: GmailConfig, expected: bool
    ) -> None:
        """Test spam/trash exclusion and label matching."""
        assert should_sync_message({"labelIds": labels}, config) is expected

    def test_decode_raw_message(self) -> None:
        """Test unpadded base64url decodes and garbage yields empty bytes."""
        assert decode_raw_message(RAW) == RAW_BYTES
        assert decode_raw_message("a") == b""

    def test_history_items(self) -> None:
        """Test history records flatten to the last change per message."""
        records = [
            {"messagesAdded": [{"message": {"id": "m1"}}]},
            {"labelsAdded": [{"message": {"id": "m1"}}, {"message": {"id": "m2"}}]},
            {"messagesDeleted": [{"message": {"id": "m2"}}]},
            {"labelsRemoved": [{"message": {}}]},
        ]

        assert history_items(records) == [
            {"id": "m1", "change": "added"},
            {"id": "m2", "change": "deleted", "deleted": True},
        ]


class TestGmailFullSync:
    """Tests for Gmail full sync."""

    @pytest.mark.asyncio
    async def test_messages_listed_and_fetched(
        self, api: FakeGmail, make_connector, cancel_token: CancellationToken
    ) -> None:
        """Test listed messages are fetched raw and the profile history ID is kept."""
        api.history_id = "150"
        api.list_pages = [
            {"messages": [{"id": "m1"}, {"id": "m2"}], "nextPageToken": "p2"},
            {"messages": [{"id": "m3"}]},
        ]
        api.messages = {
            "m1": message("m1"),
            "m2": message("m2", thread_id="t1"),
            "m3": message("m3", labels=["SPAM"]),
        }

        docs, result = await make_connector(query="has:attachment").full_sync(
            cancel_token
        ).collect()

        assert [d.uri for d in docs] == ["gmail://messages/m1", "gmail://messages/m2"]
        first, second = docs
        assert first.mime_type == "message/rfc822"
        assert first.content == RAW_BYTES
        assert first.parent_uri is None
        assert first.metadata["labels"] == ["INBOX"]
        assert first.metadata["history_id"] == "120"
        assert first.metadata["internal_date"] == 1705760000000
        assert second.parent_uri == "gmail://threads/t1"

        assert isinstance(result, SyncComplete)
        # Spam message dropped after fetch
        assert result.stats.skipped == 1
        assert GmailCursor.decode(result.new_cursor).get_token() == "150"

        listings = [r for r in api.requests if r.url.path.endswith("/messages")]
        assert listings[0].url.params["q"] == "has:attachment"
        assert listings[0].url.params["includeSpamTrash"] == "false"
        assert listings[1].url.params["pageToken"] == "p2"
        fetch = next(r for r in api.requests if r.url.path.endswith("/messages/m1"))
        assert fetch.url.params["format"] == "raw"

    @pytest.mark.asyncio
    async def test_label_filter(
        self, api: FakeGmail, make_connector, cancel_token: CancellationToken
    ) -> None:
        """Test configured labels are sent to the listing and checked on fetch."""
        api.list_pages = [{"messages": [{"id": "m1"}, {"id": "m2"}]}]
        api.messages = {
            "m1": message("m1", labels=["INBOX", "Label_1"]),
            "m2": message("m2", labels=["INBOX"]),
        }

        docs, _ = await make_connector(label_ids="Label_1").full_sync(cancel_token).collect()

        assert [d.uri for d in docs] == ["gmail://messages/m1"]
        listing = next(r for r in api.requests if r.url.path.endswith("/messages"))
        assert listing.url.params.get_list("labelIds") == ["Label_1"]

    @pytest.mark.asyncio
    async def test_oversized_message_has_no_content(
        self,
        api: FakeGmail,
        credentials: StaticCredentialProvider,
        make_source,
        cancel_token: CancellationToken,
    ) -> None:
        """Test messages above the size ceiling are emitted without content."""
        api.list_pages = [{"messages": [{"id": "m1"}]}]
        api.messages = {"m1": message("m1")}
        connector = GmailConnector(
            make_source("gmail"),
            credentials,
            SyncSettings(_env_file=None, max_content_size_bytes=10),  # type: ignore[call-arg]
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(api)),
        )

        docs, _ = await connector.full_sync(cancel_token).collect()

        assert docs[0].content is None
        assert docs[0].metadata["size"] == len(RAW_BYTES)


class TestGmailIncrementalSync:
    """Tests for Gmail history sync."""

    @pytest.mark.asyncio
    async def test_history_changes(
        self, api: FakeGmail, make_connector, cancel_token: CancellationToken
    ) -> None:
        """Test added, label-edited and deleted messages map to change types."""
        api.history_pages = [
            httpx.Response(
                200,
                json={
                    "history": [
                        {"messagesAdded": [{"message": {"id": "m1"}}]},
                        {"labelsAdded": [{"message": {"id": "m2"}}]},
                        {"messagesDeleted": [{"message": {"id": "m3"}}]},
                    ],
                    "nextPageToken": "h2",
                    "historyId": "130",
                },
            ),
            httpx.Response(200, json={"history": [], "historyId": "140"}),
        ]
        api.messages = {"m1": message("m1"), "m2": message("m2")}

        changes, result = await make_connector(label_ids="INBOX").incremental_sync(
            cancel_token, GmailCursor(token="100").encode()
        ).collect()

        assert [(c.change_type, c.document.uri) for c in changes] == [
            (ChangeType.CREATED, "gmail://messages/m1"),
            (ChangeType.UPDATED, "gmail://messages/m2"),
            (ChangeType.DELETED, "gmail://messages/m3"),
        ]
        assert GmailCursor.decode(result.new_cursor).get_token() == "140"  # type: ignore[union-attr]

        first, second = [r for r in api.requests if r.url.path.endswith("/history")]
        assert first.url.params["startHistoryId"] == "100"
        assert first.url.params["labelId"] == "INBOX"
        assert second.url.params["pageToken"] == "h2"

    @pytest.mark.asyncio
    async def test_vanished_message_skipped(
        self, api: FakeGmail, make_connector, cancel_token: CancellationToken
    ) -> None:
        """Test a message deleted before it could be fetched is skipped."""
        api.history_pages = [
            httpx.Response(
                200,
                json={
                    "history": [{"messagesAdded": [{"message": {"id": "gone"}}]}],
                    "historyId": "101",
                },
            )
        ]

        changes, result = await make_connector().incremental_sync(
            cancel_token, GmailCursor(token="100").encode()
        ).collect()

        assert changes == []
        assert isinstance(result, SyncComplete)
        assert result.stats.skipped == 1

    @pytest.mark.asyncio
    async def test_expired_history_relists(
        self, api: FakeGmail, make_connector, cancel_token: CancellationToken
    ) -> None:
        """Test a 404 on the history ID re-enumerates the mailbox."""
        api.history_id = "500"
        api.history_pages = [httpx.Response(404, json={"error": {"code": 404}})]
        api.list_pages = [{"messages": [{"id": "m1"}]}]
        api.messages = {"m1": message("m1")}

        changes, result = await make_connector().incremental_sync(
            cancel_token, GmailCursor(token="1").encode()
        ).collect()

        assert isinstance(result, SyncComplete)
        assert [c.document.uri for c in changes] == ["gmail://messages/m1"]
        assert result.stats.retried_sub_resources == ("root",)
        assert GmailCursor.decode(result.new_cursor).get_token() == "500"
