"""Unit tests for the Dropbox connector."""

import json

import httpx
import pytest

from docsync.config import SyncSettings
from docsync.logic.cancellation import CancellationToken
from docsync.logic.credentials import StaticCredentialProvider
from docsync.logic.exceptions import AuthInvalidError
from docsync.logic.models import ChangeType
from docsync.logic.streams import SyncComplete, SyncFailure
from docsync.providers.dropbox import DropboxConfig, DropboxConnector, DropboxCursor


class FakeDropbox:
    """In-memory Dropbox API answering list_folder, continue and download."""

    def __init__(self) -> None:
        self.list_responses: list[httpx.Response] = []
        self.continue_responses: list[httpx.Response] = []
        self.files: dict[str, bytes] = {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/2/users/get_current_account":
            return httpx.Response(200, json={"account_id": "dbid:1"})
        if path == "/2/files/list_folder":
            return self.list_responses.pop(0)
        if path == "/2/files/list_folder/continue":
            return self.continue_responses.pop(0)
        if path == "/2/files/download":
            arg = json.loads(request.headers["Dropbox-API-Arg"])
            return httpx.Response(200, content=self.files[arg["path"]])
        return httpx.Response(404, text=f"unexpected {path}")

    def bodies(self, path: str) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path == path]


def file_entry(file_id: str, path: str, size: int = 5) -> dict:
    return {
        ".tag": "file",
        "id": file_id,
        "name": path.rsplit("/", 1)[-1],
        "path_lower": path.lower(),
        "path_display": path,
        "size": size,
        "server_modified": "2024-01-20T14:00:00Z",
        "rev": "015",
        "content_hash": "abc",
    }


@pytest.fixture
def api() -> FakeDropbox:
    return FakeDropbox()


@pytest.fixture
def make_connector(
    api: FakeDropbox,
    credentials: StaticCredentialProvider,
    settings: SyncSettings,
    make_source,
):
    """Factory for connectors talking to the fake API."""

    def _make(**config: str) -> DropboxConnector:
        client = httpx.AsyncClient(transport=httpx.MockTransport(api))
        return DropboxConnector(
            make_source("dropbox", **config), credentials, settings, http_client=client
        )

    return _make


class TestDropboxConfig:
    """Tests for DropboxConfig."""

    def test_defaults(self, make_source) -> None:
        """Test default configuration values."""
        config = DropboxConfig.from_source(make_source("dropbox"))

        assert config.folder_path == ""
        assert config.max_results == 100
        assert config.recursive is True
        assert config.mime_types == []

    def test_parsing(self, make_source) -> None:
        """Test folder normalisation and page size capping."""
        config = DropboxConfig.from_source(
            make_source(
                "dropbox",
                folder_path="Docs",
                max_results="5000",
                recursive="false",
                mime_types="text/plain, application/pdf",
            )
        )

        assert config.folder_path == "/Docs"
        assert config.max_results == 2000
        assert config.recursive is False
        assert config.mime_types == ["text/plain", "application/pdf"]

    @pytest.mark.parametrize("value", ["0", "-3", "lots"])
    def test_bad_page_size_falls_back(self, make_source, value: str) -> None:
        """Test invalid page sizes use the default."""
        config = DropboxConfig.from_source(make_source("dropbox", max_results=value))
        assert config.max_results == 100


class TestDropboxFullSync:
    """Tests for Dropbox full sync."""

    @pytest.mark.asyncio
    async def test_lists_all_pages(
        self, api: FakeDropbox, make_connector, cancel_token: CancellationToken
    ) -> None:
        """Test files are listed across pages and text content downloaded."""
        api.list_responses.append(
            httpx.Response(
                200,
                json={
                    "entries": [
                        file_entry("id:1", "/Docs/a.txt"),
                        {".tag": "folder", "id": "id:f", "name": "Docs", "path_lower": "/docs"},
                        file_entry("id:2", "/photo.png"),
                    ],
                    "cursor": "c1",
                    "has_more": True,
                },
            )
        )
        api.continue_responses.append(
            httpx.Response(
                200,
                json={"entries": [file_entry("id:3", "/b.md")], "cursor": "c2", "has_more": False},
            )
        )
        api.files = {"/docs/a.txt": b"hello", "/b.md": b"# title"}
        connector = make_connector()

        docs, result = await connector.full_sync(cancel_token).collect()

        assert [d.uri for d in docs] == [
            "dropbox://files/id:1",
            "dropbox://files/id:2",
            "dropbox://files/id:3",
        ]
        a, png, md = docs
        assert a.content == b"hello"
        assert a.mime_type == "text/plain"
        assert a.parent_uri == "dropbox://folders/Docs"
        assert a.metadata["path"] == "/Docs/a.txt"
        assert a.metadata["rev"] == "015"
        assert png.content is None
        assert png.parent_uri is None
        assert md.content == b"# title"

        assert isinstance(result, SyncComplete)
        assert DropboxCursor.decode(result.new_cursor).get_token() == "c2"
        assert api.bodies("/2/files/list_folder") == [
            {"path": "", "recursive": True, "limit": 100, "include_deleted": False}
        ]
        assert api.bodies("/2/files/list_folder/continue") == [{"cursor": "c1"}]
        assert api.requests[0].headers["Authorization"] == "Bearer test_token"

    @pytest.mark.asyncio
    async def test_mime_filter(
        self, api: FakeDropbox, make_connector, cancel_token: CancellationToken
    ) -> None:
        """Test configured MIME types restrict synced files."""
        api.list_responses.append(
            httpx.Response(
                200,
                json={
                    "entries": [file_entry("id:1", "/a.txt"), file_entry("id:2", "/b.pdf")],
                    "cursor": "c1",
                    "has_more": False,
                },
            )
        )
        api.files = {"/a.txt": b"hi"}

        docs, result = await make_connector(mime_types="text/").full_sync(cancel_token).collect()

        assert [d.uri for d in docs] == ["dropbox://files/id:1"]
        assert result.stats.skipped == 1  # type: ignore[union-attr]


class TestDropboxIncrementalSync:
    """Tests for Dropbox incremental sync."""

    @pytest.mark.asyncio
    async def test_changes(
        self, api: FakeDropbox, make_connector, cancel_token: CancellationToken
    ) -> None:
        """Test deletions and new files from list_folder/continue."""
        api.continue_responses.append(
            httpx.Response(
                200,
                json={
                    "entries": [
                        {".tag": "deleted", "name": "old.txt", "path_lower": "/docs/old.txt"},
                        file_entry("id:9", "/new.png"),
                    ],
                    "cursor": "c3",
                    "has_more": False,
                },
            )
        )
        cursor = DropboxCursor(token="c2").encode()

        changes, result = await make_connector().incremental_sync(cancel_token, cursor).collect()

        deleted, created = changes
        assert deleted.change_type == ChangeType.DELETED
        assert deleted.document.uri == "dropbox://files/docs/old.txt"
        assert created.change_type == ChangeType.CREATED
        assert created.document.uri == "dropbox://files/id:9"
        assert DropboxCursor.decode(result.new_cursor).get_token() == "c3"  # type: ignore[union-attr]
        assert api.bodies("/2/files/list_folder/continue") == [{"cursor": "c2"}]

    @pytest.mark.asyncio
    async def test_reset_cursor_relists(
        self, api: FakeDropbox, make_connector, cancel_token: CancellationToken
    ) -> None:
        """Test a reset cursor is re-enumerated from a fresh listing."""
        api.continue_responses.append(
            httpx.Response(409, json={"error_summary": "reset/..", "error": {".tag": "reset"}})
        )
        api.list_responses.append(
            httpx.Response(
                200,
                json={"entries": [file_entry("id:1", "/a.png")], "cursor": "fresh", "has_more": False},
            )
        )

        changes, result = await make_connector().incremental_sync(
            cancel_token, DropboxCursor(token="stale").encode()
        ).collect()

        assert isinstance(result, SyncComplete)
        assert [c.document.uri for c in changes] == ["dropbox://files/id:1"]
        assert result.stats.retried_sub_resources == ("root",)
        assert DropboxCursor.decode(result.new_cursor).get_token() == "fresh"

    @pytest.mark.asyncio
    async def test_other_conflict_fails(
        self, api: FakeDropbox, make_connector, cancel_token: CancellationToken
    ) -> None:
        """Test a 409 that is not a reset fails the run."""
        api.continue_responses.append(
            httpx.Response(409, json={"error_summary": "path/not_found/"})
        )

        _, result = await make_connector().incremental_sync(
            cancel_token, DropboxCursor(token="c").encode()
        ).collect()

        assert isinstance(result, SyncFailure)
        assert all(r.url.path != "/2/files/list_folder" for r in api.requests)


class TestDropboxValidate:
    """Tests for Dropbox validate."""

    @pytest.mark.asyncio
    async def test_validate(
        self, api: FakeDropbox, make_connector, cancel_token: CancellationToken
    ) -> None:
        """Test validate calls the account endpoint."""
        await make_connector().validate(cancel_token)
        assert api.requests[0].url.path == "/2/users/get_current_account"
        assert api.requests[0].method == "POST"

    @pytest.mark.asyncio
    async def test_validate_rejected(
        self, settings: SyncSettings, make_source, cancel_token: CancellationToken
    ) -> None:
        """Test a 401 surfaces AuthInvalidError."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(401)))
        connector = DropboxConnector(
            make_source("dropbox"), StaticCredentialProvider("bad"), settings, http_client=client
        )

        with pytest.raises(AuthInvalidError):
            await connector.validate(cancel_token)

    def test_capabilities(self, make_connector) -> None:
        """Test declared capabilities."""
        caps = make_connector().capabilities
        assert caps.supports_incremental
        assert caps.supports_hierarchy
        assert not caps.supports_watch
