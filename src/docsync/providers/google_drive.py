"""
Google Drive connector.

Supports:
- Files listing, optionally restricted to parent folders
- Changes API incremental sync from a start page token
- Google Docs/Sheets/Slides export to text
- Content download for text-like files under the size ceiling
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

import httpx
from pydantic import Field

from docsync.config import SyncSettings
from docsync.logic.cancellation import CancellationToken
from docsync.logic.credentials import CredentialProvider
from docsync.logic.cursor import SingleTokenCursor
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
from docsync.providers.mime import should_download_content

logger = logging.getLogger("docsync.google_drive")

DRIVE_API = "https://www.googleapis.com/drive/v3"

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000

# Google Workspace MIME types
MIME_GOOGLE_DOC = "application/vnd.google-apps.document"
MIME_GOOGLE_SHEET = "application/vnd.google-apps.spreadsheet"
MIME_GOOGLE_SLIDES = "application/vnd.google-apps.presentation"
MIME_FOLDER = "application/vnd.google-apps.folder"

# Export formats for Workspace files
EXPORT_MIME_TYPES = {
    MIME_GOOGLE_DOC: "text/plain",
    MIME_GOOGLE_SHEET: "text/csv",
    MIME_GOOGLE_SLIDES: "text/plain",
}

FILE_FIELDS = "id, name, mimeType, modifiedTime, size, parents, webViewLink, trashed"


class DriveContentType(str, Enum):
    """Kinds of Drive items a source can opt into."""

    FILES = "files"
    DOCS = "docs"
    SHEETS = "sheets"


DEFAULT_CONTENT_TYPES = [
    DriveContentType.FILES,
    DriveContentType.DOCS,
    DriveContentType.SHEETS,
]


class DriveCursor(SingleTokenCursor):
    """Drive changes start page token."""

    token: str = Field(default="", alias="start_page_token")


@dataclass
class DriveConfig:
    """Google Drive source configuration."""

    content_types: list[DriveContentType] = field(
        default_factory=lambda: list(DEFAULT_CONTENT_TYPES)
    )
    mime_types: list[str] = field(default_factory=list)
    folder_ids: list[str] = field(default_factory=list)
    max_results: int = DEFAULT_PAGE_SIZE

    @classmethod
    def from_source(cls, source: Source) -> "DriveConfig":
        """
        Parse configuration from a source.

        Unknown content types are dropped; an explicit empty selection
        syncs nothing.
        """
        config = source.config
        content_types = list(DEFAULT_CONTENT_TYPES)
        if config.get("content_types"):
            valid = {ct.value for ct in DriveContentType}
            content_types = [
                DriveContentType(value)
                for value in parse_list(config["content_types"])
                if value in valid
            ]

        return cls(
            content_types=content_types,
            mime_types=parse_list(config.get("mime_types")),
            folder_ids=parse_list(config.get("folder_ids")),
            max_results=parse_page_size(
                config.get("max_results"), DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
            ),
        )

    def has_content_type(self, content_type: DriveContentType) -> bool:
        return content_type in self.content_types


def build_folder_query(folder_ids: list[str]) -> str:
    """Build a files.list query matching children of any of the folders."""
    return " or ".join(f"'{folder_id}' in parents" for folder_id in folder_ids)


class GoogleDriveConnector(BaseConnector):
    """
    Connector for Google Drive files.

    A full sync captures the changes start page token before listing, so
    changes made during the listing are picked up by the next incremental
    run.
    """

    connector_type: ClassVar[str] = "google-drive"
    rate_limit: ClassVar[RateLimitConfig] = GOOGLE_RATE_LIMIT
    cursor_class: ClassVar[type[DriveCursor]] = DriveCursor

    def __init__(
        self,
        source: Source,
        credentials: CredentialProvider,
        settings: SyncSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        super().__init__(source, credentials, settings, http_client, rate_limiter)
        self._config = DriveConfig.from_source(source)

    @property
    def config(self) -> DriveConfig:
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
            f"{DRIVE_API}/about",
            access_token,
            cancel_token,
            params={"fields": "user"},
        )

    async def begin_enumeration(
        self,
        sub_resource: str,
        access_token: str,
        cancel_token: CancellationToken,
    ) -> str | None:
        data = await self._api.get_json(
            f"{DRIVE_API}/changes/startPageToken", access_token, cancel_token
        )
        return data.get("startPageToken") or None

    async def fetch_page(
        self,
        sub_resource: str,
        access_token: str,
        cancel_token: CancellationToken,
        page_token: str | None = None,
        resume_token: str | None = None,
    ) -> Page:
        if resume_token:
            return await self._fetch_changes(
                page_token or resume_token, access_token, cancel_token
            )
        return await self._fetch_files(page_token, access_token, cancel_token)

    async def _fetch_files(
        self,
        page_token: str | None,
        access_token: str,
        cancel_token: CancellationToken,
    ) -> Page:
        params: dict[str, Any] = {
            "pageSize": self._config.max_results,
            "fields": f"nextPageToken, files({FILE_FIELDS})",
        }
        if page_token:
            params["pageToken"] = page_token
        if self._config.folder_ids:
            params["q"] = f"({build_folder_query(self._config.folder_ids)})"

        data = await self._api.get_json(
            f"{DRIVE_API}/files", access_token, cancel_token, params=params
        )
        return Page(
            items=data.get("files", []),
            next_page=data.get("nextPageToken") or None,
        )

    async def _fetch_changes(
        self,
        page_token: str,
        access_token: str,
        cancel_token: CancellationToken,
    ) -> Page:
        data = await self._api.get_json(
            f"{DRIVE_API}/changes",
            access_token,
            cancel_token,
            params={
                "pageToken": page_token,
                "pageSize": self._config.max_results,
                "fields": (
                    "nextPageToken, newStartPageToken, "
                    f"changes(fileId, removed, file({FILE_FIELDS}))"
                ),
            },
        )

        items: list[dict[str, Any]] = []
        for change in data.get("changes", []):
            file = change.get("file")
            if change.get("removed") or not file:
                items.append({"id": change.get("fileId", ""), "removed": True})
            else:
                items.append(file)

        logger.debug(f"📂 [google-drive] {len(items)} change(s) on page")
        return Page(
            items=items,
            next_page=data.get("nextPageToken") or None,
            resume_token=data.get("newStartPageToken") or None,
        )

    def deleted_uri(self, sub_resource: str, item: dict[str, Any]) -> str | None:
        if item.get("removed") or item.get("trashed"):
            return f"gdrive://files/{item.get('id', '')}"
        return None

    def should_sync(self, sub_resource: str, item: dict[str, Any]) -> bool:
        mime_type = item.get("mimeType", "")
        if mime_type == MIME_FOLDER or not item.get("id"):
            return False

        if self._config.mime_types and mime_type not in self._config.mime_types:
            return False

        # The changes feed is account-wide; folder scope is enforced here
        if self._config.folder_ids and not set(item.get("parents") or []) & set(
            self._config.folder_ids
        ):
            return False

        if mime_type == MIME_GOOGLE_DOC:
            return self._config.has_content_type(DriveContentType.DOCS)
        if mime_type == MIME_GOOGLE_SHEET:
            return self._config.has_content_type(DriveContentType.SHEETS)
        return self._config.has_content_type(DriveContentType.FILES)

    def wants_content(self, item: dict[str, Any]) -> bool:
        mime_type = item.get("mimeType", "")
        return mime_type in EXPORT_MIME_TYPES or should_download_content(mime_type)

    def content_size(self, item: dict[str, Any]) -> int | None:
        # Drive reports size as a string and omits it for Workspace files
        size = item.get("size")
        if size is None:
            return None
        try:
            return int(size)
        except (TypeError, ValueError):
            return None

    async def fetch_content(
        self,
        item: dict[str, Any],
        access_token: str,
        cancel_token: CancellationToken,
        max_bytes: int,
    ) -> bytes:
        file_id = item["id"]
        export_mime = EXPORT_MIME_TYPES.get(item.get("mimeType", ""))
        if export_mime:
            return await self._api.download(
                f"{DRIVE_API}/files/{file_id}/export",
                access_token,
                cancel_token,
                max_bytes,
                params={"mimeType": export_mime},
                item_id=file_id,
            )
        return await self._api.download(
            f"{DRIVE_API}/files/{file_id}",
            access_token,
            cancel_token,
            max_bytes,
            params={"alt": "media"},
            item_id=file_id,
        )

    def to_document(
        self,
        sub_resource: str,
        item: dict[str, Any],
        content: bytes | None,
    ) -> RawDocument:
        file_id = item["id"]
        name = item.get("name", "")
        mime_type = item.get("mimeType", "")
        parents = item.get("parents") or []

        path = f"/{parents[0]}/{name}" if parents else f"/{name}"

        return RawDocument(
            source_id=self.source_id,
            uri=f"gdrive://files/{file_id}",
            mime_type=EXPORT_MIME_TYPES.get(mime_type, mime_type),
            content=content,
            metadata={
                "file_id": file_id,
                "title": name,
                "path": path,
                "size": self.content_size(item),
                "web_link": item.get("webViewLink", ""),
                "modified_time": item.get("modifiedTime", ""),
            },
            parent_uri=f"gdrive://folders/{parents[0]}" if parents else None,
        )
