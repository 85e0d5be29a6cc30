"""
OneDrive connector.

Supports:
- Graph driveItem delta queries on the drive root or on selected folders
- Per-folder delta link incremental sync
- Deleted item tracking
- Content download for text-like files under the size ceiling
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
from docsync.logic.cursor import ROOT_SUB_RESOURCE, TokenMapCursor
from docsync.logic.models import (
    Capabilities,
    Page,
    RawDocument,
    Source,
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
    is_removed,
)
from docsync.providers.mime import (
    DEFAULT_MIME_TYPE,
    matches_mime_filter,
    should_download_content,
)

logger = logging.getLogger("docsync.onedrive")


class OneDriveCursor(TokenMapCursor):
    """Graph delta link per synced folder."""

    tokens: dict[str, str] = Field(default_factory=dict, alias="delta_links")


@dataclass
class OneDriveConfig:
    """OneDrive source configuration."""

    drive_id: str = ""
    folder_ids: list[str] = field(default_factory=list)
    mime_types: list[str] = field(default_factory=list)
    max_results: int = DEFAULT_PAGE_SIZE

    @classmethod
    def from_source(cls, source: Source) -> "OneDriveConfig":
        config = source.config
        return cls(
            drive_id=config.get("drive_id", "").strip(),
            folder_ids=parse_list(config.get("folder_ids")),
            mime_types=parse_list(config.get("mime_types")),
            max_results=parse_page_size(
                config.get("max_results"), DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
            ),
        )

    @property
    def drive_url(self) -> str:
        """Graph URL of the configured drive, or the signed-in user's drive."""
        if self.drive_id:
            return f"{GRAPH_API}/drives/{quote(self.drive_id, safe='')}"
        return f"{GRAPH_API}/me/drive"


def item_mime_type(item: dict[str, Any]) -> str:
    return (item.get("file") or {}).get("mimeType") or DEFAULT_MIME_TYPE


def item_path(item: dict[str, Any]) -> str:
    """Build a display path from the parent reference, e.g. "/drive/root:/Docs/a.txt"."""
    parent_path = (item.get("parentReference") or {}).get("path", "")
    name = item.get("name", "")
    return f"{parent_path}/{name}" if parent_path else f"/{name}"


class OneDriveConnector(BaseConnector):
    """
    Connector for OneDrive files via Graph delta queries.

    Without folder_ids the whole drive is one "root" sub-resource; with
    folder_ids each folder keeps its own delta link and fails on its own.
    """

    connector_type: ClassVar[str] = "onedrive"
    rate_limit: ClassVar[RateLimitConfig] = GRAPH_RATE_LIMIT
    cursor_class: ClassVar[type[OneDriveCursor]] = OneDriveCursor
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
        self._config = OneDriveConfig.from_source(source)

    @property
    def config(self) -> OneDriveConfig:
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
        await self._api.request("GET", self._config.drive_url, access_token, cancel_token)

    async def list_sub_resources(
        self, access_token: str, cancel_token: CancellationToken
    ) -> list[str]:
        return list(self._config.folder_ids) or [ROOT_SUB_RESOURCE]

    def _delta_url(self, sub_resource: str) -> str:
        if sub_resource == ROOT_SUB_RESOURCE and not self._config.folder_ids:
            return f"{self._config.drive_url}/root/delta"
        return f"{self._config.drive_url}/items/{quote(sub_resource, safe='')}/delta"

    async def fetch_page(
        self,
        sub_resource: str,
        access_token: str,
        cancel_token: CancellationToken,
        page_token: str | None = None,
        resume_token: str | None = None,
    ) -> Page:
        continue_from = page_token or resume_token
        if continue_from:
            data = await self._api.get_json(continue_from, access_token, cancel_token)
        else:
            data = await self._api.get_json(
                self._delta_url(sub_resource),
                access_token,
                cancel_token,
                params={"$top": self._config.max_results},
            )

        page = delta_page(data)
        if page.resume_token:
            logger.debug(f"📂 [onedrive] Delta complete for {sub_resource}")
        return page

    def deleted_uri(self, sub_resource: str, item: dict[str, Any]) -> str | None:
        if (item.get("deleted") or is_removed(item)) and item.get("id"):
            return f"onedrive://files/{item['id']}"
        return None

    def should_sync(self, sub_resource: str, item: dict[str, Any]) -> bool:
        if not item.get("id") or "folder" in item or "file" not in item:
            return False
        return matches_mime_filter(item_mime_type(item), self._config.mime_types)

    def wants_content(self, item: dict[str, Any]) -> bool:
        return should_download_content(item_mime_type(item))

    def content_size(self, item: dict[str, Any]) -> int | None:
        return item.get("size")

    async def fetch_content(
        self,
        item: dict[str, Any],
        access_token: str,
        cancel_token: CancellationToken,
        max_bytes: int,
    ) -> bytes:
        # /content answers with a redirect to a pre-authenticated location
        return await self._api.download(
            f"{self._config.drive_url}/items/{quote(item['id'], safe='')}/content",
            access_token,
            cancel_token,
            max_bytes,
            item_id=item["id"],
            follow_redirects=True,
        )

    def to_document(
        self,
        sub_resource: str,
        item: dict[str, Any],
        content: bytes | None,
    ) -> RawDocument:
        file_id = item["id"]
        parent = item.get("parentReference") or {}

        metadata: dict[str, Any] = {
            "file_id": file_id,
            "title": item.get("name", ""),
            "path": item_path(item),
            "size": item.get("size"),
            "web_link": item.get("webUrl", ""),
            "modified_time": item.get("lastModifiedDateTime", ""),
            "created_time": item.get("createdDateTime", ""),
        }
        if parent:
            metadata["parent_id"] = parent.get("id", "")
            metadata["drive_id"] = parent.get("driveId", "")
            metadata["drive_type"] = parent.get("driveType", "")

        return RawDocument(
            source_id=self.source_id,
            uri=f"onedrive://files/{file_id}",
            mime_type=item_mime_type(item),
            content=content,
            metadata=metadata,
            parent_uri=f"onedrive://folders/{parent['id']}" if parent.get("id") else None,
        )
