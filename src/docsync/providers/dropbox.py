"""
Dropbox connector.

Supports:
- Recursive folder listing via list_folder / list_folder/continue
- Cursor-based incremental sync with deletion tracking
- Content download for text-like files under the size ceiling
"""

import json
import logging
import posixpath
from dataclasses import dataclass, field
from typing import Any, ClassVar

import httpx
from pydantic import Field

from docsync.config import SyncSettings
from docsync.logic.cancellation import CancellationToken
from docsync.logic.credentials import CredentialProvider
from docsync.logic.cursor import SingleTokenCursor
from docsync.logic.exceptions import ProviderError, ResumeTokenExpiredError
from docsync.logic.models import (
    Capabilities,
    ChangeType,
    Page,
    RawDocument,
    Source,
    parse_bool,
    parse_list,
    parse_page_size,
)
from docsync.logic.rate_limiter import DROPBOX_RATE_LIMIT, RateLimitConfig, RateLimiter
from docsync.providers.base import BaseConnector
from docsync.providers.mime import (
    matches_mime_filter,
    mime_type_for_name,
    should_download_content,
)

logger = logging.getLogger("docsync.dropbox")

DROPBOX_API = "https://api.dropboxapi.com/2"
DROPBOX_CONTENT_API = "https://content.dropboxapi.com/2"

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 2000


class DropboxCursor(SingleTokenCursor):
    """Dropbox list_folder cursor."""

    token: str = Field(default="", alias="cursor")


@dataclass
class DropboxConfig:
    """Dropbox source configuration."""

    folder_path: str = ""
    mime_types: list[str] = field(default_factory=list)
    max_results: int = DEFAULT_PAGE_SIZE
    recursive: bool = True

    @classmethod
    def from_source(cls, source: Source) -> "DropboxConfig":
        """
        Parse configuration from a source.

        Args:
            source: Source with a string-to-string config map.

        Returns:
            Parsed configuration with defaults applied.
        """
        config = source.config
        folder_path = config.get("folder_path", "").strip()
        if folder_path and not folder_path.startswith("/"):
            folder_path = "/" + folder_path

        return cls(
            folder_path=folder_path,
            mime_types=parse_list(config.get("mime_types")),
            max_results=parse_page_size(
                config.get("max_results"), DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
            ),
            recursive=parse_bool(config.get("recursive"), True),
        )


def _is_reset_error(error: ProviderError) -> bool:
    # list_folder/continue answers 409 with a "reset" summary for stale cursors
    return error.status_code == 409 and (
        "reset" in error.message or "expired" in error.message
    )


class DropboxConnector(BaseConnector):
    """
    Connector for Dropbox files.

    Lists the configured folder and follows list_folder cursors for
    incremental changes. Folders are skipped; deleted entries become
    deletion changes.
    """

    connector_type: ClassVar[str] = "dropbox"
    rate_limit: ClassVar[RateLimitConfig] = DROPBOX_RATE_LIMIT
    cursor_class: ClassVar[type[DropboxCursor]] = DropboxCursor

    def __init__(
        self,
        source: Source,
        credentials: CredentialProvider,
        settings: SyncSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        super().__init__(source, credentials, settings, http_client, rate_limiter)
        self._config = DropboxConfig.from_source(source)

    @property
    def config(self) -> DropboxConfig:
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
            "POST",
            f"{DROPBOX_API}/users/get_current_account",
            access_token,
            cancel_token,
        )

    async def fetch_page(
        self,
        sub_resource: str,
        access_token: str,
        cancel_token: CancellationToken,
        page_token: str | None = None,
        resume_token: str | None = None,
    ) -> Page:
        """
        List one page of folder entries.

        The first page of a full listing calls list_folder; every other
        page, and the first page of an incremental run, continues from a
        cursor.
        """
        continue_from = page_token or resume_token

        try:
            if continue_from:
                data = await self._api.get_json(
                    f"{DROPBOX_API}/files/list_folder/continue",
                    access_token,
                    cancel_token,
                    method="POST",
                    json={"cursor": continue_from},
                )
            else:
                data = await self._api.get_json(
                    f"{DROPBOX_API}/files/list_folder",
                    access_token,
                    cancel_token,
                    method="POST",
                    json={
                        "path": self._config.folder_path,
                        "recursive": self._config.recursive,
                        "limit": self._config.max_results,
                        "include_deleted": False,
                    },
                )
        except ProviderError as e:
            if continue_from and _is_reset_error(e):
                logger.info(f"🔄 [dropbox] Cursor reset by provider for {self.source_id}")
                raise ResumeTokenExpiredError(self.connector_type, sub_resource) from e
            raise

        cursor = data.get("cursor") or None
        return Page(
            items=data.get("entries", []),
            next_page=cursor if data.get("has_more") else None,
            resume_token=cursor,
        )

    def deleted_uri(self, sub_resource: str, item: dict[str, Any]) -> str | None:
        if item.get(".tag") != "deleted":
            return None
        return f"dropbox://files{item.get('path_lower', '')}"

    def should_sync(self, sub_resource: str, item: dict[str, Any]) -> bool:
        if item.get(".tag") != "file" or not item.get("id"):
            return False
        return matches_mime_filter(
            mime_type_for_name(item.get("name", "")), self._config.mime_types
        )

    def wants_content(self, item: dict[str, Any]) -> bool:
        return should_download_content(mime_type_for_name(item.get("name", "")))

    def content_size(self, item: dict[str, Any]) -> int | None:
        return item.get("size")

    async def fetch_content(
        self,
        item: dict[str, Any],
        access_token: str,
        cancel_token: CancellationToken,
        max_bytes: int,
    ) -> bytes:
        return await self._api.download(
            f"{DROPBOX_CONTENT_API}/files/download",
            access_token,
            cancel_token,
            max_bytes,
            method="POST",
            headers={"Dropbox-API-Arg": json.dumps({"path": item.get("path_lower", "")})},
            item_id=item.get("id"),
        )

    def to_document(
        self,
        sub_resource: str,
        item: dict[str, Any],
        content: bytes | None,
    ) -> RawDocument:
        path_display = item.get("path_display", "")
        return RawDocument(
            source_id=self.source_id,
            uri=f"dropbox://files/{item['id']}",
            mime_type=mime_type_for_name(item.get("name", "")),
            content=content,
            metadata={
                "file_id": item["id"],
                "title": item.get("name", ""),
                "path": path_display,
                "size": item.get("size"),
                "modified_time": item.get("server_modified", ""),
                "rev": item.get("rev", ""),
                "content_hash": item.get("content_hash", ""),
            },
            parent_uri=_parent_uri(path_display),
        )

    def upsert_change_type(self, item: dict[str, Any]) -> ChangeType:
        # list_folder/continue does not distinguish new files from edits
        return ChangeType.CREATED


def _parent_uri(path_display: str) -> str | None:
    if not path_display:
        return None
    parent = posixpath.dirname(path_display)
    if parent in ("", ".", "/"):
        return None
    return f"dropbox://folders{parent}"
