"""
Gmail connector.

Supports:
- Message listing filtered by labels and a search query
- History API incremental sync from the profile history ID
- Raw RFC 2822 message content
- Thread hierarchy via parent URIs
"""

import base64
import logging
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
from docsync.logic.rate_limiter import GOOGLE_RATE_LIMIT, RateLimitConfig, RateLimiter
from docsync.providers.base import BaseConnector

logger = logging.getLogger("docsync.gmail")

GMAIL_API = "https://gmail.googleapis.com/gmail/v1/users/me"

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 500

SPAM_TRASH_LABELS = frozenset({"SPAM", "TRASH"})


class GmailCursor(SingleTokenCursor):
    """Gmail mailbox history ID."""

    token: str = Field(default="", alias="history_id")


@dataclass
class GmailConfig:
    """Gmail source configuration."""

    label_ids: list[str] = field(default_factory=list)
    query: str = ""
    max_results: int = DEFAULT_PAGE_SIZE
    include_spam_trash: bool = False

    @classmethod
    def from_source(cls, source: Source) -> "GmailConfig":
        config = source.config
        return cls(
            label_ids=parse_list(config.get("label_ids")),
            query=config.get("query", "").strip(),
            max_results=parse_page_size(
                config.get("max_results"), DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
            ),
            include_spam_trash=parse_bool(config.get("include_spam_trash"), False),
        )


def should_sync_message(message: dict[str, Any], config: GmailConfig) -> bool:
    """
    Check a message's labels against the configuration.

    Spam and trash are excluded unless include_spam_trash is set; with
    label_ids configured, the message must carry at least one of them.
    """
    labels = set(message.get("labelIds") or [])
    if not config.include_spam_trash and labels & SPAM_TRASH_LABELS:
        return False
    if config.label_ids:
        return bool(labels & set(config.label_ids))
    return True


def decode_raw_message(raw: str) -> bytes:
    """
    Decode a base64url "raw" message body.

    Returns:
        Message bytes, or b"" if the payload is not valid base64.
    """
    try:
        return base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4))
    except ValueError:
        return b""


def history_items(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Flatten history records into one item per message change.

    Added messages carry change "added", label edits "labels"; deletions
    are marked deleted. A message keeps only its last change on the page.
    """
    changes: dict[str, dict[str, Any]] = {}
    for record in records:
        for key, change in (
            ("messagesAdded", "added"),
            ("messagesDeleted", "deleted"),
            ("labelsAdded", "labels"),
            ("labelsRemoved", "labels"),
        ):
            for entry in record.get(key, []):
                message_id = (entry.get("message") or {}).get("id")
                if not message_id:
                    continue
                if change == "labels" and changes.get(message_id, {}).get("change") == "added":
                    continue
                item = {"id": message_id, "change": change}
                if change == "deleted":
                    item["deleted"] = True
                changes.pop(message_id, None)
                changes[message_id] = item
    return list(changes.values())


class GmailConnector(BaseConnector):
    """
    Connector for Gmail messages.

    A full sync records the profile history ID before listing, so mail
    arriving during the listing is picked up by the next incremental run.
    """

    connector_type: ClassVar[str] = "gmail"
    rate_limit: ClassVar[RateLimitConfig] = GOOGLE_RATE_LIMIT
    cursor_class: ClassVar[type[GmailCursor]] = GmailCursor

    def __init__(
        self,
        source: Source,
        credentials: CredentialProvider,
        settings: SyncSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        super().__init__(source, credentials, settings, http_client, rate_limiter)
        self._config = GmailConfig.from_source(source)

    @property
    def config(self) -> GmailConfig:
        return self._config

    @property
    def capabilities(self) -> Capabilities:
        return Capabilities(
            supports_incremental=True,
            supports_hierarchy=True,
            supports_cursor_return=True,
            supports_rate_limiting=True,
            supports_pagination=True,
        )

    async def validate_request(
        self, access_token: str, cancel_token: CancellationToken
    ) -> None:
        await self._api.request("GET", f"{GMAIL_API}/profile", access_token, cancel_token)

    async def begin_enumeration(
        self,
        sub_resource: str,
        access_token: str,
        cancel_token: CancellationToken,
    ) -> str | None:
        data = await self._api.get_json(f"{GMAIL_API}/profile", access_token, cancel_token)
        history_id = data.get("historyId")
        return str(history_id) if history_id else None

    async def fetch_page(
        self,
        sub_resource: str,
        access_token: str,
        cancel_token: CancellationToken,
        page_token: str | None = None,
        resume_token: str | None = None,
    ) -> Page:
        if resume_token:
            return await self._fetch_history(
                resume_token, page_token, sub_resource, access_token, cancel_token
            )

        params: dict[str, Any] = {
            "maxResults": self._config.max_results,
            "includeSpamTrash": str(self._config.include_spam_trash).lower(),
        }
        if self._config.label_ids:
            params["labelIds"] = self._config.label_ids
        if self._config.query:
            params["q"] = self._config.query
        if page_token:
            params["pageToken"] = page_token

        data = await self._api.get_json(
            f"{GMAIL_API}/messages", access_token, cancel_token, params=params
        )
        return Page(
            items=data.get("messages", []),
            next_page=data.get("nextPageToken") or None,
        )

    async def _fetch_history(
        self,
        start_history_id: str,
        page_token: str | None,
        sub_resource: str,
        access_token: str,
        cancel_token: CancellationToken,
    ) -> Page:
        params: dict[str, Any] = {
            "startHistoryId": start_history_id,
            "maxResults": self._config.max_results,
        }
        if self._config.label_ids:
            # History filters on a single label
            params["labelId"] = self._config.label_ids[0]
        if page_token:
            params["pageToken"] = page_token

        try:
            data = await self._api.get_json(
                f"{GMAIL_API}/history", access_token, cancel_token, params=params
            )
        except ProviderError as e:
            # A history ID older than the retained window answers 404
            if e.status_code == 404:
                logger.info(f"🔄 [gmail] History ID expired for {self.source_id}")
                raise ResumeTokenExpiredError(self.connector_type, sub_resource) from e
            raise

        history_id = data.get("historyId")
        return Page(
            items=history_items(data.get("history", [])),
            next_page=data.get("nextPageToken") or None,
            resume_token=str(history_id) if history_id else None,
        )

    def deleted_uri(self, sub_resource: str, item: dict[str, Any]) -> str | None:
        if item.get("deleted") and item.get("id"):
            return f"gmail://messages/{item['id']}"
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
        """Fetch the raw message; labels are only known after this call."""
        try:
            message = await self._api.get_json(
                f"{GMAIL_API}/messages/{item['id']}",
                access_token,
                cancel_token,
                params={"format": "raw"},
            )
        except ProviderError as e:
            if e.status_code == 404:
                logger.debug(f"📭 [gmail] Message {item['id']} no longer exists")
                return None
            raise

        if not should_sync_message(message, self._config):
            return None
        return {**message, "change": item.get("change", "")}

    def upsert_change_type(self, item: dict[str, Any]) -> ChangeType:
        if item.get("change") == "added":
            return ChangeType.CREATED
        return ChangeType.UPDATED

    def to_document(
        self,
        sub_resource: str,
        item: dict[str, Any],
        content: bytes | None,
    ) -> RawDocument:
        message_id = item["id"]
        thread_id = item.get("threadId", "")

        metadata: dict[str, Any] = {
            "message_id": message_id,
            "thread_id": thread_id,
            "labels": list(item.get("labelIds") or []),
            "snippet": item.get("snippet", ""),
        }
        if item.get("historyId"):
            metadata["history_id"] = str(item["historyId"])
        if item.get("internalDate"):
            metadata["internal_date"] = int(item["internalDate"])
        if item.get("sizeEstimate") is not None:
            metadata["size"] = item["sizeEstimate"]

        raw = decode_raw_message(item.get("raw", ""))
        max_size = self._settings.max_content_size_bytes

        parent_uri = None
        if thread_id and thread_id != message_id:
            parent_uri = f"gmail://threads/{thread_id}"

        return RawDocument(
            source_id=self.source_id,
            uri=f"gmail://messages/{message_id}",
            mime_type="message/rfc822",
            content=raw if len(raw) <= max_size else None,
            metadata=metadata,
            parent_uri=parent_uri,
        )
