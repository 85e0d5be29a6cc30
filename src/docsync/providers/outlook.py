"""
Outlook mail connector.

Supports:
- Graph messages delta query on a single mail folder
- Delta link incremental sync with removal tracking
- Conversation hierarchy via parent URIs
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from email.utils import format_datetime
from typing import Any, ClassVar
from urllib.parse import quote

import httpx
from pydantic import Field

from docsync.config import SyncSettings
from docsync.logic.cancellation import CancellationToken
from docsync.logic.credentials import CredentialProvider
from docsync.logic.cursor import SingleTokenCursor
from docsync.logic.models import Capabilities, Page, RawDocument, Source, parse_page_size
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
)

logger = logging.getLogger("docsync.outlook")

DEFAULT_FOLDER = "inbox"

MESSAGE_FIELDS = ",".join(
    [
        "id",
        "subject",
        "from",
        "toRecipients",
        "ccRecipients",
        "receivedDateTime",
        "sentDateTime",
        "body",
        "bodyPreview",
        "conversationId",
        "internetMessageId",
        "isRead",
        "isDraft",
        "importance",
        "hasAttachments",
        "webLink",
    ]
)


class OutlookCursor(SingleTokenCursor):
    """Graph messages delta link."""

    token: str = Field(default="", alias="delta_link")


@dataclass
class OutlookConfig:
    """Outlook source configuration."""

    folder_id: str = DEFAULT_FOLDER
    max_results: int = DEFAULT_PAGE_SIZE

    @classmethod
    def from_source(cls, source: Source) -> "OutlookConfig":
        config = source.config
        return cls(
            folder_id=config.get("folder_id", "").strip() or DEFAULT_FOLDER,
            max_results=parse_page_size(
                config.get("max_results"), DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
            ),
        )


def format_recipients(recipients: list[dict[str, Any]] | None) -> str:
    """Join recipient addresses, falling back to display names."""
    values = []
    for recipient in recipients or []:
        name, address = email_address(recipient)
        if address or name:
            values.append(address or name)
    return ", ".join(values)


def format_mail_date(value: str) -> str:
    """
    Render a Graph timestamp as an RFC 2822 mail date.

    Args:
        value: ISO 8601 timestamp such as "2024-01-20T14:00:00Z".

    Returns:
        Mail-style date, or the input unchanged if it does not parse.
    """
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return format_datetime(parsed)


def build_message_content(message: dict[str, Any]) -> str:
    """Render a message as header lines, a blank line, then the body."""
    lines = []
    if message.get("subject"):
        lines.append(f"Subject: {message['subject']}")

    sender_name, sender_address = email_address(message.get("from"))
    if sender_address:
        sender = f"{sender_name} <{sender_address}>" if sender_name else sender_address
        lines.append(f"From: {sender}")

    to = format_recipients(message.get("toRecipients"))
    if to:
        lines.append(f"To: {to}")
    cc = format_recipients(message.get("ccRecipients"))
    if cc:
        lines.append(f"Cc: {cc}")

    if message.get("receivedDateTime"):
        lines.append(f"Date: {format_mail_date(message['receivedDateTime'])}")

    body = (message.get("body") or {}).get("content") or message.get("bodyPreview", "")
    return "\n".join(lines) + "\n\n" + body


class OutlookConnector(BaseConnector):
    """Connector for Outlook mail in one folder via Graph delta queries."""

    connector_type: ClassVar[str] = "outlook"
    rate_limit: ClassVar[RateLimitConfig] = GRAPH_RATE_LIMIT
    cursor_class: ClassVar[type[OutlookCursor]] = OutlookCursor

    def __init__(
        self,
        source: Source,
        credentials: CredentialProvider,
        settings: SyncSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        super().__init__(source, credentials, settings, http_client, rate_limiter)
        self._config = OutlookConfig.from_source(source)

    @property
    def config(self) -> OutlookConfig:
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
        await self._api.request(
            "GET",
            f"{GRAPH_API}/me/mailFolders/{quote(self._config.folder_id, safe='')}",
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
        headers = max_page_size_header(self._config.max_results)
        continue_from = page_token or resume_token
        if continue_from:
            data = await self._api.get_json(
                continue_from, access_token, cancel_token, headers=headers
            )
        else:
            folder = quote(self._config.folder_id, safe="")
            data = await self._api.get_json(
                f"{GRAPH_API}/me/mailFolders/{folder}/messages/delta",
                access_token,
                cancel_token,
                params={"$select": MESSAGE_FIELDS, "$top": self._config.max_results},
                headers=headers,
            )

        page = delta_page(data)
        if page.resume_token:
            logger.debug(f"📬 [outlook] Delta complete for {self.source_id}")
        return page

    def deleted_uri(self, sub_resource: str, item: dict[str, Any]) -> str | None:
        if is_removed(item) and item.get("id"):
            return f"outlook://messages/{item['id']}"
        return None

    def should_sync(self, sub_resource: str, item: dict[str, Any]) -> bool:
        return bool(item.get("id"))

    def to_document(
        self,
        sub_resource: str,
        item: dict[str, Any],
        content: bytes | None,
    ) -> RawDocument:
        message_id = item["id"]
        conversation_id = item.get("conversationId", "")

        metadata: dict[str, Any] = {
            "message_id": message_id,
            "subject": item.get("subject", ""),
            "conversation_id": conversation_id,
            "folder_id": self._config.folder_id,
            "is_read": item.get("isRead", False),
            "is_draft": item.get("isDraft", False),
            "importance": item.get("importance", ""),
            "has_attachments": item.get("hasAttachments", False),
        }

        sender_name, sender_address = email_address(item.get("from"))
        if sender_address:
            metadata["from"] = sender_address
        if sender_name:
            metadata["from_name"] = sender_name
        for key, field_name in (
            ("received_at", "receivedDateTime"),
            ("sent_at", "sentDateTime"),
            ("web_link", "webLink"),
            ("internet_message_id", "internetMessageId"),
        ):
            if item.get(field_name):
                metadata[key] = item[field_name]

        parent_uri = None
        if conversation_id and conversation_id != message_id:
            parent_uri = f"outlook://conversations/{conversation_id}"

        return RawDocument(
            source_id=self.source_id,
            uri=f"outlook://messages/{message_id}",
            mime_type="message/rfc822",
            content=build_message_content(item).encode("utf-8"),
            metadata=metadata,
            parent_uri=parent_uri,
        )
