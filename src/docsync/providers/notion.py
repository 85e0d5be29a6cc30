"""
Notion connector.

Supports:
- Workspace pages through the search API ("pages" sub-resource)
- Database rows through database queries (one "database:<id>" sub-resource
  per shared database)
- Per-sub-resource last-edited watermarks for incremental sync
- Page body rendering from blocks, plus optional page comments
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar

import httpx
from pydantic import Field

from docsync.config import SyncSettings
from docsync.logic.cancellation import CancellationToken
from docsync.logic.credentials import CredentialProvider
from docsync.logic.cursor import TokenMapCursor
from docsync.logic.exceptions import (
    AuthInvalidError,
    ConfigurationError,
    ProviderError,
    SyncCancelledError,
)
from docsync.logic.models import (
    Capabilities,
    Page,
    RawDocument,
    Source,
    parse_bool,
    parse_list,
    parse_page_size,
)
from docsync.logic.rate_limiter import NOTION_RATE_LIMIT, RateLimitConfig, RateLimiter
from docsync.providers.base import BaseConnector

logger = logging.getLogger("docsync.notion")

NOTION_API = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"
NOTION_HEADERS = {"Notion-Version": NOTION_VERSION}

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 100
DEFAULT_MAX_BLOCK_DEPTH = 10

PAGES_SUB_RESOURCE = "pages"
DATABASE_PREFIX = "database:"

MIME_NOTION_PAGE = "application/vnd.notion.page+json"
MIME_NOTION_DATABASE = "application/vnd.notion.database+json"
MIME_NOTION_DATABASE_ITEM = "application/vnd.notion.database-item+json"

CONTENT_TYPES = ("pages", "databases")

# Blocks rendered as a prefix followed by their rich text
_TEXT_BLOCKS = {
    "paragraph": ("", "\n\n"),
    "heading_1": ("# ", "\n\n"),
    "heading_2": ("## ", "\n\n"),
    "heading_3": ("### ", "\n\n"),
    "bulleted_list_item": ("- ", "\n"),
    "numbered_list_item": ("1. ", "\n"),
    "toggle": ("", "\n"),
    "quote": ("> ", "\n\n"),
}

_MEDIA_BLOCKS = {
    "image": "Image",
    "video": "Video",
    "file": "File",
    "pdf": "PDF",
    "audio": "Audio",
}


class NotionCursor(TokenMapCursor):
    """Last-edited watermark per sub-resource."""

    tokens: dict[str, str] = Field(default_factory=dict, alias="watermarks")


@dataclass
class NotionConfig:
    """Notion source configuration."""

    content_types: list[str] = field(default_factory=lambda: list(CONTENT_TYPES))
    include_comments: bool = True
    max_block_depth: int = DEFAULT_MAX_BLOCK_DEPTH
    page_size: int = DEFAULT_PAGE_SIZE

    @classmethod
    def from_source(cls, source: Source) -> "NotionConfig":
        """
        Parse configuration from a source.

        Raises:
            ConfigurationError: If content_types names nothing syncable or
                max_block_depth is not a positive integer.
        """
        config = source.config

        content_types = list(CONTENT_TYPES)
        if config.get("content_types"):
            content_types = [
                value for value in parse_list(config["content_types"]) if value in CONTENT_TYPES
            ]
            if not content_types:
                raise ConfigurationError(
                    source.type,
                    f"content_types {config['content_types']!r} selects neither "
                    "pages nor databases",
                )

        max_block_depth = DEFAULT_MAX_BLOCK_DEPTH
        if config.get("max_block_depth"):
            try:
                max_block_depth = int(config["max_block_depth"].strip())
            except ValueError:
                max_block_depth = 0
            if max_block_depth <= 0:
                raise ConfigurationError(
                    source.type,
                    f"max_block_depth must be a positive integer, got "
                    f"{config['max_block_depth']!r}",
                )

        return cls(
            content_types=content_types,
            include_comments=parse_bool(config.get("include_comments"), True),
            max_block_depth=max_block_depth,
            page_size=parse_page_size(config.get("page_size"), DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE),
        )

    @property
    def syncs_pages(self) -> bool:
        return "pages" in self.content_types

    @property
    def syncs_databases(self) -> bool:
        return "databases" in self.content_types


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_watermark(moment: datetime) -> str:
    """
    Format a moment as a Notion timestamp floored to the minute.

    Notion reports last_edited_time at minute precision, so an edit made
    during the run still compares on or after the stored watermark.
    """
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:00.000Z")


def rich_text(segments: list[dict[str, Any]] | None) -> str:
    """Concatenate the plain text of rich text segments."""
    return "".join(segment.get("plain_text", "") for segment in segments or [])


def _file_url(value: dict[str, Any]) -> str:
    for kind in ("file", "external"):
        url = (value.get(kind) or {}).get("url")
        if url:
            return url
    return ""


def render_block(block: dict[str, Any]) -> str:
    """
    Render one block as markdown-flavoured text.

    Structural blocks (columns, tables, synced blocks) render nothing;
    their children carry the text.
    """
    block_type = block.get("type", "")
    value = block.get(block_type) or {}

    if block_type in _TEXT_BLOCKS:
        prefix, suffix = _TEXT_BLOCKS[block_type]
        return f"{prefix}{rich_text(value.get('rich_text'))}{suffix}"

    if block_type in _MEDIA_BLOCKS:
        label = _MEDIA_BLOCKS[block_type]
        caption = rich_text(value.get("caption"))
        url = _file_url(value)
        if block_type == "image":
            return f"![{caption or label}]({url})\n\n"
        if caption:
            return f"[{label}: {caption}]({url})\n\n"
        return f"[{label}]({url})\n\n"

    if block_type == "to_do":
        checkbox = "[x] " if value.get("checked") else "[ ] "
        return f"{checkbox}{rich_text(value.get('rich_text'))}\n"
    if block_type == "code":
        return f"```{value.get('language', '')}\n{rich_text(value.get('rich_text'))}\n```\n\n"
    if block_type == "callout":
        emoji = (value.get("icon") or {}).get("emoji")
        icon = f"{emoji} " if emoji else ""
        return f"{icon}{rich_text(value.get('rich_text'))}\n\n"
    if block_type == "divider":
        return "---\n\n"
    if block_type == "table_of_contents":
        return "[Table of Contents]\n\n"
    if block_type == "equation":
        return f"${value.get('expression', '')}$\n\n"
    if block_type == "bookmark":
        caption = rich_text(value.get("caption"))
        url = value.get("url", "")
        return f"[{caption}]({url})\n\n" if caption else f"{url}\n\n"
    if block_type in ("embed", "link_preview"):
        return f"{value.get('url', '')}\n\n"
    if block_type == "child_page":
        return f"[Child Page: {value.get('title', '')}]\n\n"
    if block_type == "child_database":
        return f"[Child Database: {value.get('title', '')}]\n\n"
    if block_type == "table_row":
        cells = [rich_text(cell) for cell in value.get("cells", [])]
        return "| " + " | ".join(cells) + " |\n"
    return ""


def property_value(prop: dict[str, Any]) -> Any:
    """Flatten a page property to a plain value, None if unsupported."""
    prop_type = prop.get("type", "")
    value = prop.get(prop_type)

    if prop_type in ("title", "rich_text"):
        return rich_text(value)
    if prop_type in ("number", "checkbox", "url", "email", "phone_number"):
        return value
    if prop_type in ("created_time", "last_edited_time"):
        return value
    if prop_type in ("select", "status"):
        return (value or {}).get("name")
    if prop_type == "multi_select":
        return [option.get("name", "") for option in value or []]
    if prop_type == "date":
        return dict(value) if value else None
    if prop_type == "people":
        return [person.get("name") or person.get("id", "") for person in value or []]
    if prop_type == "relation":
        return [relation.get("id", "") for relation in value or []]
    if prop_type == "files":
        return [_file_url(entry) or entry.get("name", "") for entry in value or []]
    if prop_type in ("created_by", "last_edited_by"):
        return (value or {}).get("id")
    if prop_type == "formula":
        formula = value or {}
        return formula.get(formula.get("type", ""))
    if prop_type == "unique_id":
        unique = value or {}
        prefix = unique.get("prefix")
        return f"{prefix}-{unique.get('number')}" if prefix else str(unique.get("number"))
    return None


def page_title(page: dict[str, Any]) -> str:
    for prop in (page.get("properties") or {}).values():
        if prop.get("type") == "title":
            return rich_text(prop.get("title")) or "Untitled"
    return "Untitled"


def parent_uri(item: dict[str, Any]) -> str | None:
    """Build the hierarchy parent URI from a Notion parent object."""
    parent = item.get("parent") or {}
    parent_type = parent.get("type")
    if parent_type == "page_id" and parent.get("page_id"):
        return f"notion://pages/{parent['page_id']}"
    if parent_type == "database_id" and parent.get("database_id"):
        return f"notion://databases/{parent['database_id']}"
    if parent_type == "block_id" and parent.get("block_id"):
        return f"notion://blocks/{parent['block_id']}"
    return None


def build_database_content(database: dict[str, Any]) -> str:
    """Render a database as its title, description and property schema."""
    lines = [f"# {rich_text(database.get('title'))}", ""]
    description = rich_text(database.get("description"))
    if description:
        lines.extend([description, ""])
    lines.extend(["## Properties", ""])
    for name, prop in sorted((database.get("properties") or {}).items()):
        lines.append(f"- **{name}** ({prop.get('type', '')})")
    return "\n".join(lines) + "\n"


@dataclass
class _PageText:
    """Rendered block text, capped at a byte budget."""

    max_bytes: int
    parts: list[str] = field(default_factory=list)
    size: int = 0

    def add(self, text: str) -> None:
        self.parts.append(text)
        self.size += len(text.encode("utf-8"))

    @property
    def full(self) -> bool:
        return self.size >= self.max_bytes

    def encode(self) -> bytes:
        return "".join(self.parts).encode("utf-8")[: self.max_bytes]


class NotionConnector(BaseConnector):
    """
    Connector for Notion pages and database rows.

    Notion has no change feed. Each sub-resource stores the minute at
    which its last enumeration started; the next run lists only items
    edited on or after it.
    """

    connector_type: ClassVar[str] = "notion"
    rate_limit: ClassVar[RateLimitConfig] = NOTION_RATE_LIMIT
    cursor_class: ClassVar[type[NotionCursor]] = NotionCursor
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
        self._config = NotionConfig.from_source(source)
        self._databases: dict[str, dict[str, Any]] = {}

    @property
    def config(self) -> NotionConfig:
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

    async def _post(
        self,
        path: str,
        body: dict[str, Any],
        access_token: str,
        cancel_token: CancellationToken,
    ) -> dict[str, Any]:
        return await self._api.get_json(
            f"{NOTION_API}{path}",
            access_token,
            cancel_token,
            method="POST",
            json=body,
            headers=NOTION_HEADERS,
        )

    async def _get(
        self,
        path: str,
        access_token: str,
        cancel_token: CancellationToken,
        params: dict[str, Any],
    ) -> dict[str, Any]:
        return await self._api.get_json(
            f"{NOTION_API}{path}",
            access_token,
            cancel_token,
            params=params,
            headers=NOTION_HEADERS,
        )

    def _paged(self, body: dict[str, Any], start_cursor: str | None) -> dict[str, Any]:
        body["page_size"] = self._config.page_size
        if start_cursor:
            body["start_cursor"] = start_cursor
        return body

    async def validate_request(
        self, access_token: str, cancel_token: CancellationToken
    ) -> None:
        await self._post("/search", {"page_size": 1}, access_token, cancel_token)

    async def list_sub_resources(
        self, access_token: str, cancel_token: CancellationToken
    ) -> list[str]:
        """
        List the pages partition plus one partition per shared database.

        The database objects are kept for the run so each database is
        emitted alongside its rows without another request.
        """
        sub_resources = [PAGES_SUB_RESOURCE] if self._config.syncs_pages else []
        if not self._config.syncs_databases:
            return sub_resources

        databases: dict[str, dict[str, Any]] = {}
        start_cursor: str | None = None
        while True:
            data = await self._post(
                "/search",
                self._paged({"filter": {"property": "object", "value": "database"}}, start_cursor),
                access_token,
                cancel_token,
            )
            for database in data.get("results", []):
                if database.get("id"):
                    databases[database["id"]] = database

            start_cursor = data.get("next_cursor") if data.get("has_more") else None
            if not start_cursor:
                break

        self._databases = databases
        logger.info(f"🗂️ [notion] Found {len(databases)} databases for {self.source_id}")
        return sub_resources + [f"{DATABASE_PREFIX}{database_id}" for database_id in databases]

    async def begin_enumeration(
        self,
        sub_resource: str,
        access_token: str,
        cancel_token: CancellationToken,
    ) -> str | None:
        return format_watermark(utc_now())

    async def fetch_page(
        self,
        sub_resource: str,
        access_token: str,
        cancel_token: CancellationToken,
        page_token: str | None = None,
        resume_token: str | None = None,
    ) -> Page:
        # The next watermark is taken before the first query of the run
        next_watermark = None
        if resume_token and page_token is None:
            next_watermark = format_watermark(utc_now())

        if sub_resource.startswith(DATABASE_PREFIX):
            page = await self._fetch_database_rows(
                sub_resource[len(DATABASE_PREFIX):],
                page_token,
                resume_token,
                access_token,
                cancel_token,
            )
        else:
            page = await self._fetch_pages(page_token, resume_token, access_token, cancel_token)

        page.resume_token = next_watermark
        return page

    async def _fetch_pages(
        self,
        page_token: str | None,
        since: str | None,
        access_token: str,
        cancel_token: CancellationToken,
    ) -> Page:
        body = self._paged(
            {
                "filter": {"property": "object", "value": "page"},
                "sort": {"direction": "descending", "timestamp": "last_edited_time"},
            },
            page_token,
        )
        data = await self._post("/search", body, access_token, cancel_token)
        results = data.get("results", [])
        next_page = data.get("next_cursor") if data.get("has_more") else None

        if since:
            # Results are newest first; the first stale one ends the listing
            fresh = [r for r in results if r.get("last_edited_time", "") >= since]
            if len(fresh) < len(results):
                next_page = None
            results = fresh

        return Page(items=results, next_page=next_page or None)

    async def _fetch_database_rows(
        self,
        database_id: str,
        page_token: str | None,
        since: str | None,
        access_token: str,
        cancel_token: CancellationToken,
    ) -> Page:
        body = self._paged({}, page_token)
        if since:
            body["filter"] = {
                "timestamp": "last_edited_time",
                "last_edited_time": {"on_or_after": since},
            }
        data = await self._post(
            f"/databases/{database_id}/query", body, access_token, cancel_token
        )

        items = list(data.get("results", []))
        database = self._databases.get(database_id)
        if page_token is None and database is not None:
            if not since or database.get("last_edited_time", "") >= since:
                items.insert(0, database)

        next_page = data.get("next_cursor") if data.get("has_more") else None
        return Page(items=items, next_page=next_page or None)

    def deleted_uri(self, sub_resource: str, item: dict[str, Any]) -> str | None:
        if not (item.get("archived") or item.get("in_trash")):
            return None
        kind = "databases" if item.get("object") == "database" else "pages"
        return f"notion://{kind}/{item.get('id', '')}"

    def should_sync(self, sub_resource: str, item: dict[str, Any]) -> bool:
        if not item.get("id"):
            return False
        if item.get("object") == "database":
            return True
        if item.get("object") != "page":
            return False
        # Rows of synced databases come from their own sub-resource
        if sub_resource == PAGES_SUB_RESOURCE and self._config.syncs_databases:
            return (item.get("parent") or {}).get("type") != "database_id"
        return True

    async def hydrate(
        self,
        sub_resource: str,
        item: dict[str, Any],
        access_token: str,
        cancel_token: CancellationToken,
    ) -> dict[str, Any] | None:
        if not self._config.include_comments or item.get("object") != "page":
            return item

        try:
            comments = await self._fetch_comments(item["id"], access_token, cancel_token)
        except (AuthInvalidError, SyncCancelledError):
            raise
        except ProviderError as e:
            # Comment access is a separate integration capability
            logger.warning(f"⚠️ [notion] Comments unavailable for {item['id']}: {e}")
            return item
        return {**item, "comments": comments}

    async def _fetch_comments(
        self,
        page_id: str,
        access_token: str,
        cancel_token: CancellationToken,
    ) -> list[str]:
        comments: list[str] = []
        start_cursor: str | None = None
        while True:
            params: dict[str, Any] = {"block_id": page_id, "page_size": self._config.page_size}
            if start_cursor:
                params["start_cursor"] = start_cursor
            data = await self._get("/comments", access_token, cancel_token, params)
            for comment in data.get("results", []):
                text = rich_text(comment.get("rich_text"))
                if text:
                    comments.append(text)

            start_cursor = data.get("next_cursor") if data.get("has_more") else None
            if not start_cursor:
                return comments

    def wants_content(self, item: dict[str, Any]) -> bool:
        return item.get("object") == "page"

    async def fetch_content(
        self,
        item: dict[str, Any],
        access_token: str,
        cancel_token: CancellationToken,
        max_bytes: int,
    ) -> bytes:
        text = _PageText(max_bytes)
        await self._collect_blocks(item["id"], 0, text, access_token, cancel_token)
        return text.encode()

    async def _collect_blocks(
        self,
        block_id: str,
        depth: int,
        text: _PageText,
        access_token: str,
        cancel_token: CancellationToken,
    ) -> None:
        if depth > self._config.max_block_depth:
            return

        start_cursor: str | None = None
        while True:
            params: dict[str, Any] = {"page_size": self._config.page_size}
            if start_cursor:
                params["start_cursor"] = start_cursor
            data = await self._get(
                f"/blocks/{block_id}/children", access_token, cancel_token, params
            )

            for block in data.get("results", []):
                text.add(render_block(block))
                # Child pages and databases are synced as items of their own
                if block.get("has_children") and block.get("type") not in (
                    "child_page",
                    "child_database",
                ):
                    await self._collect_blocks(
                        block["id"], depth + 1, text, access_token, cancel_token
                    )
                if text.full:
                    return

            start_cursor = data.get("next_cursor") if data.get("has_more") else None
            if not start_cursor:
                return

    def to_document(
        self,
        sub_resource: str,
        item: dict[str, Any],
        content: bytes | None,
    ) -> RawDocument:
        if item.get("object") == "database":
            return self._database_document(item)

        page_id = item["id"]
        metadata: dict[str, Any] = {
            "page_id": page_id,
            "title": page_title(item),
            "created_time": item.get("created_time", ""),
            "last_edited_time": item.get("last_edited_time", ""),
            "created_by": (item.get("created_by") or {}).get("id", ""),
            "last_edited_by": (item.get("last_edited_by") or {}).get("id", ""),
            "archived": item.get("archived", False),
        }
        if item.get("url"):
            metadata["url"] = item["url"]
        icon = item.get("icon") or {}
        if icon.get("emoji"):
            metadata["icon"] = icon["emoji"]
        if item.get("comments"):
            metadata["comments"] = item["comments"]

        mime_type = MIME_NOTION_PAGE
        parent = item.get("parent") or {}
        if parent.get("type") == "database_id":
            mime_type = MIME_NOTION_DATABASE_ITEM
            metadata["database_id"] = parent.get("database_id", "")
            for name, prop in (item.get("properties") or {}).items():
                value = property_value(prop)
                if value is not None:
                    metadata[f"prop_{name}"] = value

        return RawDocument(
            source_id=self.source_id,
            uri=f"notion://pages/{page_id}",
            mime_type=mime_type,
            content=content,
            metadata=metadata,
            parent_uri=parent_uri(item),
        )

    def _database_document(self, database: dict[str, Any]) -> RawDocument:
        database_id = database["id"]
        metadata: dict[str, Any] = {
            "database_id": database_id,
            "title": rich_text(database.get("title")),
            "description": rich_text(database.get("description")),
            "created_time": database.get("created_time", ""),
            "last_edited_time": database.get("last_edited_time", ""),
            "archived": database.get("archived", False),
            "is_inline": database.get("is_inline", False),
            "property_schema": {
                name: prop.get("type", "")
                for name, prop in (database.get("properties") or {}).items()
            },
        }
        if database.get("url"):
            metadata["url"] = database["url"]

        return RawDocument(
            source_id=self.source_id,
            uri=f"notion://databases/{database_id}",
            mime_type=MIME_NOTION_DATABASE,
            content=build_database_content(database).encode("utf-8"),
            metadata=metadata,
            parent_uri=parent_uri(database),
        )
