"""
Base connector interface for remote content providers.

All connectors must implement this interface. A connector is bound to one
Source, owns one rate limiter, and exposes the provider through the hooks
the SyncEngine drives.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Awaitable, ClassVar, TypeVar

import httpx

from docsync.config import SyncSettings, get_settings
from docsync.logic.cancellation import CancellationToken
from docsync.logic.credentials import CredentialProvider
from docsync.logic.cursor import ROOT_SUB_RESOURCE, Cursor
from docsync.logic.exceptions import (
    AuthRequiredError,
    ConnectorClosedError,
    NotImplementedByConnectorError,
    SyncCancelledError,
)
from docsync.logic.models import (
    Capabilities,
    ChangeType,
    Page,
    RawDocument,
    RawDocumentChange,
    Source,
)
from docsync.logic.rate_limiter import RateLimitConfig, RateLimiter
from docsync.logic.streams import SyncRun
from docsync.logic.sync_engine import SyncEngine
from docsync.providers.api_client import ApiClient

logger = logging.getLogger("docsync.connector")

T = TypeVar("T")


class BaseConnector(ABC):
    """
    Abstract base class for connectors.

    Subclasses declare connector_type, rate_limit and cursor_class, and
    implement the provider hooks. Lifecycle, credential resolution and the
    sync algorithm are shared.
    """

    connector_type: ClassVar[str]
    rate_limit: ClassVar[RateLimitConfig]
    cursor_class: ClassVar[type[Cursor]]

    # Partitioned providers keep going when one sub-resource fails
    isolates_sub_resources: ClassVar[bool] = False

    def __init__(
        self,
        source: Source,
        credentials: CredentialProvider,
        settings: SyncSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        """
        Initialize connector.

        Args:
            source: Source this connector serves.
            credentials: Bearer token provider for the source.
            settings: Engine settings (defaults to environment settings).
            http_client: Optional HTTP client (for testing).
            rate_limiter: Optional rate limiter (for testing).
        """
        self._source = source
        self._credentials = credentials
        self._settings = settings or get_settings()
        self._rate_limiter = rate_limiter or RateLimiter.from_config(self.rate_limit)
        self._api = ApiClient(
            self.connector_type,
            self._rate_limiter,
            http_client=http_client,
            timeout=self._settings.http_timeout_seconds,
            max_rate_limit_retries=self._settings.max_rate_limit_retries,
        )
        self._engine = SyncEngine(self, self._settings.max_content_size_bytes)

        self._lock = threading.Lock()
        self._closed = False
        self._active = 0

    @property
    def source_id(self) -> str:
        """Get the ID of the bound source."""
        return self._source.id

    @property
    def source(self) -> Source:
        """Get the bound source."""
        return self._source

    @property
    def rate_limiter(self) -> RateLimiter:
        """Get this connector's rate limiter."""
        return self._rate_limiter

    @property
    def closed(self) -> bool:
        """Return True once close() has been called."""
        with self._lock:
            return self._closed

    @property
    @abstractmethod
    def capabilities(self) -> Capabilities:
        """Return the connector's capability flags."""
        ...

    def check_open(self) -> None:
        """
        Guard an operation against a closed connector.

        Raises:
            ConnectorClosedError: If close() has been called.
        """
        if self.closed:
            raise ConnectorClosedError(self.source_id)

    async def access_token(self, cancel_token: CancellationToken) -> str:
        """
        Resolve a bearer token for this run.

        Args:
            cancel_token: Caller's cancellation token.

        Returns:
            Access token.

        Raises:
            AuthRequiredError: If the credential provider cannot supply one.
        """
        try:
            token = await self._credentials.get_token(cancel_token)
        except (AuthRequiredError, SyncCancelledError):
            raise
        except Exception as e:
            raise AuthRequiredError(self.connector_type, str(e)) from e

        if not token:
            raise AuthRequiredError(self.connector_type, "empty access token")
        return token

    async def _tracked(self, work: Awaitable[T]) -> T:
        # A close() issued while work is running defers releasing the client
        with self._lock:
            self._active += 1
        try:
            return await work
        finally:
            with self._lock:
                self._active -= 1
                release = self._closed and self._active == 0
            if release:
                await self._api.aclose()

    async def validate(self, cancel_token: CancellationToken) -> None:
        """
        Make one cheap authenticated call to verify access.

        Args:
            cancel_token: Caller's cancellation token.

        Raises:
            ConnectorClosedError: If the connector is closed.
            AuthRequiredError: If no credential is available.
            AuthInvalidError: If the provider rejects the credential.
            ProviderUnavailableError: If the provider cannot be reached.
            ProviderError: On any other provider failure.
        """
        self.check_open()
        cancel_token.raise_if_cancelled()

        async def _validate() -> None:
            access_token = await self.access_token(cancel_token)
            await self.validate_request(access_token, cancel_token)
            logger.info(f"✅ [{self.connector_type}] Validated source {self.source_id}")

        await self._tracked(_validate())

    def full_sync(self, cancel_token: CancellationToken) -> SyncRun[RawDocument]:
        """
        Start enumerating the whole corpus.

        Must be called from a running event loop. Errors, including a
        closed connector, arrive as the run's terminal value.

        Args:
            cancel_token: Caller's cancellation token.

        Returns:
            SyncRun yielding RawDocument items.
        """
        return SyncRun.start(
            lambda stream: self._tracked(self._engine.run_full_sync(stream, cancel_token)),
            name=f"{self.connector_type}-full-{self.source_id}",
        )

    def incremental_sync(
        self,
        cancel_token: CancellationToken,
        cursor: str,
    ) -> SyncRun[RawDocumentChange]:
        """
        Start fetching changes since a previous run.

        Args:
            cancel_token: Caller's cancellation token.
            cursor: Encoded cursor returned by a previous run.

        Returns:
            SyncRun yielding RawDocumentChange items.
        """
        return SyncRun.start(
            lambda stream: self._tracked(
                self._engine.run_incremental_sync(stream, cancel_token, cursor)
            ),
            name=f"{self.connector_type}-incremental-{self.source_id}",
        )

    async def watch(self, cancel_token: CancellationToken) -> None:
        """
        Subscribe to push notifications.

        Raises:
            ConnectorClosedError: If the connector is closed.
            NotImplementedByConnectorError: Always, otherwise.
        """
        self.check_open()
        raise NotImplementedByConnectorError(self.connector_type, "watch")

    async def close(self) -> None:
        """
        Close the connector. Idempotent.

        Blocks new operations; runs already in flight finish normally and
        the HTTP client is released when the last one ends.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            release = self._active == 0

        logger.debug(f"🔌 [{self.connector_type}] Closed connector for {self.source_id}")
        if release:
            await self._api.aclose()

    # Provider hooks

    @abstractmethod
    async def validate_request(
        self, access_token: str, cancel_token: CancellationToken
    ) -> None:
        """Issue the provider's cheapest authenticated request."""
        ...

    async def list_sub_resources(
        self, access_token: str, cancel_token: CancellationToken
    ) -> list[str]:
        """
        List the partitions of the corpus (calendars, folders...).

        Failure here is fatal to the run.
        """
        return [ROOT_SUB_RESOURCE]

    async def begin_enumeration(
        self,
        sub_resource: str,
        access_token: str,
        cancel_token: CancellationToken,
    ) -> str | None:
        """
        Capture a resume token before enumerating from empty.

        Returns:
            Token to store if enumeration yields none, or None.
        """
        return None

    @abstractmethod
    async def fetch_page(
        self,
        sub_resource: str,
        access_token: str,
        cancel_token: CancellationToken,
        page_token: str | None = None,
        resume_token: str | None = None,
    ) -> Page:
        """
        Fetch one page of items.

        Args:
            sub_resource: Sub-resource being enumerated.
            access_token: Bearer token.
            cancel_token: Caller's cancellation token.
            page_token: Continuation from the previous page, None for the first.
            resume_token: Stored token to list changes from, None to list
                everything.

        Returns:
            Page of raw provider items.

        Raises:
            ResumeTokenExpiredError: If the provider rejects resume_token.
        """
        ...

    def deleted_uri(self, sub_resource: str, item: dict[str, Any]) -> str | None:
        """Return the URI of a removed item, or None if the item is live."""
        return None

    def should_sync(self, sub_resource: str, item: dict[str, Any]) -> bool:
        """Return False for items filtered out by configuration."""
        return True

    async def hydrate(
        self,
        sub_resource: str,
        item: dict[str, Any],
        access_token: str,
        cancel_token: CancellationToken,
    ) -> dict[str, Any] | None:
        """
        Fetch the full detail of an item.

        A ProviderError or a None return skips the item.
        """
        return item

    def wants_content(self, item: dict[str, Any]) -> bool:
        """Return True if the item's content should be downloaded."""
        return False

    def content_size(self, item: dict[str, Any]) -> int | None:
        """Return the item's content size in bytes, if the provider reports it."""
        return None

    async def fetch_content(
        self,
        item: dict[str, Any],
        access_token: str,
        cancel_token: CancellationToken,
        max_bytes: int,
    ) -> bytes:
        """Download an item's content, reading at most max_bytes."""
        raise NotImplementedByConnectorError(self.connector_type, "fetch_content")

    @abstractmethod
    def to_document(
        self,
        sub_resource: str,
        item: dict[str, Any],
        content: bytes | None,
    ) -> RawDocument:
        """Build a RawDocument from a provider item."""
        ...

    def upsert_change_type(self, item: dict[str, Any]) -> ChangeType:
        """Classify a live item seen by incremental sync."""
        return ChangeType.UPDATED

    def __repr__(self) -> str:
        return f"<{type(self).__name__} source_id={self.source_id!r} closed={self.closed}>"
