"""
Full and incremental sync orchestration shared by every connector.

Adapters describe their provider through hooks on BaseConnector (list
sub-resources, fetch a page, classify an item, build a document); the
engine owns the algorithm: rate-limited paging, filtering, content
download under the size ceiling, per-sub-resource failure isolation,
expired-token recovery and cursor bookkeeping.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from docsync.logic.cancellation import CancellationToken
from docsync.logic.cursor import Cursor
from docsync.logic.exceptions import (
    AuthInvalidError,
    AuthRequiredError,
    ConnectorError,
    FullSyncRequiredError,
    InvalidCursorError,
    ProviderError,
    ResumeTokenExpiredError,
    SyncCancelledError,
)
from docsync.logic.models import ChangeType, RawDocument, RawDocumentChange
from docsync.logic.streams import (
    ItemStream,
    SyncComplete,
    SyncFailure,
    SyncResult,
    SyncStats,
)

if TYPE_CHECKING:
    from docsync.providers.base import BaseConnector

logger = logging.getLogger("docsync.sync_engine")

# Fixed content size ceiling (5 MiB)
MAX_CONTENT_SIZE = 5 * 1024 * 1024

# Re-enumerations of one sub-resource after its resume token expired
MAX_EXPIRED_TOKEN_RETRIES = 1

# Errors that end the whole run instead of one sub-resource
_FATAL_ERRORS = (AuthRequiredError, AuthInvalidError, SyncCancelledError)


@dataclass
class _Tally:
    """Mutable counters for one run."""

    documents: int = 0
    skipped: int = 0
    content_failures: int = 0
    failed: list[str] = field(default_factory=list)
    retried: list[str] = field(default_factory=list)

    def freeze(self) -> SyncStats:
        return SyncStats(
            documents=self.documents,
            skipped=self.skipped,
            content_failures=self.content_failures,
            failed_sub_resources=tuple(self.failed),
            retried_sub_resources=tuple(self.retried),
        )


class SyncEngine:
    """
    Runs full and incremental syncs for one connector.

    Results are returned as terminal values rather than raised, so a
    SyncRun task always finishes with SyncComplete or SyncFailure.
    """

    def __init__(
        self,
        connector: "BaseConnector",
        max_content_size: int = MAX_CONTENT_SIZE,
    ) -> None:
        """
        Initialize sync engine.

        Args:
            connector: Connector supplying the provider hooks.
            max_content_size: Content size ceiling in bytes; never above
                MAX_CONTENT_SIZE.
        """
        self._connector = connector
        self._max_content_size = min(max_content_size, MAX_CONTENT_SIZE)

    @property
    def _name(self) -> str:
        return self._connector.connector_type

    async def run_full_sync(
        self,
        stream: ItemStream[RawDocument],
        cancel_token: CancellationToken,
    ) -> SyncResult:
        """
        Enumerate the whole corpus and push every document.

        Args:
            stream: Stream to push documents to.
            cancel_token: Caller's cancellation token.

        Returns:
            SyncComplete with the new cursor, or SyncFailure.
        """
        try:
            return await self._full_sync(stream, cancel_token)
        except SyncCancelledError as e:
            logger.debug(f"🛑 [{self._name}] Full sync cancelled: {e}")
            return SyncFailure(e)
        except ConnectorError as e:
            logger.error(f"❌ [{self._name}] Full sync failed: {e}")
            return SyncFailure(e)

    async def run_incremental_sync(
        self,
        stream: ItemStream[RawDocumentChange],
        cancel_token: CancellationToken,
        encoded_cursor: str,
    ) -> SyncResult:
        """
        Push changes since the given cursor.

        Args:
            stream: Stream to push changes to.
            cancel_token: Caller's cancellation token.
            encoded_cursor: Cursor returned by a previous run.

        Returns:
            SyncComplete with the advanced cursor, or SyncFailure.
        """
        try:
            return await self._incremental_sync(stream, cancel_token, encoded_cursor)
        except SyncCancelledError as e:
            logger.debug(f"🛑 [{self._name}] Incremental sync cancelled: {e}")
            return SyncFailure(e)
        except FullSyncRequiredError as e:
            logger.info(f"🔄 [{self._name}] {e}")
            return SyncFailure(e)
        except ConnectorError as e:
            logger.error(f"❌ [{self._name}] Incremental sync failed: {e}")
            return SyncFailure(e)

    async def _full_sync(
        self,
        stream: ItemStream[RawDocument],
        cancel_token: CancellationToken,
    ) -> SyncResult:
        connector = self._connector
        connector.check_open()
        cancel_token.raise_if_cancelled()

        tally = _Tally()
        cursor = connector.cursor_class.new_empty()
        access_token = await connector.access_token(cancel_token)
        sub_resources = await connector.list_sub_resources(access_token, cancel_token)

        logger.info(
            f"🔄 [{self._name}] Full sync of {connector.source_id} "
            f"across {len(sub_resources)} sub-resource(s)"
        )

        for sub_resource in sub_resources:
            cancel_token.raise_if_cancelled()
            try:
                token = await self._enumerate(
                    sub_resource, access_token, None, stream, cancel_token, tally,
                    incremental=False,
                )
            except _FATAL_ERRORS:
                raise
            except ProviderError as e:
                if not connector.isolates_sub_resources:
                    raise
                logger.warning(f"⚠️ [{self._name}] Failed to sync {sub_resource}: {e}")
                tally.failed.append(sub_resource)
                continue

            if token:
                cursor.set_token(sub_resource, token)

        return self._complete(cursor, tally, "Full")

    async def _incremental_sync(
        self,
        stream: ItemStream[RawDocumentChange],
        cancel_token: CancellationToken,
        encoded_cursor: str,
    ) -> SyncResult:
        connector = self._connector
        connector.check_open()

        try:
            cursor = connector.cursor_class.decode(encoded_cursor)
        except InvalidCursorError as e:
            raise FullSyncRequiredError(e.reason) from e

        if cursor.is_empty():
            raise FullSyncRequiredError("cursor has no value")

        cancel_token.raise_if_cancelled()

        tally = _Tally()
        access_token = await connector.access_token(cancel_token)
        sub_resources = await connector.list_sub_resources(access_token, cancel_token)

        logger.info(
            f"🔄 [{self._name}] Incremental sync of {connector.source_id} "
            f"across {len(sub_resources)} sub-resource(s)"
        )

        for sub_resource in sub_resources:
            cancel_token.raise_if_cancelled()
            await self._incremental_sub_resource(
                sub_resource, cursor, access_token, stream, cancel_token, tally
            )

        return self._complete(cursor, tally, "Incremental")

    async def _incremental_sub_resource(
        self,
        sub_resource: str,
        cursor: Cursor,
        access_token: str,
        stream: ItemStream[RawDocumentChange],
        cancel_token: CancellationToken,
        tally: _Tally,
    ) -> None:
        """
        Sync one sub-resource from its stored token.

        An expired token is retried from empty at most
        MAX_EXPIRED_TOKEN_RETRIES times, then dropped. Any other failure
        leaves the stored token untouched, unless it already expired.
        """
        resume_token = cursor.get_token(sub_resource) or None
        retries = 0

        while True:
            try:
                token = await self._enumerate(
                    sub_resource, access_token, resume_token, stream, cancel_token,
                    tally, incremental=True,
                )
            except ResumeTokenExpiredError as e:
                if resume_token is not None and retries < MAX_EXPIRED_TOKEN_RETRIES:
                    retries += 1
                    resume_token = None
                    tally.retried.append(sub_resource)
                    logger.warning(
                        f"⚠️ [{self._name}] Resume token expired for "
                        f"{sub_resource}, re-enumerating from empty"
                    )
                    continue
                if not self._connector.isolates_sub_resources:
                    raise
                logger.warning(
                    f"⚠️ [{self._name}] Dropping resume token for {sub_resource}: {e}"
                )
                cursor.drop_token(sub_resource)
                tally.failed.append(sub_resource)
                return
            except _FATAL_ERRORS:
                raise
            except ProviderError as e:
                if not self._connector.isolates_sub_resources:
                    raise
                tally.failed.append(sub_resource)
                if retries:
                    # The stored token was already rejected as expired
                    logger.warning(
                        f"⚠️ [{self._name}] Re-enumeration of {sub_resource} failed, "
                        f"dropping expired token: {e}"
                    )
                    cursor.drop_token(sub_resource)
                    return
                logger.warning(
                    f"⚠️ [{self._name}] Failed to sync {sub_resource}, "
                    f"keeping previous token: {e}"
                )
                return

            if token:
                cursor.set_token(sub_resource, token)
            return

    async def _enumerate(
        self,
        sub_resource: str,
        access_token: str,
        resume_token: str | None,
        stream: ItemStream[Any],
        cancel_token: CancellationToken,
        tally: _Tally,
        incremental: bool,
    ) -> str | None:
        """
        Page through one sub-resource and push its items.

        Args:
            sub_resource: Sub-resource name.
            access_token: Bearer token for the run.
            resume_token: Token to resume from, None to enumerate from empty.
            stream: Stream to push to.
            cancel_token: Caller's cancellation token.
            tally: Run counters.
            incremental: Wrap items as changes and emit deletions.

        Returns:
            Resume token for the next run, if the provider returned one.
        """
        connector = self._connector
        token: str | None = None
        if resume_token is None:
            token = await connector.begin_enumeration(
                sub_resource, access_token, cancel_token
            )

        page_token: str | None = None
        while True:
            cancel_token.raise_if_cancelled()
            page = await connector.fetch_page(
                sub_resource,
                access_token,
                cancel_token,
                page_token=page_token,
                resume_token=resume_token,
            )

            for item in page.items:
                cancel_token.raise_if_cancelled()
                await self._process_item(
                    sub_resource, item, access_token, stream, cancel_token, tally,
                    incremental,
                )

            if page.resume_token:
                token = page.resume_token
            if not page.next_page:
                return token
            page_token = page.next_page

    async def _process_item(
        self,
        sub_resource: str,
        item: dict[str, Any],
        access_token: str,
        stream: ItemStream[Any],
        cancel_token: CancellationToken,
        tally: _Tally,
        incremental: bool,
    ) -> None:
        connector = self._connector

        if await self._emit_deletion(sub_resource, item, stream, cancel_token, tally, incremental):
            return

        if not connector.should_sync(sub_resource, item):
            tally.skipped += 1
            return

        try:
            detail = await connector.hydrate(sub_resource, item, access_token, cancel_token)
        except _FATAL_ERRORS:
            raise
        except ProviderError as e:
            logger.warning(f"⚠️ [{self._name}] Skipping item in {sub_resource}: {e}")
            tally.skipped += 1
            return

        if detail is None:
            tally.skipped += 1
            return

        # Detail fetches can reveal a removal the listing did not
        if detail is not item:
            if await self._emit_deletion(sub_resource, detail, stream, cancel_token, tally, incremental):
                return

        content = await self._fetch_content(detail, access_token, cancel_token, tally)
        document = connector.to_document(sub_resource, detail, content)

        if incremental:
            change_type = connector.upsert_change_type(detail)
            await stream.push(RawDocumentChange(change_type, document), cancel_token)
        else:
            await stream.push(document, cancel_token)
        tally.documents += 1

    async def _emit_deletion(
        self,
        sub_resource: str,
        item: dict[str, Any],
        stream: ItemStream[Any],
        cancel_token: CancellationToken,
        tally: _Tally,
        incremental: bool,
    ) -> bool:
        """
        Handle an item that represents a removal.

        Returns:
            True if the item was a deletion (emitted or skipped).
        """
        uri = self._connector.deleted_uri(sub_resource, item)
        if uri is None:
            return False

        if incremental:
            document = RawDocument(source_id=self._connector.source_id, uri=uri)
            await stream.push(RawDocumentChange(ChangeType.DELETED, document), cancel_token)
            tally.documents += 1
        else:
            tally.skipped += 1
        return True

    async def _fetch_content(
        self,
        item: dict[str, Any],
        access_token: str,
        cancel_token: CancellationToken,
        tally: _Tally,
    ) -> bytes | None:
        connector = self._connector
        if not connector.wants_content(item):
            return None

        size = connector.content_size(item)
        if size is not None and size > self._max_content_size:
            logger.debug(
                f"📦 [{self._name}] Skipping content above {self._max_content_size} bytes"
            )
            return None

        try:
            return await connector.fetch_content(
                item, access_token, cancel_token, self._max_content_size
            )
        except _FATAL_ERRORS:
            raise
        except ProviderError as e:
            logger.warning(f"⚠️ [{self._name}] Continuing without content: {e}")
            tally.content_failures += 1
            return None

    def _complete(self, cursor: Cursor, tally: _Tally, mode: str) -> SyncComplete:
        stats = tally.freeze()
        log = logger.warning if stats.failed_sub_resources else logger.info
        log(
            f"✅ [{self._name}] {mode} sync complete: {stats.documents} emitted, "
            f"{stats.skipped} skipped, {stats.content_failures} without content, "
            f"{len(stats.failed_sub_resources)} sub-resource(s) failed"
        )
        return SyncComplete(new_cursor=cursor.encode(), stats=stats)
