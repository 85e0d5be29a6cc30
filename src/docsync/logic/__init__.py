"""
Sync engine business logic.

Contains the cursor, rate limiter, cancellation and stream primitives,
domain exceptions, the sync orchestration and the connector registry.
"""

from docsync.logic.cancellation import CancellationToken
from docsync.logic.cursor import Cursor, SingleTokenCursor, TokenMapCursor
from docsync.logic.exceptions import (
    AuthInvalidError,
    AuthRequiredError,
    ConnectorClosedError,
    ConnectorError,
    FullSyncRequiredError,
    InvalidCursorError,
    ProviderError,
    SyncCancelledError,
    UnsupportedConnectorTypeError,
)
from docsync.logic.registry import ConnectorRegistry, register_builtin_connectors
from docsync.logic.streams import SyncComplete, SyncFailure, SyncRun

__all__ = [
    "AuthInvalidError",
    "AuthRequiredError",
    "CancellationToken",
    "ConnectorClosedError",
    "ConnectorError",
    "ConnectorRegistry",
    "Cursor",
    "FullSyncRequiredError",
    "InvalidCursorError",
    "ProviderError",
    "SingleTokenCursor",
    "SyncCancelledError",
    "SyncComplete",
    "SyncFailure",
    "SyncRun",
    "TokenMapCursor",
    "UnsupportedConnectorTypeError",
    "register_builtin_connectors",
]
