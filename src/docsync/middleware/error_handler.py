"""
Error reporting for sync runs.

Turns a run's terminal error into structured information a scheduler can
act on: retry later, re-authorize, or fall back to a full sync.
"""

import logging
from typing import Any

from docsync.logic.exceptions import (
    AuthInvalidError,
    AuthRequiredError,
    ConfigurationError,
    ConnectorClosedError,
    ConnectorError,
    FullSyncRequiredError,
    InvalidCursorError,
    NotImplementedByConnectorError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitError,
    ResumeTokenExpiredError,
    SyncCancelledError,
    UnsupportedConnectorTypeError,
)
from docsync.logic.rate_limiter import DEFAULT_BACKOFF_SECONDS

logger = logging.getLogger("docsync.error_handler")


def describe_sync_error(
    error: ConnectorError,
    source_id: str | None = None,
) -> dict[str, Any]:
    """
    Describe a sync error and log it at a level matching its category.

    Args:
        error: The terminal error of a run.
        source_id: Optional source ID for context.

    Returns:
        Dictionary with error details.
    """
    error_info: dict[str, Any] = {
        "error_type": type(error).__name__,
        "message": str(error),
        "source_id": source_id,
        "should_retry": False,
        "retry_after": None,
        "requires_full_sync": False,
        "requires_reauth": False,
    }

    if isinstance(error, SyncCancelledError):
        logger.debug(f"🛑 Sync cancelled for {source_id}: {error.reason}")

    elif isinstance(error, (FullSyncRequiredError, InvalidCursorError)):
        logger.info(f"🔄 Full sync required for {source_id}: {error.reason}")
        error_info["requires_full_sync"] = True

    elif isinstance(error, AuthRequiredError):
        logger.warning(f"⚠️ Credential unavailable for {error.provider}: {error.reason}")
        error_info["requires_reauth"] = True
        error_info["should_retry"] = True  # A refreshed token may fix it

    elif isinstance(error, AuthInvalidError):
        logger.error(f"❌ Credential rejected by {error.provider}: {error.reason}")
        error_info["requires_reauth"] = True

    elif isinstance(error, RateLimitError):
        retry_after = error.retry_after or DEFAULT_BACKOFF_SECONDS
        logger.warning(
            f"⚠️ Rate limit hit for {error.provider}, retry after {retry_after} seconds"
        )
        error_info["should_retry"] = True
        error_info["retry_after"] = retry_after

    elif isinstance(error, ResumeTokenExpiredError):
        logger.warning(f"⚠️ Resume token expired for {error.provider}: {error.message}")
        error_info["requires_full_sync"] = True

    elif isinstance(error, ProviderUnavailableError):
        logger.error(f"❌ {error.provider} unreachable: {error.reason}")
        error_info["should_retry"] = True

    elif isinstance(
        error,
        (
            ConfigurationError,
            UnsupportedConnectorTypeError,
            NotImplementedByConnectorError,
            ConnectorClosedError,
        ),
    ):
        logger.error(f"❌ Unusable connector for {source_id}: {error.message}")

    elif isinstance(error, ProviderError):
        logger.error(f"❌ Provider error from {error.provider}: {error.message}")
        # 4xx other than throttling will fail the same way again
        status = error.status_code
        error_info["should_retry"] = status is None or status >= 500

    else:
        logger.error(f"❌ Connector error: {error.message}")
        error_info["should_retry"] = True

    return error_info
