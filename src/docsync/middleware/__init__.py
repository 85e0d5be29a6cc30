"""Error reporting helpers."""

from docsync.middleware.error_handler import describe_sync_error

__all__ = ["describe_sync_error"]
