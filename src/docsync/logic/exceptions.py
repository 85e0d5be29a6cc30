"""
Domain exceptions for the sync engine.

These exceptions represent the failure taxonomy of a sync run: usage
errors, authentication errors, transient provider errors, fatal
structural errors and per-item errors.
"""


class ConnectorError(Exception):
    """Base exception for connector errors."""

    def __init__(self, message: str):
        """
        Initialize connector error.

        Args:
            message: Error description.
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(ConnectorError):
    """Raised when a source's configuration cannot be used."""

    def __init__(self, source_type: str, reason: str):
        """
        Initialize configuration error.

        Args:
            source_type: Connector type string of the source.
            reason: What is wrong with the configuration.
        """
        self.source_type = source_type
        self.reason = reason
        super().__init__(f"{source_type} config: {reason}")


class UnsupportedConnectorTypeError(ConnectorError):
    """Raised when no builder is registered for a source type."""

    def __init__(self, connector_type: str):
        """
        Initialize unsupported type error.

        Args:
            connector_type: The unsupported type string.
        """
        self.connector_type = connector_type
        super().__init__(f"Unsupported connector type: {connector_type}")


class InvalidCursorError(ConnectorError):
    """Raised when an encoded cursor cannot be decoded."""

    def __init__(self, reason: str = "invalid cursor"):
        self.reason = reason
        super().__init__(reason)


class FullSyncRequiredError(ConnectorError):
    """Raised when incremental sync cannot proceed from the given cursor."""

    def __init__(self, reason: str):
        """
        Initialize full sync required error.

        Args:
            reason: Why the cursor cannot be used.
        """
        self.reason = reason
        super().__init__(f"invalid cursor, full sync required: {reason}")


class ConnectorClosedError(ConnectorError):
    """Raised when an operation is attempted on a closed connector."""

    def __init__(self, source_id: str):
        self.source_id = source_id
        super().__init__(f"Connector for source {source_id} is closed")


class NotImplementedByConnectorError(ConnectorError):
    """Raised for operations a connector does not support (e.g. watch)."""

    def __init__(self, connector_type: str, operation: str):
        self.connector_type = connector_type
        self.operation = operation
        super().__init__(f"{operation} is not implemented by {connector_type}")


class SyncCancelledError(ConnectorError):
    """Raised when the caller's cancellation token fires."""

    def __init__(self, reason: str = "sync cancelled"):
        self.reason = reason
        super().__init__(reason)


class ProviderError(ConnectorError):
    """Raised when a provider operation fails."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        """
        Initialize provider error.

        Args:
            provider: Connector type of the provider (e.g., 'dropbox').
            message: Error description.
            status_code: HTTP status returned by the provider, if any.
        """
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"[{provider}] {message}")


class AuthRequiredError(ProviderError):
    """Raised when no usable credential is available (missing or expired)."""

    def __init__(self, provider: str, reason: str):
        """
        Initialize auth required error.

        Args:
            provider: Connector type of the provider.
            reason: Why the credential could not be obtained.
        """
        self.reason = reason
        super().__init__(provider, f"Authentication required: {reason}")


class AuthInvalidError(ProviderError):
    """Raised when the provider rejects the credential."""

    def __init__(self, provider: str, reason: str = "credential rejected"):
        self.reason = reason
        super().__init__(provider, f"Authentication invalid: {reason}", 401)


class RateLimitError(ProviderError):
    """Raised when throttling outlasts the retry budget."""

    def __init__(self, provider: str, retry_after: int | None = None):
        """
        Initialize rate limit error.

        Args:
            provider: Connector type of the provider.
            retry_after: Seconds to wait before retrying (if provided by API).
        """
        self.retry_after = retry_after
        msg = "Rate limit exceeded"
        if retry_after:
            msg += f", retry after {retry_after}s"
        super().__init__(provider, msg, 429)


class ResumeTokenExpiredError(ProviderError):
    """Raised when the provider invalidates a sub-resource's resume token."""

    def __init__(self, provider: str, sub_resource: str = ""):
        self.sub_resource = sub_resource
        target = f" for {sub_resource}" if sub_resource else ""
        super().__init__(provider, f"Resume token expired{target}", 410)


class ProviderUnavailableError(ProviderError):
    """Raised when the provider cannot be reached."""

    def __init__(self, provider: str, reason: str):
        self.reason = reason
        super().__init__(provider, f"Provider unreachable: {reason}")


class ContentFetchError(ProviderError):
    """Raised when one item's content cannot be downloaded."""

    def __init__(
        self,
        provider: str,
        item_id: str,
        reason: str,
        status_code: int | None = None,
    ):
        """
        Initialize content fetch error.

        Args:
            provider: Connector type of the provider.
            item_id: ID of the item whose content failed to download.
            reason: Reason for download failure.
            status_code: HTTP status of the content response, if any.
        """
        self.item_id = item_id
        self.reason = reason
        super().__init__(
            provider, f"Failed to fetch content for {item_id}: {reason}", status_code
        )
