"""
Connector registry.

Maps a source's type string to the builder that constructs its connector.
The registry is an explicit object handed to callers; nothing is
registered globally.
"""

import logging
import threading
from typing import TYPE_CHECKING, Callable

from docsync.config import SyncSettings, get_settings
from docsync.logic.credentials import CredentialProvider
from docsync.logic.exceptions import UnsupportedConnectorTypeError
from docsync.logic.models import Source

if TYPE_CHECKING:
    from docsync.providers.base import BaseConnector

logger = logging.getLogger("docsync.registry")

ConnectorBuilder = Callable[[Source, CredentialProvider, SyncSettings], "BaseConnector"]
CredentialResolver = Callable[[Source], CredentialProvider]


class ConnectorRegistry:
    """
    Thread-safe mapping from connector type to builder.

    Usage:
        registry = ConnectorRegistry(resolve_credentials)
        register_builtin_connectors(registry)
        connector = registry.create(source)
    """

    def __init__(
        self,
        credential_resolver: CredentialResolver,
        settings: SyncSettings | None = None,
    ):
        """
        Initialize registry.

        Args:
            credential_resolver: Returns the credential provider for a source.
            settings: Settings passed to every builder (defaults to environment).
        """
        self._credential_resolver = credential_resolver
        self._settings = settings
        self._builders: dict[str, ConnectorBuilder] = {}
        self._lock = threading.Lock()

    def register(self, connector_type: str, builder: ConnectorBuilder) -> None:
        """
        Register a builder, replacing any existing one for the type.

        Args:
            connector_type: Source type string (e.g., 'dropbox').
            builder: Callable taking (source, credentials, settings).
        """
        with self._lock:
            replaced = connector_type in self._builders
            self._builders[connector_type] = builder

        if replaced:
            logger.warning(f"⚠️ Replaced connector builder for {connector_type}")
        else:
            logger.debug(f"🔧 Registered connector builder for {connector_type}")

    def unregister(self, connector_type: str) -> bool:
        """
        Remove a builder.

        Returns:
            True if a builder was registered for the type.
        """
        with self._lock:
            return self._builders.pop(connector_type, None) is not None

    def supported_types(self) -> list[str]:
        """Return registered type strings, sorted."""
        with self._lock:
            return sorted(self._builders)

    def is_supported(self, connector_type: str) -> bool:
        with self._lock:
            return connector_type in self._builders

    def create(self, source: Source) -> "BaseConnector":
        """
        Build a connector for a source.

        Args:
            source: Configured source.

        Returns:
            Open connector bound to the source.

        Raises:
            UnsupportedConnectorTypeError: If no builder handles source.type.
        """
        with self._lock:
            builder = self._builders.get(source.type)
        if builder is None:
            raise UnsupportedConnectorTypeError(source.type)

        credentials = self._credential_resolver(source)
        connector = builder(source, credentials, self._settings or get_settings())
        logger.info(f"🔌 Created {source.type} connector for source {source.id}")
        return connector


def register_builtin_connectors(registry: ConnectorRegistry) -> None:
    """Register every connector shipped with docsync."""
    from docsync.providers.dropbox import DropboxConnector
    from docsync.providers.gmail import GmailConnector
    from docsync.providers.google_calendar import GoogleCalendarConnector
    from docsync.providers.google_drive import GoogleDriveConnector
    from docsync.providers.microsoft_calendar import MicrosoftCalendarConnector
    from docsync.providers.notion import NotionConnector
    from docsync.providers.onedrive import OneDriveConnector
    from docsync.providers.outlook import OutlookConnector

    for connector_class in (
        DropboxConnector,
        GoogleDriveConnector,
        GoogleCalendarConnector,
        MicrosoftCalendarConnector,
        OutlookConnector,
        OneDriveConnector,
        GmailConnector,
        NotionConnector,
    ):
        registry.register(connector_class.connector_type, connector_class)
