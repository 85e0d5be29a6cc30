"""
Connectors for remote content providers.

Each connector maps one provider's listing, change feed and content
download onto the hooks driven by the sync engine.
"""

from docsync.providers.base import BaseConnector
from docsync.providers.dropbox import DropboxConnector
from docsync.providers.gmail import GmailConnector
from docsync.providers.google_calendar import GoogleCalendarConnector
from docsync.providers.google_drive import GoogleDriveConnector
from docsync.providers.microsoft_calendar import MicrosoftCalendarConnector
from docsync.providers.notion import NotionConnector
from docsync.providers.onedrive import OneDriveConnector
from docsync.providers.outlook import OutlookConnector

__all__ = [
    "BaseConnector",
    "DropboxConnector",
    "GmailConnector",
    "GoogleCalendarConnector",
    "GoogleDriveConnector",
    "MicrosoftCalendarConnector",
    "NotionConnector",
    "OneDriveConnector",
    "OutlookConnector",
]
