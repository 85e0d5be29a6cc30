"""
Pytest configuration and fixtures for docsync tests.
"""

from typing import Generator

import pytest

from docsync.config import SyncSettings, reset_settings
from docsync.logic.cancellation import CancellationToken
from docsync.logic.credentials import StaticCredentialProvider
from docsync.logic.models import Source


@pytest.fixture(autouse=True)
def clean_settings() -> Generator[None, None, None]:
    """Reset cached settings around every test."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings() -> SyncSettings:
    """Settings that ignore any local .env file."""
    return SyncSettings(_env_file=None)  # type: ignore[call-arg]


@pytest.fixture
def credentials() -> StaticCredentialProvider:
    """Credential provider holding a test token."""
    return StaticCredentialProvider("test_token", authorization_id="auth-1")


@pytest.fixture
def cancel_token() -> CancellationToken:
    """Fresh, uncancelled token."""
    return CancellationToken()


@pytest.fixture
def make_source():
    """Factory for sources of a given type."""

    def _make(source_type: str, **config: str) -> Source:
        return Source(
            id="src-1",
            type=source_type,
            config=dict(config),
            authorization_id="auth-1",
        )

    return _make
