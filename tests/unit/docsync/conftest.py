"""
Fixtures for sync engine tests.
"""

import pytest

from docsync.logic.models import Source
from fake_connector import FakeConnector


@pytest.fixture
def fake_source() -> Source:
    """Source bound to the fake connector."""
    return Source(id="src-fake", type="fake")


@pytest.fixture
def connector(fake_source, credentials, settings) -> FakeConnector:
    """Single-partition fake connector."""
    return FakeConnector(fake_source, credentials, settings)


@pytest.fixture
def calendar_connector(fake_source, credentials, settings) -> FakeConnector:
    """Fake connector with isolated calA/calB sub-resources."""
    c = FakeConnector(fake_source, credentials, settings, isolates=True)
    c.sub_resources = ["calA", "calB"]
    return c
