# tests/conftest.py

import datetime
import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytz

# Add project root to path to ensure imports work
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from shared.remote_client import RemoteClient
from shared.service import AnnouncementService
from shared.storage import AnnouncementStore

FIXED_NOW = datetime.datetime(2024, 1, 1, 12, 0, tzinfo=pytz.utc)


@pytest.fixture
def data_file(tmp_path):
    return str(tmp_path / "data" / "ads.json")


@pytest.fixture
def store(data_file):
    """Store with a frozen clock so timestamps are predictable."""
    return AnnouncementStore(data_file, timezone="UTC", clock=lambda: FIXED_NOW)


@pytest.fixture
def transport():
    """Messaging transport that always succeeds."""
    transport = MagicMock()
    transport.send_message = AsyncMock(return_value=True)
    return transport


@pytest.fixture
def disabled_remote():
    return RemoteClient(base_url="http://remote.test/api", enabled=False)


@pytest.fixture
def remote():
    """Enabled remote client double; async methods become AsyncMock via spec=RemoteClient."""
    remote = MagicMock(spec=RemoteClient)
    remote.is_enabled.return_value = True
    remote.list_all.return_value = []
    remote.create.return_value = None
    remote.test_connection.return_value = True
    return remote


@pytest.fixture
def service(store, transport, disabled_remote):
    return AnnouncementService(store, transport, disabled_remote, timezone="UTC", max_per_group=10)


@pytest.fixture
def mirrored_service(store, transport, remote):
    return AnnouncementService(store, transport, remote, timezone="UTC", max_per_group=10)
