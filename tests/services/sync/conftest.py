import pytest
from unittest.mock import AsyncMock, Mock

from elby_dashboard.integrations.sdms.client import SDMSClient
from elby_dashboard.services.sync import SDMSSyncService


@pytest.fixture
def mock_client():
    """SDMS client whose lookups return nothing until a test says otherwise."""
    client = Mock(spec=SDMSClient)
    client.get_school = AsyncMock(return_value=None)
    client.get_student = AsyncMock(return_value=None)
    client.get_staff = AsyncMock(return_value=None)
    return client


@pytest.fixture
def sync_service(db_session, mock_client, cache_config, audit):
    return SDMSSyncService(db_session, mock_client, cache_config, audit)
