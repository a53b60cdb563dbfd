from __future__ import annotations

import pytest

from cloudstore.common.config import TransferConfig, get_settings
from cloudstore.infra.storage.memory_client import InMemoryBackendClient
from cloudstore.services.storage_service import StorageService
from tests.services.mock_storage import FlakyBackendClient, SleepRecorder


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def transfer_config():
    return TransferConfig(retry_base_delay=0.5)


@pytest.fixture()
def sleeps():
    return SleepRecorder()


@pytest.fixture()
def memory_client():
    return InMemoryBackendClient()


@pytest.fixture()
def flaky_client(memory_client):
    return FlakyBackendClient(memory_client)


@pytest.fixture()
def storage(flaky_client, transfer_config, sleeps):
    return StorageService(flaky_client, config=transfer_config, sleep=sleeps)
