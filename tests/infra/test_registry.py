from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from cloudstore.common.config import Settings, TransferConfig
from cloudstore.common.errors import ValidationError
from cloudstore.infra.storage.memory_client import InMemoryBackendClient
from cloudstore.infra.storage.registry import (
    create_backend,
    create_storage,
    create_storage_from_settings,
    providers,
)
from cloudstore.infra.storage.s3_client import S3BackendClient
from cloudstore.services.storage_service import StorageService


@pytest.fixture()
def mock_s3():
    with patch.object(S3BackendClient, "_build_client", return_value=MagicMock()):
        yield


@pytest.fixture()
def logging_setup():
    with patch("cloudstore.infra.storage.registry.setup_logging") as setup:
        yield setup


def test_providers():
    assert providers() == ["aws-s3", "generic-s3", "memory", "minio"]


def test_unknown_provider():
    with pytest.raises(ValidationError, match="Valid providers include"):
        create_backend("ftp", {"host": "example.com"})


def test_empty_connection():
    with pytest.raises(ValidationError, match="non-empty"):
        create_backend("memory", {})


def test_memory_backend():
    client = create_backend("memory", {"max_page_size": 2})

    assert isinstance(client, InMemoryBackendClient)
    assert client.profile.split_listing


@pytest.mark.parametrize("provider", ["aws-s3", "generic-s3", "minio"])
def test_s3_backends(mock_s3, provider):
    client = create_backend(provider, {"endpoint_url": "http://localhost:9000"})

    assert isinstance(client, S3BackendClient)
    assert client.profile.provider == provider


def test_s3_backend_rejects_unknown_options(mock_s3):
    with pytest.raises(ValidationError, match="Unknown S3 connection options"):
        create_backend("minio", {"bucket": "x"})


def test_create_storage_uses_given_config():
    config = TransferConfig(retries=1)

    storage = create_storage("memory", {"max_page_size": 5}, config=config)

    assert isinstance(storage, StorageService)
    assert storage.provider == "memory"
    assert storage.config is config


def test_create_storage_from_settings(mock_s3, logging_setup):
    memory = create_storage_from_settings(Settings(UPLOAD_RETRIES=1))
    minio = create_storage_from_settings(
        Settings(STORAGE_PROVIDER="minio", S3_ENDPOINT_URL="http://localhost:9000")
    )

    assert memory.provider == "memory"
    assert memory.config.retries == 1
    assert minio.provider == "minio"


def test_create_storage_from_settings_unknown_provider(logging_setup):
    with pytest.raises(ValidationError, match="Unsupported storage provider"):
        create_storage_from_settings(Settings(STORAGE_PROVIDER="ftp"))


def test_create_storage_from_settings_configures_logging(logging_setup):
    create_storage_from_settings(Settings(LOG_LEVEL="DEBUG"))

    logging_setup.assert_called_once_with("DEBUG")
