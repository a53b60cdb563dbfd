"""String-keyed provider registry."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from cloudstore.common.config import Settings, TransferConfig
from cloudstore.common.errors import ValidationError
from cloudstore.common.logging import setup_logging
from cloudstore.infra.storage.client import BackendClient
from cloudstore.infra.storage.memory_client import InMemoryBackendClient
from cloudstore.infra.storage.s3_client import S3BackendClient, S3Connection
from cloudstore.services.storage_service import StorageService

logger = logging.getLogger("cloudstore.registry")


def _s3_factory(provider: str) -> Callable[[Mapping[str, Any]], BackendClient]:
    def build(connection: Mapping[str, Any]) -> BackendClient:
        return S3BackendClient(
            connection=S3Connection.from_mapping(connection), provider=provider
        )

    return build


def _memory_factory(connection: Mapping[str, Any]) -> BackendClient:
    return InMemoryBackendClient(max_page_size=connection.get("max_page_size"))


_FACTORIES: dict[str, Callable[[Mapping[str, Any]], BackendClient]] = {
    "aws-s3": _s3_factory("aws-s3"),
    "generic-s3": _s3_factory("generic-s3"),
    "minio": _s3_factory("minio"),
    "memory": _memory_factory,
}


def providers() -> list[str]:
    """Return the list of supported provider ids."""
    return sorted(_FACTORIES)


def create_backend(provider: str, connection: Mapping[str, Any]) -> BackendClient:
    """Build a backend client for ``provider``.

    Only the presence of a connection is checked here; each backend validates
    its own options.

    Raises:
        ValidationError: If the provider is unknown or the connection empty.
    """
    factory = _FACTORIES.get(provider) if isinstance(provider, str) else None
    if factory is None:
        raise ValidationError(
            "The specified provider is not valid. Valid providers include: "
            + ", ".join(providers())
        )
    if not connection:
        raise ValidationError("The connection argument must be non-empty")
    client = factory(connection)
    logger.info("backend_created provider=%s", provider)
    return client


def create_storage(
    provider: str,
    connection: Mapping[str, Any],
    *,
    config: TransferConfig | None = None,
) -> StorageService:
    """Build a ``StorageService`` for ``provider``."""
    return StorageService(create_backend(provider, connection), config=config)


def create_storage_from_settings(settings: Settings) -> StorageService:
    """Build a ``StorageService`` from environment settings.

    Also configures the package loggers at ``settings.LOG_LEVEL``.
    """
    setup_logging(settings.LOG_LEVEL)
    provider = settings.STORAGE_PROVIDER
    if provider == "memory":
        client: BackendClient = InMemoryBackendClient()
    elif provider in _FACTORIES:
        client = S3BackendClient(
            connection=S3Connection.from_settings(settings), provider=provider
        )
    else:
        raise ValidationError(f"Unsupported storage provider: {provider}")
    return StorageService(client, config=settings.transfer_config())
