"""Uniform storage contract.

This module provides the application-facing service for object storage:
container management, uploads through the upload engine, downloads,
aggregated listings and presigned URLs, identical across backends.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable

from cloudstore.common.config import TransferConfig, get_settings
from cloudstore.common.errors import (
    AlreadyExistsError,
    UnsupportedOperationError,
    ValidationError,
)
from cloudstore.domain.pagination import aggregate_containers, aggregate_listing
from cloudstore.domain.streams import ObjectStream, classify_source
from cloudstore.domain.uploads import ChunkedUpload, UploadSession
from cloudstore.infra.storage.client import (
    BackendClient,
    ContainerOptions,
    ListEntry,
    PresigningClient,
    PutOptions,
    normalize_access,
)
from cloudstore.services.gateway import ClientGateway

logger = logging.getLogger("cloudstore.service")


def _require_name(value: Any, label: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{label} must be a non-empty string")
    return value


class StorageService:
    """Application service exposing one storage contract for every backend.

    Container names and object paths are passed to the backend exactly as
    given: they are case-sensitive and never normalized.
    """

    def __init__(
        self,
        client: BackendClient,
        *,
        config: TransferConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._gateway = ClientGateway(client)
        self._config = config or get_settings().transfer_config()
        self._sleep = sleep

    @property
    def provider(self) -> str:
        return self._client.profile.provider

    @property
    def client(self) -> BackendClient:
        """The backend client, for direct access to provider features."""
        return self._client

    @property
    def config(self) -> TransferConfig:
        return self._config

    async def create_container(
        self, name: str, options: ContainerOptions | None = None
    ) -> None:
        """Create a container.

        Raises:
            AlreadyExistsError: If the name is already taken.
        """
        _require_name(name, "container")
        options = options or ContainerOptions()
        options = replace(options, access=normalize_access(options.access))
        await self._gateway.create_container(container=name, options=options)

    async def container_exists(self, name: str) -> bool:
        _require_name(name, "container")
        return bool(await self._gateway.container_exists(container=name))

    async def ensure_container(
        self, name: str, options: ContainerOptions | None = None
    ) -> None:
        """Create the container unless it already exists."""
        if await self.container_exists(name):
            return
        try:
            await self.create_container(name, options)
        except AlreadyExistsError:
            logger.info(
                "container_created_concurrently provider=%s container=%s",
                self.provider,
                name,
            )

    async def list_containers(self) -> list[str]:
        return await aggregate_containers(self._gateway)

    async def delete_container(self, name: str) -> None:
        _require_name(name, "container")
        await self._gateway.delete_container(container=name)

    async def put_object(
        self,
        container: str,
        path: str,
        data: Any,
        options: PutOptions | None = None,
    ) -> UploadSession:
        """Upload an object from bytes, a string or a stream.

        Args:
            container: Target container.
            path: Object path inside the container.
            data: bytes-like object, str (sent as UTF-8), or a readable stream.
            options: Metadata, declared stream length and storage options.

        Returns:
            The settled UploadSession, in the COMMITTED state.

        Raises:
            ValidationError: For bad arguments or metadata, before any I/O.
            TransportError: When retries are exhausted.
        """
        _require_name(container, "container")
        _require_name(path, "path")
        options = options or PutOptions()
        options = replace(options, access=normalize_access(options.access))
        source = classify_source(data, options.length)
        upload = ChunkedUpload(
            self._gateway,
            container=container,
            path=path,
            source=source,
            options=options,
            config=self._config,
            sleep=self._sleep,
        )
        return await upload.run()

    async def get_object(self, container: str, path: str) -> ObjectStream:
        _require_name(container, "container")
        _require_name(path, "path")
        return await self._gateway.get_object(container=container, path=path)

    async def get_object_as_buffer(self, container: str, path: str) -> bytes:
        stream = await self.get_object(container, path)
        return await stream.read_all()

    async def get_object_as_string(
        self, container: str, path: str, encoding: str = "utf-8"
    ) -> str:
        data = await self.get_object_as_buffer(container, path)
        return data.decode(encoding)

    async def list_objects(self, container: str, prefix: str = "") -> list[ListEntry]:
        """List objects and prefixes one level below ``prefix``."""
        _require_name(container, "container")
        if not isinstance(prefix, str):
            raise ValidationError("prefix must be a string")
        return await aggregate_listing(
            self._gateway,
            container=container,
            prefix=prefix,
            page_size=self._config.list_page_size,
        )

    async def delete_object(self, container: str, path: str) -> None:
        _require_name(container, "container")
        _require_name(path, "path")
        await self._gateway.delete_object(container=container, path=path)

    def presigned_get_url(self, container: str, path: str, ttl: int) -> str:
        """Return a URL granting GET access for ``ttl`` seconds.

        Raises:
            UnsupportedOperationError: If the backend cannot presign URLs.
        """
        presigner = self._presigner(container, path, ttl)
        return presigner.presign_get_url(container=container, path=path, ttl=ttl)

    def presigned_put_url(self, container: str, path: str, ttl: int) -> str:
        """Return a URL granting PUT access for ``ttl`` seconds.

        Raises:
            UnsupportedOperationError: If the backend cannot presign URLs.
        """
        presigner = self._presigner(container, path, ttl)
        return presigner.presign_put_url(container=container, path=path, ttl=ttl)

    def _presigner(self, container: str, path: str, ttl: int) -> PresigningClient:
        if not isinstance(self._client, PresigningClient):
            raise UnsupportedOperationError(
                f"Presigned URLs are not supported by {self.provider}",
                operation="presign",
                container=container,
                path=path,
            )
        _require_name(container, "container")
        _require_name(path, "path")
        if isinstance(ttl, bool) or not isinstance(ttl, int) or ttl <= 0:
            raise ValidationError("ttl must be a positive number of seconds")
        return self._client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "StorageService":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
