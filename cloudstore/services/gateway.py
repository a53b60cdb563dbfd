"""Authorized access to a backend client's primitives."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Any, Awaitable, Callable

from cloudstore.common.errors import AuthorizationError, StorageError
from cloudstore.infra.storage.client import BackendClient, BackendProfile, LargeUpload

logger = logging.getLogger("cloudstore.gateway")

PRIMITIVES = frozenset(
    {
        "create_container",
        "container_exists",
        "list_containers_page",
        "delete_container",
        "put_object",
        "get_object",
        "list_page",
        "delete_object",
        "start_large_upload",
        "get_chunk_target",
        "upload_chunk",
        "commit_large_upload",
        "abort_large_upload",
    }
)


class ClientGateway:
    """Calls backend primitives behind a lazily established authorization.

    The handshake is memoized per gateway: concurrent first calls await the
    same task, and a failed handshake is forgotten so the next call starts a
    new one. A primitive rejected with ``AuthorizationError`` triggers exactly
    one re-authorization and one more attempt before the error surfaces; a
    replayed ``upload_chunk`` is sent to a newly fetched chunk target.
    Every ``StorageError`` leaving the gateway carries the operation name,
    container and path.

    Primitives are exposed as attributes, so a gateway can stand in for the
    backend client: ``await gateway.list_page(container=..., ...)``.
    """

    def __init__(self, client: BackendClient) -> None:
        self._client = client
        self._auth_task: asyncio.Future[None] | None = None

    @property
    def profile(self) -> BackendProfile:
        return self._client.profile

    def __getattr__(self, name: str) -> Callable[..., Awaitable[Any]]:
        if name in PRIMITIVES:
            return partial(self.call, name)
        raise AttributeError(name)

    async def ensure_authorized(self) -> asyncio.Future[None]:
        task = self._auth_task
        if task is None or (task.done() and (task.cancelled() or task.exception())):
            task = asyncio.ensure_future(self._client.authorize())
            self._auth_task = task
        await asyncio.shield(task)
        return task

    async def _reauthorize(self, stale: asyncio.Future[None]) -> None:
        # Calls that failed against the same handshake share one replacement.
        if self._auth_task is stale:
            self._auth_task = asyncio.ensure_future(self._client.authorize())
        await asyncio.shield(self._auth_task)

    async def call(self, operation: str, **kwargs: Any) -> Any:
        method = getattr(self._client, operation)
        container = kwargs.get("container")
        path = kwargs.get("path")
        upload = kwargs.get("upload")
        if isinstance(upload, LargeUpload):
            container, path = upload.container, upload.path
        try:
            handshake = await self.ensure_authorized()
            try:
                return await method(**kwargs)
            except AuthorizationError:
                logger.warning(
                    "backend_reauthorize provider=%s operation=%s container=%s path=%s",
                    self.profile.provider,
                    operation,
                    container,
                    path,
                )
                await self._reauthorize(handshake)
                return await method(**await self._replay_arguments(operation, kwargs))
        except StorageError as exc:
            raise exc.with_context(operation=operation, container=container, path=path)

    async def _replay_arguments(
        self, operation: str, kwargs: dict[str, Any]
    ) -> dict[str, Any]:
        if operation != "upload_chunk":
            return kwargs
        # Chunk targets are single-use, so the replay gets a fresh one.
        target = await self._client.get_chunk_target(
            upload=kwargs["upload"], chunk_number=kwargs["chunk_number"]
        )
        return {**kwargs, "target": target}
