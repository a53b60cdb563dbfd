"""Failure-injecting storage backend for testing the transfer engine."""

from __future__ import annotations

import inspect
from dataclasses import replace
from typing import Any

from cloudstore.common.errors import AuthorizationError
from cloudstore.infra.storage.client import (
    BackendProfile,
    ChunkTarget,
    CompletedChunk,
    LargeUpload,
)
from cloudstore.infra.storage.memory_client import InMemoryBackendClient


class FlakyBackendClient:
    """Wraps an in-memory backend, recording calls and raising queued errors.

    ``fail("upload_chunk", TransportError("boom"))`` makes the next
    ``upload_chunk`` call raise instead of reaching the wrapped backend.
    """

    def __init__(
        self,
        inner: InMemoryBackendClient | None = None,
        *,
        profile: BackendProfile | None = None,
    ) -> None:
        self.inner = inner or InMemoryBackendClient()
        self.profile = profile or self.inner.profile
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._failures: dict[str, list[Exception]] = {}

    def with_profile(self, **changes: Any) -> "FlakyBackendClient":
        self.profile = replace(self.profile, **changes)
        return self

    def fail(self, operation: str, *errors: Exception) -> None:
        self._failures.setdefault(operation, []).extend(errors)

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    @property
    def operations(self) -> list[str]:
        return [name for name, _ in self.calls]

    def __getattr__(self, name: str) -> Any:
        if name == "inner":
            raise AttributeError(name)
        target = getattr(self.inner, name)
        if not inspect.iscoroutinefunction(target):
            return target

        async def call(**kwargs: Any) -> Any:
            self.calls.append((name, kwargs))
            pending = self._failures.get(name)
            if pending:
                raise pending.pop(0)
            return await target(**kwargs)

        return call


class ExpiringTokenBackendClient(InMemoryBackendClient):
    """In-memory backend whose first chunk upload burns its token and is rejected.

    Mimics a chunk token that expired in flight: the server has consumed it,
    so only a newly issued target can succeed.
    """

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.sent_tokens: list[str | None] = []

    async def upload_chunk(
        self,
        *,
        upload: LargeUpload,
        target: ChunkTarget,
        chunk_number: int,
        data: bytes,
    ) -> CompletedChunk:
        self.sent_tokens.append(target.token)
        if len(self.sent_tokens) == 1:
            self._tokens.pop(target.token or "", None)
            raise AuthorizationError("expired upload token")
        return await super().upload_chunk(
            upload=upload, target=target, chunk_number=chunk_number, data=data
        )


class SleepRecorder:
    """Stand-in for asyncio.sleep that records the requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
