"""Upload engine: strategy selection, single-shot and chunked uploads.

One ``ChunkedUpload`` drives one ``put_object`` call through the states
below and settles as COMMITTED or FAILED::

    SELECTING_STRATEGY -> SINGLE_SHOT_UPLOAD ------------------> COMMITTED
                       -> AWAITING_CHUNK <-> UPLOADING_CHUNK
                                               <-> RETRY_BACKOFF
                          -> COMMITTING -------------------------> COMMITTED

Any unrecoverable error moves the session to FAILED and re-raises the
error unchanged. Chunks are uploaded one at a time, so memory stays bounded
by the chunk size, and the object only becomes visible after the commit.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Protocol, Sequence, TypeVar

from cloudstore.common.config import TransferConfig
from cloudstore.common.errors import StorageError, TransportError
from cloudstore.domain.metadata import canonicalize, to_backend
from cloudstore.domain.streams import (
    PeekableStream,
    Source,
    UploadStrategy,
    select_strategy,
)
from cloudstore.infra.storage.client import (
    BackendMetadata,
    BackendProfile,
    ChunkTarget,
    CompletedChunk,
    LargeUpload,
    PutOptions,
)

logger = logging.getLogger("cloudstore.upload")

T = TypeVar("T")


class UploadState(str, Enum):
    SELECTING_STRATEGY = "selecting_strategy"
    SINGLE_SHOT_UPLOAD = "single_shot_upload"
    AWAITING_CHUNK = "awaiting_chunk"
    UPLOADING_CHUNK = "uploading_chunk"
    RETRY_BACKOFF = "retry_backoff"
    COMMITTING = "committing"
    COMMITTED = "committed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({UploadState.COMMITTED, UploadState.FAILED})


@dataclass
class UploadSession:
    """State of one upload; lives only for the duration of the call."""

    container: str
    path: str
    chunk_size: int
    metadata: dict[str, str] = field(default_factory=dict)
    length: int | None = None
    strategy: UploadStrategy | None = None
    chunks: list[CompletedChunk] = field(default_factory=list)
    retries: int = 0
    state: UploadState = UploadState.SELECTING_STRATEGY
    history: list[UploadState] = field(
        default_factory=lambda: [UploadState.SELECTING_STRATEGY]
    )

    @property
    def chunk_ids(self) -> list[str]:
        return [chunk.chunk_id for chunk in self.chunks]

    @property
    def settled(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, state: UploadState) -> None:
        logger.debug(
            "upload_state container=%s path=%s from=%s to=%s",
            self.container,
            self.path,
            self.state.value,
            state.value,
        )
        self.state = state
        self.history.append(state)


class UploadClient(Protocol):
    profile: BackendProfile

    async def put_object(
        self,
        *,
        container: str,
        path: str,
        data: bytes,
        metadata: BackendMetadata,
        options: PutOptions,
    ) -> None:
        ...

    async def start_large_upload(
        self,
        *,
        container: str,
        path: str,
        metadata: BackendMetadata,
        options: PutOptions,
    ) -> LargeUpload:
        ...

    async def get_chunk_target(
        self, *, upload: LargeUpload, chunk_number: int
    ) -> ChunkTarget:
        ...

    async def upload_chunk(
        self,
        *,
        upload: LargeUpload,
        target: ChunkTarget,
        chunk_number: int,
        data: bytes,
    ) -> CompletedChunk:
        ...

    async def commit_large_upload(
        self, *, upload: LargeUpload, chunks: Sequence[CompletedChunk]
    ) -> None:
        ...

    async def abort_large_upload(self, *, upload: LargeUpload) -> None:
        ...


class ChunkedUpload:
    """Runs a single upload session against a backend client."""

    def __init__(
        self,
        client: UploadClient,
        *,
        container: str,
        path: str,
        source: Source,
        options: PutOptions,
        config: TransferConfig,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._source = source
        self._options = options
        self._config = config
        self._sleep = sleep
        chunk_size = max(config.chunk_size, client.profile.min_chunk_bytes)
        self.session = UploadSession(
            container=container, path=path, chunk_size=chunk_size
        )

    async def run(self) -> UploadSession:
        session = self.session
        try:
            session.metadata = canonicalize(self._options.metadata)
            native = to_backend(session.metadata, self._client.profile)
            decision = await select_strategy(
                self._source,
                chunk_size=session.chunk_size,
                single_object_max=self._client.profile.single_object_max_bytes,
            )
            session.strategy = decision.strategy
            if decision.strategy is UploadStrategy.SINGLE_SHOT:
                await self._upload_single_shot(decision.payload or b"", native)
            elif decision.stream is None:
                raise StorageError("Chunked upload selected without a source stream")
            else:
                session.length = decision.length
                await self._upload_chunked(decision.stream, native)
        except Exception:
            session.transition(UploadState.FAILED)
            raise
        session.transition(UploadState.COMMITTED)
        logger.info(
            "upload_committed container=%s path=%s strategy=%s bytes=%s chunks=%d retries=%d",
            session.container,
            session.path,
            session.strategy.value if session.strategy else None,
            session.length,
            len(session.chunks),
            session.retries,
            extra={
                "extra": {
                    "container": session.container,
                    "path": session.path,
                    "bytes": session.length,
                    "chunks": len(session.chunks),
                }
            },
        )
        return session

    async def _upload_single_shot(self, payload: bytes, native: BackendMetadata) -> None:
        session = self.session
        session.length = len(payload)
        session.transition(UploadState.SINGLE_SHOT_UPLOAD)
        await self._with_retries(
            "put_object",
            partial(
                self._client.put_object,
                container=session.container,
                path=session.path,
                data=payload,
                metadata=native,
                options=self._options,
            ),
        )

    async def _upload_chunked(
        self, stream: PeekableStream, native: BackendMetadata
    ) -> None:
        session = self.session
        upload = await self._client.start_large_upload(
            container=session.container,
            path=session.path,
            metadata=native,
            options=self._options,
        )
        try:
            total = 0
            chunk_number = 0
            while True:
                session.transition(UploadState.AWAITING_CHUNK)
                data = await stream.read(session.chunk_size)
                if not data:
                    break
                chunk_number += 1
                total += len(data)
                session.transition(UploadState.UPLOADING_CHUNK)
                completed = await self._with_retries(
                    "upload_chunk",
                    partial(self._send_chunk, upload, chunk_number, data),
                )
                session.chunks.append(completed)
                if len(data) < session.chunk_size:
                    break
            session.length = total
            session.transition(UploadState.COMMITTING)
            await self._with_retries(
                "commit_large_upload",
                partial(
                    self._client.commit_large_upload,
                    upload=upload,
                    chunks=tuple(session.chunks),
                ),
            )
        except Exception:
            await self._abort(upload)
            raise

    async def _send_chunk(
        self, upload: LargeUpload, chunk_number: int, data: bytes
    ) -> CompletedChunk:
        # Targets are single-use and short-lived: fetch one per attempt.
        target = await self._client.get_chunk_target(
            upload=upload, chunk_number=chunk_number
        )
        return await self._client.upload_chunk(
            upload=upload, target=target, chunk_number=chunk_number, data=data
        )

    async def _with_retries(
        self, operation: str, call: Callable[[], Awaitable[T]]
    ) -> T:
        session = self.session
        retry = 0
        while True:
            try:
                return await call()
            except TransportError as exc:
                if retry >= self._config.retries:
                    logger.warning(
                        "upload_retries_exhausted operation=%s container=%s path=%s attempts=%d",
                        operation,
                        session.container,
                        session.path,
                        retry + 1,
                    )
                    raise
                retry += 1
                session.retries += 1
                delay = self._config.retry_delay(retry)
                resume_state = session.state
                session.transition(UploadState.RETRY_BACKOFF)
                logger.warning(
                    "upload_retry operation=%s container=%s path=%s retry=%d delay=%.3f error=%s",
                    operation,
                    session.container,
                    session.path,
                    retry,
                    delay,
                    exc,
                    extra={
                        "extra": {
                            "operation": operation,
                            "retry": retry,
                            "delay": delay,
                        }
                    },
                )
                await self._sleep(delay)
                session.transition(resume_state)

    async def _abort(self, upload: LargeUpload) -> None:
        try:
            await self._client.abort_large_upload(upload=upload)
        except StorageError:
            logger.warning(
                "upload_abort_failed container=%s path=%s upload_id=%s",
                upload.container,
                upload.path,
                upload.upload_id,
                exc_info=True,
            )
