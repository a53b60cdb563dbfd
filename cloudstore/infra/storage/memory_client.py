"""In-memory storage backend.

Keeps containers and objects in process memory. It behaves like the
token-based providers the contract has to cover: objects and prefixes are
listed through two independent page-walks, every chunk upload needs a fresh
single-use token, custom metadata is limited and prefixed, and there is no
presigned URL support.
"""

from __future__ import annotations

import asyncio
import hashlib
import io
import itertools
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Sequence

from cloudstore.common.config import DEFAULT_LIST_PAGE_SIZE, MIN_CHUNK_SIZE_BYTES
from cloudstore.common.errors import (
    AlreadyExistsError,
    AuthorizationError,
    NotFoundError,
    StorageError,
)
from cloudstore.domain.streams import ObjectStream
from cloudstore.infra.storage.client import (
    BackendMetadata,
    BackendProfile,
    ChunkTarget,
    CompletedChunk,
    ContainerOptions,
    ContainerPage,
    LargeUpload,
    ListEntry,
    ListKind,
    ListPage,
    ObjectEntry,
    PrefixEntry,
    PutOptions,
)

MEMORY_PROFILE = BackendProfile(
    provider="memory",
    single_object_max_bytes=5 * 1024 * 1024 * 1024,
    min_chunk_bytes=MIN_CHUNK_SIZE_BYTES,
    native_headers={
        "Content-Type": "content_type",
        "Content-Encoding": "content_encoding",
        "Content-Language": "content_language",
        "Cache-Control": "cache_control",
        "Content-Disposition": "content_disposition",
        "Content-MD5": "content_md5",
    },
    custom_metadata_prefix="X-Meta-",
    max_custom_metadata=10,
    custom_key_pattern=re.compile(r"^[A-Za-z0-9-]+$"),
    split_listing=True,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class StoredObject:
    data: bytes
    headers: dict[str, str] = field(default_factory=dict)
    custom: dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def entry(self, path: str) -> ObjectEntry:
        return ObjectEntry(
            path=path,
            size=len(self.data),
            last_modified=self.updated_at,
            creation_time=self.created_at,
            content_type=self.headers.get("content_type"),
            content_md5=hashlib.md5(self.data).hexdigest(),
            content_sha1=hashlib.sha1(self.data).hexdigest(),
        )


@dataclass
class StoredContainer:
    options: ContainerOptions
    objects: dict[str, StoredObject] = field(default_factory=dict)


@dataclass
class PendingUpload:
    container: str
    path: str
    metadata: BackendMetadata
    chunks: dict[int, tuple[str, bytes]] = field(default_factory=dict)


class InMemoryBackendClient:
    """Backend client storing everything in process memory.

    ``max_page_size`` caps every list page, which makes multi-page listings
    easy to produce with small data sets.
    """

    def __init__(self, *, max_page_size: int | None = None) -> None:
        self.profile = MEMORY_PROFILE
        self._max_page_size = max_page_size
        self._containers: dict[str, StoredContainer] = {}
        self.uploads: dict[str, PendingUpload] = {}
        self._tokens: dict[str, tuple[str, int]] = {}
        self._upload_counter = itertools.count(1)
        self.authorizations = 0

    async def authorize(self) -> None:
        await asyncio.sleep(0)
        self.authorizations += 1

    async def create_container(
        self, *, container: str, options: ContainerOptions
    ) -> None:
        if container in self._containers:
            raise AlreadyExistsError(f"Container already exists: {container}")
        self._containers[container] = StoredContainer(options=options)

    async def container_exists(self, *, container: str) -> bool:
        return container in self._containers

    async def list_containers_page(self, *, cursor: str | None) -> ContainerPage:
        names = sorted(self._containers)
        start = self._decode_cursor(cursor)
        end = start + self._page_size(DEFAULT_LIST_PAGE_SIZE)
        next_cursor = str(end) if end < len(names) else None
        return ContainerPage(names=tuple(names[start:end]), cursor=next_cursor)

    async def delete_container(self, *, container: str) -> None:
        stored = self._container(container)
        if stored.objects:
            raise StorageError(f"Container is not empty: {container}")
        del self._containers[container]

    async def put_object(
        self,
        *,
        container: str,
        path: str,
        data: bytes,
        metadata: BackendMetadata,
        options: PutOptions,
    ) -> None:
        self._store(container, path, data, metadata)

    async def get_object(self, *, container: str, path: str) -> ObjectStream:
        stored = self._container(container).objects.get(path)
        if stored is None:
            raise NotFoundError(f"Object not found: {path}")
        return ObjectStream(io.BytesIO(stored.data))

    def head(self, container: str, path: str) -> StoredObject:
        """Return the stored object, for inspection."""
        stored = self._container(container).objects.get(path)
        if stored is None:
            raise NotFoundError(f"Object not found: {path}")
        return stored

    async def list_page(
        self,
        *,
        container: str,
        prefix: str,
        cursor: str | None,
        kind: ListKind,
        page_size: int,
    ) -> ListPage:
        entries = self._entries(self._container(container), prefix, kind)
        start = self._decode_cursor(cursor)
        end = start + self._page_size(page_size)
        next_cursor = str(end) if end < len(entries) else None
        return ListPage(entries=tuple(entries[start:end]), cursor=next_cursor)

    async def delete_object(self, *, container: str, path: str) -> None:
        self._container(container).objects.pop(path, None)

    async def start_large_upload(
        self,
        *,
        container: str,
        path: str,
        metadata: BackendMetadata,
        options: PutOptions,
    ) -> LargeUpload:
        self._container(container)
        upload_id = f"memory-upload-{next(self._upload_counter)}"
        self.uploads[upload_id] = PendingUpload(
            container=container, path=path, metadata=metadata
        )
        return LargeUpload(upload_id=upload_id, container=container, path=path)

    async def get_chunk_target(
        self, *, upload: LargeUpload, chunk_number: int
    ) -> ChunkTarget:
        self._pending(upload)
        token = uuid.uuid4().hex
        self._tokens[token] = (upload.upload_id, chunk_number)
        return ChunkTarget(
            url=f"memory://{upload.upload_id}/{chunk_number}", token=token
        )

    async def upload_chunk(
        self,
        *,
        upload: LargeUpload,
        target: ChunkTarget,
        chunk_number: int,
        data: bytes,
    ) -> CompletedChunk:
        pending = self._pending(upload)
        issued = self._tokens.pop(target.token or "", None)
        if issued != (upload.upload_id, chunk_number):
            raise AuthorizationError("Upload token is invalid or already used")
        chunk_id = hashlib.sha1(data).hexdigest()
        pending.chunks[chunk_number] = (chunk_id, data)
        return CompletedChunk(chunk_number=chunk_number, chunk_id=chunk_id)

    async def commit_large_upload(
        self, *, upload: LargeUpload, chunks: Sequence[CompletedChunk]
    ) -> None:
        pending = self._pending(upload)
        numbers = [chunk.chunk_number for chunk in chunks]
        if numbers != list(range(1, len(pending.chunks) + 1)):
            raise StorageError("Chunks must be committed in ascending order")
        for chunk in chunks:
            if pending.chunks[chunk.chunk_number][0] != chunk.chunk_id:
                raise StorageError(
                    f"Checksum mismatch for chunk {chunk.chunk_number}"
                )
        data = b"".join(pending.chunks[number][1] for number in numbers)
        self._store(pending.container, pending.path, data, pending.metadata)
        del self.uploads[upload.upload_id]

    async def abort_large_upload(self, *, upload: LargeUpload) -> None:
        if self.uploads.pop(upload.upload_id, None) is None:
            raise NotFoundError(f"Upload not found: {upload.upload_id}")
        self._tokens = {
            token: issued
            for token, issued in self._tokens.items()
            if issued[0] != upload.upload_id
        }

    async def aclose(self) -> None:
        return None

    def _container(self, container: str) -> StoredContainer:
        stored = self._containers.get(container)
        if stored is None:
            raise NotFoundError(f"Container not found: {container}")
        return stored

    def _pending(self, upload: LargeUpload) -> PendingUpload:
        pending = self.uploads.get(upload.upload_id)
        if pending is None:
            raise NotFoundError(f"Upload not found: {upload.upload_id}")
        return pending

    def _store(
        self, container: str, path: str, data: bytes, metadata: BackendMetadata
    ) -> None:
        objects = self._container(container).objects
        previous = objects.get(path)
        objects[path] = StoredObject(
            data=data,
            headers=dict(metadata.headers),
            custom=dict(metadata.custom),
            created_at=previous.created_at if previous else _now(),
        )

    def _entries(
        self, stored: StoredContainer, prefix: str, kind: ListKind
    ) -> list[ListEntry]:
        delimiter = self.profile.delimiter
        objects: list[tuple[str, ListEntry]] = []
        prefixes: dict[str, ListEntry] = {}
        for path, obj in stored.objects.items():
            if not path.startswith(prefix):
                continue
            rest = path[len(prefix) :]
            cut = rest.find(delimiter)
            if cut < 0:
                objects.append((path, obj.entry(path)))
            else:
                folder = prefix + rest[: cut + len(delimiter)]
                prefixes.setdefault(folder, PrefixEntry(prefix=folder))
        if kind is ListKind.OBJECTS:
            keyed = objects
        elif kind is ListKind.PREFIXES:
            keyed = list(prefixes.items())
        else:
            keyed = objects + list(prefixes.items())
        return [entry for _, entry in sorted(keyed, key=lambda item: item[0])]

    def _page_size(self, requested: int) -> int:
        if self._max_page_size is None:
            return requested
        return min(requested, self._max_page_size)

    @staticmethod
    def _decode_cursor(cursor: str | None) -> int:
        if cursor is None:
            return 0
        try:
            return int(cursor)
        except ValueError:
            raise StorageError(f"Invalid continuation cursor: {cursor}") from None
