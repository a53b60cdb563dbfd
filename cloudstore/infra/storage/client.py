"""Backend client protocol and data types.

This module defines the primitive operations the storage contract calls on
every backend: container and object CRUD, one-page-at-a-time listing with a
continuation cursor, and the start/target/upload/commit/abort primitives of
a chunked (multipart) upload. Signing, TLS and retries below the primitive
boundary belong to the backend client.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Mapping, Protocol, Sequence, Union, runtime_checkable

from cloudstore.common.errors import ValidationError

if TYPE_CHECKING:
    from cloudstore.domain.streams import ObjectStream

DELIMITER = "/"

# Canned ACLs accepted by the contract, with the aliases kept for consistency
# across providers: "none" means private, "public" means public-read.
ACCESS_ALIASES: dict[str, str] = {
    "private": "private",
    "none": "private",
    "public": "public-read",
    "public-read": "public-read",
    "public-read-write": "public-read-write",
    "authenticated-read": "authenticated-read",
}


def normalize_access(access: str | None) -> str | None:
    """Resolve an ACL alias to its canonical name."""
    if access is None:
        return None
    try:
        return ACCESS_ALIASES[access.strip().lower()]
    except KeyError:
        raise ValidationError(
            f"Unsupported access level: {access}. "
            f"Valid values: {', '.join(sorted(ACCESS_ALIASES))}"
        ) from None


class ListKind(str, Enum):
    """Which entries a single list request should return."""

    ALL = "all"
    OBJECTS = "objects"
    PREFIXES = "prefixes"


@dataclass(frozen=True, slots=True)
class ObjectEntry:
    """An object returned by a listing.

    ``content_md5`` is the hex MD5 digest of the object data, or ``None``
    when the backend cannot report one (S3 multipart uploads, for example).
    It differs from the base64 value carried by the ``Content-MD5`` header.
    """

    path: str
    size: int
    last_modified: datetime | None = None
    creation_time: datetime | None = None
    content_type: str | None = None
    content_md5: str | None = None
    content_sha1: str | None = None


@dataclass(frozen=True, slots=True)
class PrefixEntry:
    """A virtual folder returned by a non-recursive listing."""

    prefix: str


ListEntry = Union[ObjectEntry, PrefixEntry]


@dataclass(frozen=True, slots=True)
class ListPage:
    """One page of a list response."""

    entries: tuple[ListEntry, ...]
    cursor: str | None = None

    @property
    def has_more(self) -> bool:
        return self.cursor is not None


@dataclass(frozen=True, slots=True)
class ContainerPage:
    """One page of a container listing."""

    names: tuple[str, ...]
    cursor: str | None = None

    @property
    def has_more(self) -> bool:
        return self.cursor is not None


@dataclass(frozen=True, slots=True)
class ContainerOptions:
    """Options used when creating a container."""

    region: str | None = None
    storage_class: str | None = None
    access: str | None = None


@dataclass(frozen=True, slots=True)
class PutOptions:
    """Options used when uploading an object."""

    metadata: Mapping[str, str | None] | None = None
    length: int | None = None
    access: str | None = None
    storage_class: str | None = None
    server_side_encryption: bool = False


@dataclass(frozen=True, slots=True)
class BackendMetadata:
    """Metadata already mapped to a backend's native placement."""

    headers: dict[str, str] = field(default_factory=dict)
    custom: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class LargeUpload:
    """Result of starting a chunked upload."""

    upload_id: str
    container: str
    path: str


@dataclass(frozen=True, slots=True)
class ChunkTarget:
    """Single-use destination for one chunk upload attempt."""

    url: str
    token: str | None = None


@dataclass(frozen=True, slots=True)
class CompletedChunk:
    """Represents an uploaded chunk in a chunked upload."""

    chunk_number: int
    chunk_id: str


@dataclass(frozen=True, slots=True)
class BackendProfile:
    """Capabilities and limits of a backend.

    ``native_headers`` maps canonical metadata keys to the backend's own
    names for them; keys missing from the map travel as custom metadata.
    """

    provider: str
    single_object_max_bytes: int
    min_chunk_bytes: int
    native_headers: Mapping[str, str]
    custom_metadata_prefix: str = ""
    max_custom_metadata: int | None = None
    custom_key_pattern: re.Pattern[str] | None = None
    split_listing: bool = False
    delimiter: str = DELIMITER


class BackendClient(Protocol):
    """Protocol defining the primitive operations of a storage backend.

    All primitives are keyword-only coroutines. Implementations raise the
    types from ``cloudstore.common.errors``; in particular transport
    failures must surface as ``TransportError`` so callers can retry them.
    """

    profile: BackendProfile

    async def authorize(self) -> None:
        """Establish an authorization session.

        Raises:
            AuthorizationError: If the credentials are rejected.
        """
        ...

    async def create_container(
        self, *, container: str, options: ContainerOptions
    ) -> None:
        """Create a container.

        Args:
            container: Container name.
            options: Region, storage class and access level.

        Raises:
            AlreadyExistsError: If the name is taken.
        """
        ...

    async def container_exists(self, *, container: str) -> bool:
        """Return whether the container exists and is accessible."""
        ...

    async def list_containers_page(self, *, cursor: str | None) -> ContainerPage:
        """Return one page of container names.

        Args:
            cursor: Continuation cursor from the previous page, or None.
        """
        ...

    async def delete_container(self, *, container: str) -> None:
        """Delete a container.

        Raises:
            NotFoundError: If the container does not exist.
        """
        ...

    async def put_object(
        self,
        *,
        container: str,
        path: str,
        data: bytes,
        metadata: BackendMetadata,
        options: PutOptions,
    ) -> None:
        """Upload a complete object in one request."""
        ...

    async def get_object(self, *, container: str, path: str) -> "ObjectStream":
        """Open an object for reading.

        Raises:
            NotFoundError: If the object does not exist.
        """
        ...

    async def list_page(
        self,
        *,
        container: str,
        prefix: str,
        cursor: str | None,
        kind: ListKind,
        page_size: int,
    ) -> ListPage:
        """Return one page of a single-level listing under ``prefix``.

        Args:
            container: Container name.
            prefix: Only entries starting with this prefix are returned.
            cursor: Continuation cursor from the previous page, or None.
            kind: Restrict the page to objects or prefixes. Backends whose
                profile does not declare ``split_listing`` only receive
                ``ListKind.ALL``.
            page_size: Maximum entries per page requested from the server.
        """
        ...

    async def delete_object(self, *, container: str, path: str) -> None:
        """Delete an object."""
        ...

    async def start_large_upload(
        self,
        *,
        container: str,
        path: str,
        metadata: BackendMetadata,
        options: PutOptions,
    ) -> LargeUpload:
        """Start a chunked upload session.

        Returns:
            LargeUpload containing the upload_id for subsequent operations.
        """
        ...

    async def get_chunk_target(
        self, *, upload: LargeUpload, chunk_number: int
    ) -> ChunkTarget:
        """Issue a fresh, short-lived destination for one chunk.

        Args:
            upload: Session returned by start_large_upload.
            chunk_number: 1-based chunk number.
        """
        ...

    async def upload_chunk(
        self,
        *,
        upload: LargeUpload,
        target: ChunkTarget,
        chunk_number: int,
        data: bytes,
    ) -> CompletedChunk:
        """Upload one chunk to a target from get_chunk_target.

        Returns:
            CompletedChunk carrying the provider's identifier for the chunk.
        """
        ...

    async def commit_large_upload(
        self, *, upload: LargeUpload, chunks: Sequence[CompletedChunk]
    ) -> None:
        """Assemble the uploaded chunks into the final object."""
        ...

    async def abort_large_upload(self, *, upload: LargeUpload) -> None:
        """Abort a chunked upload and discard its chunks."""
        ...

    async def aclose(self) -> None:
        """Release network resources held by the client."""
        ...


@runtime_checkable
class PresigningClient(Protocol):
    """Optional capability: time-limited URLs for direct GET/PUT access."""

    def presign_get_url(self, *, container: str, path: str, ttl: int) -> str:
        ...

    def presign_put_url(self, *, container: str, path: str, ttl: int) -> str:
        ...
