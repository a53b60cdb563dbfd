"""Object storage backends.

This module provides a protocol-based abstraction for object storage backends,
with an S3-compatible client (AWS S3, MinIO) and an in-memory client.
"""

from .client import (
    BackendClient,
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
    PresigningClient,
    PutOptions,
)

__all__ = [
    "BackendClient",
    "BackendMetadata",
    "BackendProfile",
    "ChunkTarget",
    "CompletedChunk",
    "ContainerOptions",
    "ContainerPage",
    "LargeUpload",
    "ListEntry",
    "ListKind",
    "ListPage",
    "ObjectEntry",
    "PrefixEntry",
    "PresigningClient",
    "PutOptions",
]
