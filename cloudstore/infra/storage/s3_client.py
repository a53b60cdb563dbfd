"""S3-compatible storage client implementation.

This module provides an S3-compatible backend client that works with
AWS S3, MinIO, and other S3-compatible object storage services.

boto3 calls are blocking, so they run in a worker thread. Chunk bodies are
PUT with httpx to a part URL presigned immediately before each attempt.

Dependencies:
    - boto3
    - botocore
    - httpx
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, fields, replace
from typing import TYPE_CHECKING, Any, Callable, Mapping, Sequence

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import (
    ClientError,
    ConnectionError as BotoConnectionError,
    HTTPClientError,
    NoCredentialsError,
)

from cloudstore.common.config import MIN_CHUNK_SIZE_BYTES
from cloudstore.common.errors import (
    AlreadyExistsError,
    AuthorizationError,
    NotFoundError,
    StorageError,
    TransportError,
    ValidationError,
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
    normalize_access,
)

if TYPE_CHECKING:
    from cloudstore.common.config import Settings

S3_PROFILE = BackendProfile(
    provider="aws-s3",
    single_object_max_bytes=5 * 1024 * 1024 * 1024,
    min_chunk_bytes=MIN_CHUNK_SIZE_BYTES,
    native_headers={
        "Content-Type": "ContentType",
        "Content-Encoding": "ContentEncoding",
        "Content-Language": "ContentLanguage",
        "Cache-Control": "CacheControl",
        "Content-Disposition": "ContentDisposition",
        "Content-MD5": "ContentMD5",
    },
)

NOT_FOUND_CODES = frozenset({"404", "NoSuchBucket", "NoSuchKey", "NoSuchUpload", "NotFound"})
ALREADY_EXISTS_CODES = frozenset({"BucketAlreadyExists", "BucketAlreadyOwnedByYou"})
AUTHORIZATION_CODES = frozenset(
    {
        "AccessDenied",
        "ExpiredToken",
        "InvalidAccessKeyId",
        "InvalidToken",
        "SignatureDoesNotMatch",
    }
)
RETRYABLE_CODES = frozenset(
    {"InternalError", "RequestTimeout", "ServiceUnavailable", "SlowDown", "Throttling"}
)
# create_multipart_upload takes no whole-object digest.
MULTIPART_EXCLUDED_HEADERS = frozenset({"ContentMD5"})
# us-east-1 rejects an explicit LocationConstraint.
DEFAULT_REGION = "us-east-1"


def translate_error(exc: Exception, message: str) -> StorageError:
    """Map a boto3/botocore exception onto the storage error taxonomy."""
    text = f"{message}: {exc}"
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {}) or {}
        code = str(error.get("Code", ""))
        status = (exc.response.get("ResponseMetadata", {}) or {}).get("HTTPStatusCode")
        if code in NOT_FOUND_CODES or status == 404:
            return NotFoundError(text)
        if code in ALREADY_EXISTS_CODES:
            return AlreadyExistsError(text)
        if code in AUTHORIZATION_CODES or status in (401, 403):
            return AuthorizationError(text)
        if code in RETRYABLE_CODES or status is None or status >= 500 or status == 429:
            return TransportError(text)
        return StorageError(text)
    if isinstance(exc, NoCredentialsError):
        return AuthorizationError(text)
    if isinstance(exc, (BotoConnectionError, HTTPClientError)):
        return TransportError(text)
    return StorageError(text)


def translate_http_error(exc: Exception, message: str) -> StorageError:
    """Map an httpx failure from a chunk PUT onto the storage error taxonomy."""
    text = f"{message}: {exc}"
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status in (401, 403):
            return AuthorizationError(text)
        if status == 404:
            return NotFoundError(text)
        if status >= 500 or status in (408, 429):
            return TransportError(text)
        return StorageError(text)
    if isinstance(exc, httpx.TransportError):
        return TransportError(text)
    return StorageError(text)


def _etag_md5(etag: str | None) -> str | None:
    # Multipart ETags carry a "-<parts>" suffix and are not an MD5 of the data.
    if not etag:
        return None
    etag = etag.strip('"')
    if "-" in etag or len(etag) != 32:
        return None
    return etag


@dataclass(frozen=True, slots=True)
class S3Connection:
    """Connection options for an S3-compatible endpoint."""

    endpoint_url: str | None = None
    region: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    use_ssl: bool = True
    addressing_style: str = "path"
    chunk_url_expires: int = 900
    http_timeout: float = 60.0

    @classmethod
    def from_mapping(cls, connection: Mapping[str, Any]) -> "S3Connection":
        known = {item.name for item in fields(cls)}
        unknown = sorted(set(connection) - known)
        if unknown:
            raise ValidationError(
                f"Unknown S3 connection options: {', '.join(unknown)}"
            )
        return cls(**dict(connection))

    @classmethod
    def from_settings(cls, settings: "Settings") -> "S3Connection":
        return cls(
            endpoint_url=settings.S3_ENDPOINT_URL,
            region=settings.S3_REGION,
            access_key_id=settings.S3_ACCESS_KEY_ID,
            secret_access_key=settings.S3_SECRET_ACCESS_KEY,
            use_ssl=settings.S3_USE_SSL,
            addressing_style=settings.S3_ADDRESSING_STYLE,
            chunk_url_expires=settings.CHUNK_URL_EXPIRES_SECONDS,
            http_timeout=settings.HTTP_TIMEOUT_SECONDS,
        )


class S3BackendClient:
    """S3-compatible object storage client.

    Supports AWS S3, MinIO, and other S3-compatible services.
    Uses boto3 for all storage operations except chunk bodies, which are
    sent with httpx to presigned part URLs.
    """

    def __init__(
        self,
        *,
        connection: S3Connection,
        provider: str = "aws-s3",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the S3 client.

        Args:
            connection: Endpoint, region and credentials.
            provider: Provider id reported by the profile.
            http_client: Client used for chunk uploads; one is created on
                first use when omitted.
        """
        self._connection = connection
        self._client = self._build_client(connection)
        self._http = http_client
        self._owns_http = http_client is None
        self.profile = replace(S3_PROFILE, provider=provider)

    @staticmethod
    def _build_client(connection: S3Connection) -> Any:
        """Create a boto3 S3 client from connection options."""
        addressing_style = (connection.addressing_style or "path").strip().lower()
        config = Config(
            s3={"addressing_style": addressing_style},
            connect_timeout=connection.http_timeout,
            read_timeout=connection.http_timeout,
        )

        return boto3.client(
            "s3",
            endpoint_url=connection.endpoint_url,
            region_name=connection.region,
            aws_access_key_id=connection.access_key_id,
            aws_secret_access_key=connection.secret_access_key,
            use_ssl=bool(connection.use_ssl),
            config=config,
        )

    @property
    def client(self) -> Any:
        return self._client

    async def _call(self, message: str, method: Callable[..., Any], **params: Any) -> Any:
        try:
            return await asyncio.to_thread(method, **params)
        except Exception as exc:
            raise translate_error(exc, message) from exc

    async def authorize(self) -> None:
        """boto3 resolves and refreshes credentials on its own."""
        return None

    async def create_container(
        self, *, container: str, options: ContainerOptions
    ) -> None:
        params: dict[str, Any] = {"Bucket": container}
        access = normalize_access(options.access)
        if access:
            params["ACL"] = access
        region = options.region or self._connection.region
        if region and region != DEFAULT_REGION:
            params["CreateBucketConfiguration"] = {"LocationConstraint": region}

        await self._call("Failed to create bucket", self._client.create_bucket, **params)

    async def container_exists(self, *, container: str) -> bool:
        try:
            await self._call(
                "Failed to check bucket", self._client.head_bucket, Bucket=container
            )
        except (NotFoundError, AuthorizationError):
            # 403 means the bucket exists but belongs to someone else.
            return False
        return True

    async def list_containers_page(self, *, cursor: str | None) -> ContainerPage:
        params: dict[str, Any] = {}
        if cursor:
            params["ContinuationToken"] = cursor
        response = await self._call(
            "Failed to list buckets", self._client.list_buckets, **params
        )
        names = tuple(
            str(bucket["Name"])
            for bucket in response.get("Buckets") or []
            if bucket and bucket.get("Name")
        )
        return ContainerPage(names=names, cursor=response.get("ContinuationToken") or None)

    async def delete_container(self, *, container: str) -> None:
        await self._call(
            "Failed to delete bucket", self._client.delete_bucket, Bucket=container
        )

    def _object_params(
        self, metadata: BackendMetadata, options: PutOptions, *, multipart: bool = False
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            name: value
            for name, value in metadata.headers.items()
            if not (multipart and name in MULTIPART_EXCLUDED_HEADERS)
        }
        if metadata.custom:
            params["Metadata"] = dict(metadata.custom)
        access = normalize_access(options.access)
        if access:
            params["ACL"] = access
        if options.storage_class:
            params["StorageClass"] = options.storage_class
        if options.server_side_encryption:
            params["ServerSideEncryption"] = "AES256"
        return params

    async def put_object(
        self,
        *,
        container: str,
        path: str,
        data: bytes,
        metadata: BackendMetadata,
        options: PutOptions,
    ) -> None:
        response = await self._call(
            "Failed to put object",
            self._client.put_object,
            Bucket=container,
            Key=path,
            Body=data,
            **self._object_params(metadata, options),
        )
        if not response.get("ETag"):
            raise StorageError("S3 response missing ETag")

    async def get_object(self, *, container: str, path: str) -> ObjectStream:
        response = await self._call(
            "Failed to get object", self._client.get_object, Bucket=container, Key=path
        )
        body = response["Body"]
        return ObjectStream(body, blocking=True, on_close=body.close)

    async def list_page(
        self,
        *,
        container: str,
        prefix: str,
        cursor: str | None,
        kind: ListKind,
        page_size: int,
    ) -> ListPage:
        params: dict[str, Any] = {
            "Bucket": container,
            "Prefix": prefix,
            "Delimiter": self.profile.delimiter,
            "MaxKeys": int(page_size),
        }
        if cursor:
            params["ContinuationToken"] = cursor

        response = await self._call(
            "Failed to list objects", self._client.list_objects_v2, **params
        )

        entries: list[ListEntry] = []
        for item in response.get("Contents") or []:
            entries.append(
                ObjectEntry(
                    path=str(item["Key"]),
                    size=int(item.get("Size") or 0),
                    last_modified=item.get("LastModified"),
                    content_md5=_etag_md5(item.get("ETag")),
                )
            )
        for item in response.get("CommonPrefixes") or []:
            entries.append(PrefixEntry(prefix=str(item["Prefix"])))

        next_cursor = None
        if response.get("IsTruncated"):
            next_cursor = response.get("NextContinuationToken")
            if not next_cursor:
                raise StorageError("S3 response missing NextContinuationToken")
        return ListPage(entries=tuple(entries), cursor=next_cursor)

    async def delete_object(self, *, container: str, path: str) -> None:
        await self._call(
            "Failed to delete object",
            self._client.delete_object,
            Bucket=container,
            Key=path,
        )

    async def start_large_upload(
        self,
        *,
        container: str,
        path: str,
        metadata: BackendMetadata,
        options: PutOptions,
    ) -> LargeUpload:
        """Initialize a multipart upload session."""
        response = await self._call(
            "Failed to create multipart upload",
            self._client.create_multipart_upload,
            Bucket=container,
            Key=path,
            **self._object_params(metadata, options, multipart=True),
        )

        upload_id = response.get("UploadId")
        if not upload_id:
            raise StorageError("S3 response missing UploadId")

        return LargeUpload(upload_id=str(upload_id), container=container, path=path)

    async def get_chunk_target(
        self, *, upload: LargeUpload, chunk_number: int
    ) -> ChunkTarget:
        """Generate a presigned URL for uploading a part."""
        try:
            url = self._client.generate_presigned_url(
                "upload_part",
                Params={
                    "Bucket": upload.container,
                    "Key": upload.path,
                    "UploadId": upload.upload_id,
                    "PartNumber": int(chunk_number),
                },
                ExpiresIn=int(self._connection.chunk_url_expires),
            )
        except Exception as exc:
            raise translate_error(exc, "Failed to generate presigned URL") from exc

        if not url:
            raise StorageError("Generated presigned URL is empty")

        return ChunkTarget(url=str(url))

    def _http_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self._connection.http_timeout)
            )
        return self._http

    async def upload_chunk(
        self,
        *,
        upload: LargeUpload,
        target: ChunkTarget,
        chunk_number: int,
        data: bytes,
    ) -> CompletedChunk:
        try:
            response = await self._http_client().put(target.url, content=data)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise translate_http_error(exc, "Failed to upload part") from exc

        etag = response.headers.get("ETag")
        if not etag:
            raise StorageError("S3 response missing ETag for uploaded part")
        return CompletedChunk(chunk_number=chunk_number, chunk_id=etag)

    async def commit_large_upload(
        self, *, upload: LargeUpload, chunks: Sequence[CompletedChunk]
    ) -> None:
        """Complete a multipart upload by combining all parts."""
        multipart_payload = {
            "Parts": [
                {"ETag": chunk.chunk_id, "PartNumber": int(chunk.chunk_number)}
                for chunk in sorted(chunks, key=lambda c: c.chunk_number)
            ]
        }

        await self._call(
            "Failed to complete multipart upload",
            self._client.complete_multipart_upload,
            Bucket=upload.container,
            Key=upload.path,
            UploadId=upload.upload_id,
            MultipartUpload=multipart_payload,
        )

    async def abort_large_upload(self, *, upload: LargeUpload) -> None:
        """Abort a multipart upload and clean up uploaded parts."""
        await self._call(
            "Failed to abort multipart upload",
            self._client.abort_multipart_upload,
            Bucket=upload.container,
            Key=upload.path,
            UploadId=upload.upload_id,
        )

    def _presign(self, client_method: str, container: str, path: str, ttl: int) -> str:
        try:
            url = self._client.generate_presigned_url(
                client_method,
                Params={"Bucket": container, "Key": path},
                ExpiresIn=int(ttl),
            )
        except Exception as exc:
            raise translate_error(exc, "Failed to generate presigned URL") from exc

        if not url:
            raise StorageError("Generated presigned URL is empty")

        return str(url)

    def presign_get_url(self, *, container: str, path: str, ttl: int) -> str:
        """Generate a presigned URL for downloading an object."""
        return self._presign("get_object", container, path, ttl)

    def presign_put_url(self, *, container: str, path: str, ttl: int) -> str:
        """Generate a presigned URL for uploading an object."""
        return self._presign("put_object", container, path, ttl)

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None
        self._client.close()
