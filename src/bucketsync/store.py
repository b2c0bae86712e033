# src/bucketsync/store.py
"""
Object store capability and its S3-compatible implementation.

Everything above this module talks to a store only through the
`ObjectStore` protocol: list one page, read an object's size, open a read
stream, and upload from a stream. `S3ObjectStore` implements it on top of an
explicitly constructed aiobotocore client, so a run owns its clients and
tests can substitute in-memory stores.
"""

import logging
import math
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncContextManager,
    AsyncIterator,
    Dict,
    List,
    Optional,
    Protocol,
    Tuple,
)

from aiobotocore.session import AioSession, get_session
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from bucketsync.config import Config, StoreConfig
from bucketsync.exceptions import ObjectNotFoundError

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client
    from types_aiobotocore_s3.type_defs import (
        GetObjectOutputTypeDef,
        HeadObjectOutputTypeDef,
        ListObjectsV2OutputTypeDef,
    )

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE: str = "application/octet-stream"
# S3 rejects multipart uploads with more parts than this.
MAX_PARTS: int = 10_000
_NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


@dataclass(frozen=True)
class ListPage:
    """
    One page of a store listing.

    Attributes:
        entries (List[Tuple[str, int]]): `(name, size)` pairs on this page.
        next_token (str, optional): Continuation token, None on the last page.
    """

    entries: List[Tuple[str, int]] = field(default_factory=list)
    next_token: Optional[str] = None


@dataclass(frozen=True)
class ObjectStream:
    """
    An open read stream over one object.

    Attributes:
        body (AsyncIterator[bytes]): The object's bytes, chunk by chunk.
        content_length (int): Size reported by the store.
        content_type (str): MIME type reported by the store.
    """

    body: AsyncIterator[bytes]
    content_length: int
    content_type: str = DEFAULT_CONTENT_TYPE


class ObjectStore(Protocol):
    """The operations the sync engine needs from a bucket."""

    name: str

    async def list_page(self, token: Optional[str] = None) -> ListPage: ...

    async def head_size(self, name: str) -> int: ...

    def open_stream(self, name: str) -> AsyncContextManager[ObjectStream]: ...

    async def put_stream(
        self,
        name: str,
        body: AsyncIterator[bytes],
        content_length: int,
        content_type: str,
    ) -> None: ...


def _is_not_found(error: ClientError) -> bool:
    """Checks whether a botocore error means the key does not exist."""
    code: str = str(error.response.get("Error", {}).get("Code", ""))
    status: Any = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return code in _NOT_FOUND_CODES or status == 404


async def _iter_parts(body: AsyncIterator[bytes], part_size: int) -> AsyncIterator[bytes]:
    """
    Regroups a chunk stream into parts of exactly `part_size` bytes.

    The final part may be shorter. At most one part plus one chunk is held
    in memory.

    Args:
        body (AsyncIterator[bytes]): The source chunks.
        part_size (int): The size of every part except the last.

    Yields:
        bytes: The next part.
    """
    buffer: bytearray = bytearray()
    async for chunk in body:
        buffer.extend(chunk)
        while len(buffer) >= part_size:
            yield bytes(buffer[:part_size])
            del buffer[:part_size]
    if buffer:
        yield bytes(buffer)


class S3ObjectStore:
    """An `ObjectStore` backed by an aiobotocore S3 client and one bucket."""

    def __init__(
        self,
        client: "S3Client",
        bucket: str,
        page_size: int = 1000,
        part_size: int = 8 * 1024**2,
        chunk_size: int = 1024**2,
    ) -> None:
        """
        Initializes the store.

        Args:
            client (S3Client): An open aiobotocore S3 client.
            bucket (str): The bucket this store reads and writes.
            page_size (int): Maximum keys per listing request.
            part_size (int): Minimum multipart upload part size in bytes.
            chunk_size (int): Read size for object streams in bytes.
        """
        self._client: "S3Client" = client
        self.bucket: str = bucket
        self.name: str = f"s3://{bucket}"
        self._page_size: int = page_size
        self._part_size: int = part_size
        self._chunk_size: int = chunk_size

    async def list_page(self, token: Optional[str] = None) -> ListPage:
        """
        Fetches one page of `(key, size)` pairs.

        Args:
            token (str, optional): Continuation token from the previous page.

        Returns:
            ListPage: The entries and the next continuation token.
        """
        params: Dict[str, Any] = {"Bucket": self.bucket, "MaxKeys": self._page_size}
        if token:
            params["ContinuationToken"] = token
        response: "ListObjectsV2OutputTypeDef" = await self._client.list_objects_v2(
            **params
        )
        entries: List[Tuple[str, int]] = [
            (obj["Key"], obj.get("Size", 0))
            for obj in response.get("Contents", [])
            if obj.get("Key")
        ]
        next_token: Optional[str] = (
            response.get("NextContinuationToken")
            if response.get("IsTruncated")
            else None
        )
        return ListPage(entries=entries, next_token=next_token)

    async def head_size(self, name: str) -> int:
        """
        Returns an object's size.

        Args:
            name (str): The object key.

        Returns:
            int: The size in bytes.

        Raises:
            ObjectNotFoundError: If the key does not exist.
        """
        try:
            meta: "HeadObjectOutputTypeDef" = await self._client.head_object(
                Bucket=self.bucket, Key=name
            )
        except ClientError as e:
            if _is_not_found(e):
                raise ObjectNotFoundError(self.name, name) from e
            raise
        return meta["ContentLength"]

    @asynccontextmanager
    async def open_stream(self, name: str) -> AsyncIterator[ObjectStream]:
        """
        Opens a streaming GET on an object.

        Args:
            name (str): The object key.

        Yields:
            ObjectStream: The body stream and its metadata.

        Raises:
            ObjectNotFoundError: If the key does not exist.
        """
        try:
            response: "GetObjectOutputTypeDef" = await self._client.get_object(
                Bucket=self.bucket, Key=name
            )
        except ClientError as e:
            if _is_not_found(e):
                raise ObjectNotFoundError(self.name, name) from e
            raise
        async with response["Body"] as stream:
            yield ObjectStream(
                body=stream.iter_chunks(self._chunk_size),
                content_length=response.get("ContentLength", 0),
                content_type=response.get("ContentType") or DEFAULT_CONTENT_TYPE,
            )

    async def put_stream(
        self,
        name: str,
        body: AsyncIterator[bytes],
        content_length: int,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> None:
        """
        Uploads an object from a chunk stream.

        Objects that fit in one part go up with a single PUT. Larger objects
        use a multipart upload, holding one part in memory at a time.

        Args:
            name (str): The destination key.
            body (AsyncIterator[bytes]): The object's bytes.
            content_length (int): Expected size in bytes.
            content_type (str): MIME type to store with the object.
        """
        part_size: int = max(self._part_size, math.ceil(content_length / MAX_PARTS))
        if content_length <= part_size:
            data: bytes = b"".join([chunk async for chunk in body])
            await self._client.put_object(
                Bucket=self.bucket,
                Key=name,
                Body=data,
                ContentLength=len(data),
                ContentType=content_type,
            )
            return

        upload: Dict[str, Any] = await self._client.create_multipart_upload(
            Bucket=self.bucket, Key=name, ContentType=content_type
        )
        upload_id: str = upload["UploadId"]
        parts: List[Dict[str, Any]] = []
        try:
            async for part in _iter_parts(body, part_size):
                part_number: int = len(parts) + 1
                response: Dict[str, Any] = await self._client.upload_part(
                    Bucket=self.bucket,
                    Key=name,
                    UploadId=upload_id,
                    PartNumber=part_number,
                    Body=part,
                    ContentLength=len(part),
                )
                parts.append({"ETag": response["ETag"], "PartNumber": part_number})
            await self._client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=name,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except BaseException:
            logger.debug(f"Aborting multipart upload of '{name}' ({upload_id}).")
            try:
                await self._client.abort_multipart_upload(
                    Bucket=self.bucket, Key=name, UploadId=upload_id
                )
            except ClientError as abort_error:
                logger.warning(
                    f"Could not abort multipart upload of '{name}': {abort_error}"
                )
            raise


def _make_store(client: "S3Client", store_config: StoreConfig, config: Config) -> S3ObjectStore:
    return S3ObjectStore(
        client,
        store_config.bucket,
        page_size=config.app.list_page_size,
        part_size=config.app.part_size,
        chunk_size=config.app.chunk_size,
    )


@asynccontextmanager
async def open_stores(
    config: Config,
) -> AsyncIterator[Tuple[S3ObjectStore, S3ObjectStore]]:
    """
    Creates the source and destination stores for one run.

    Both clients are closed when the context exits.

    Args:
        config (Config): The application configuration.

    Yields:
        Tuple[S3ObjectStore, S3ObjectStore]: The source and destination stores.
    """
    session: AioSession = get_session()
    # Streamed bodies cannot be hashed up front, so payloads go unsigned.
    boto_config: BotoConfig = BotoConfig(
        signature_version="s3v4",
        max_pool_connections=max(10, config.app.concurrency * 2),
        retries={"max_attempts": config.app.max_attempts, "mode": "standard"},
        s3={"payload_signing_enabled": False},
    )
    async with (
        session.create_client(
            "s3", **config.source.as_boto_dict(), config=boto_config
        ) as source_client,
        session.create_client(
            "s3", **config.destination.as_boto_dict(), config=boto_config
        ) as dest_client,
    ):
        yield (
            _make_store(source_client, config.source, config),
            _make_store(dest_client, config.destination, config),
        )
