"""
Blob storage for project images.

BlobStore is the narrow interface the project service uses; S3BlobStore implements it on top of
the S3 helpers in s3bucket.py. Paths are always made by paintbar.objectstorage.paths.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, AsyncIterable, AsyncIterator, Callable

from botocore.exceptions import BotoCoreError, ClientError

from paintbar.errors import BlobNotFound, StorageError
from paintbar.objectstorage.s3bucket import (
    add_s3_object,
    delete_s3_object,
    get_bucket,
    get_s3_object,
    presigned_get,
    presigned_post,
    stat_s3_object,
)

CHUNK_SIZE = 64 * 1024


class BlobStream:
    """
    An opened blob. Iterate over it (async for) to get the bytes.
    The owner of the stream must close it, either with aclose() or by using it as an async context manager.
    """

    def __init__(
        self,
        chunks: AsyncIterable[bytes],
        close: Callable[[], Any] | None = None,
        content_type: str | None = None,
        size: int | None = None,
    ):
        self._chunks = chunks
        self._close = close
        self.content_type = content_type
        self.size = size
        self.closed = False

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._chunks.__aiter__()

    async def read(self) -> bytes:
        return b"".join([chunk async for chunk in self._chunks])

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._close is not None:
            result = self._close()
            if inspect.isawaitable(result):
                await result

    async def __aenter__(self) -> "BlobStream":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()


class BlobStore(ABC):
    """Path addressed object storage as needed by the project service."""

    @abstractmethod
    async def write(self, path: str, stream: AsyncIterable[bytes], content_type: str) -> None:
        """Write the full stream to path, replacing any existing object."""

    @abstractmethod
    async def read(self, path: str) -> BlobStream:
        """Open the object at path. Raises BlobNotFound if it does not exist."""

    @abstractmethod
    async def exists(self, path: str) -> bool: ...

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Delete the object at path. Deleting a missing object is not an error."""

    @abstractmethod
    async def access_url(self, path: str, ttl: timedelta) -> str:
        """A URL that gives read access to the object for the given time."""

    @abstractmethod
    async def upload_form(
        self, path: str, content_type: str, max_bytes: int, ttl: timedelta
    ) -> tuple[str, dict[str, str]]:
        """A presigned POST url and form fields that allow a client to upload to path directly."""


class S3BlobStore(BlobStore):
    """
    BlobStore on an S3 compatible object store.

    Uploads are collected in memory and written with a single put_object, so a failed or rejected
    upload never leaves a partial object behind. The caller limits the size of the stream.
    """

    def __init__(self, chunk_size: int = CHUNK_SIZE):
        self.chunk_size = chunk_size

    async def write(self, path: str, stream: AsyncIterable[bytes], content_type: str) -> None:
        data = b"".join([chunk async for chunk in stream])
        try:
            await add_s3_object(await get_bucket(), path, data, content_type=content_type)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Cannot write object {path}: {e}") from e
        logging.debug(f"Wrote {len(data)} bytes to {path}")

    async def read(self, path: str) -> BlobStream:
        try:
            res = await get_s3_object(await get_bucket(), path)
        except FileNotFoundError as e:
            raise BlobNotFound(f"Object {path} not found") from e
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Cannot read object {path}: {e}") from e

        body = res["Body"]
        return BlobStream(
            body.iter_chunks(self.chunk_size),
            close=body.close,
            content_type=res.get("ContentType"),
            size=res.get("ContentLength"),
        )

    async def exists(self, path: str) -> bool:
        try:
            await stat_s3_object(await get_bucket(), path)
            return True
        except FileNotFoundError:
            return False
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Cannot check object {path}: {e}") from e

    async def delete(self, path: str) -> None:
        try:
            await delete_s3_object(await get_bucket(), path)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Cannot delete object {path}: {e}") from e

    async def access_url(self, path: str, ttl: timedelta) -> str:
        try:
            return await presigned_get(await get_bucket(), path, expires_in=int(ttl.total_seconds()))
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Cannot generate access url for {path}: {e}") from e

    async def upload_form(
        self, path: str, content_type: str, max_bytes: int, ttl: timedelta
    ) -> tuple[str, dict[str, str]]:
        try:
            return await presigned_post(
                await get_bucket(), path, content_type=content_type, size=max_bytes, expires_in=int(ttl.total_seconds())
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Cannot generate upload form for {path}: {e}") from e
