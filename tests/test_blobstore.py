from datetime import timedelta

import pytest
from botocore.exceptions import ClientError

from paintbar.connections import CONNECTIONS
from paintbar.errors import BlobNotFound, StorageError
from paintbar.objectstorage import blobstore
from paintbar.objectstorage.blobstore import BlobStream, S3BlobStore
from tests.tools import PNG_BYTES, ChunkStream, paintbar_settings

BUCKET = "test-projects"
PATH = "projects/alice/" + "a" * 64 + ".png"


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeBody:
    def __init__(self, data: bytes):
        self.data = data
        self.closed = False

    async def iter_chunks(self, chunk_size):
        for i in range(0, len(self.data), chunk_size):
            yield self.data[i : i + chunk_size]

    def close(self):
        self.closed = True


class FakeS3:
    """Just enough of the aiobotocore S3 client for S3BlobStore"""

    def __init__(self):
        self.objects: dict[tuple[str, str], tuple[bytes, str]] = {}
        self.bodies: list[FakeBody] = []
        self.fail = False

    def _check(self, operation):
        if self.fail:
            raise _client_error("InternalError", operation)

    async def put_object(self, Bucket, Key, Body, ContentType):
        self._check("PutObject")
        self.objects[Bucket, Key] = (Body, ContentType)

    async def get_object(self, Bucket, Key):
        self._check("GetObject")
        if (Bucket, Key) not in self.objects:
            raise _client_error("NoSuchKey", "GetObject")
        data, content_type = self.objects[Bucket, Key]
        body = FakeBody(data)
        self.bodies.append(body)
        return {"Body": body, "ContentType": content_type, "ContentLength": len(data)}

    async def head_object(self, Bucket, Key):
        self._check("HeadObject")
        if (Bucket, Key) not in self.objects:
            raise _client_error("404", "HeadObject")
        data, content_type = self.objects[Bucket, Key]
        return {"ContentType": content_type, "ContentLength": len(data)}

    async def delete_object(self, Bucket, Key):
        self._check("DeleteObject")
        self.objects.pop((Bucket, Key), None)

    async def generate_presigned_url(self, method, Params, ExpiresIn):
        return f"http://minio:9000/{Params['Bucket']}/{Params['Key']}?X-Amz-Expires={ExpiresIn}"

    async def generate_presigned_post(self, Bucket, Key, Fields, Conditions, ExpiresIn):
        self.last_conditions = Conditions
        return {"url": f"http://minio:9000/{Bucket}", "fields": {**Fields, "key": Key, "policy": "xyz"}}


@pytest.fixture()
def s3(monkeypatch):
    async def get_bucket():
        return BUCKET

    monkeypatch.setattr(blobstore, "get_bucket", get_bucket)
    client = FakeS3()
    monkeypatch.setattr(CONNECTIONS, "s3_client", client)
    return client


@pytest.mark.anyio
async def test_write_read(s3):
    store = S3BlobStore(chunk_size=10)
    await store.write(PATH, ChunkStream(PNG_BYTES[:5], PNG_BYTES[5:]), "image/png")
    assert s3.objects[BUCKET, PATH] == (PNG_BYTES, "image/png")
    assert await store.exists(PATH)

    async with await store.read(PATH) as stream:
        assert stream.content_type == "image/png"
        assert stream.size == len(PNG_BYTES)
        chunks = [chunk async for chunk in stream]
    assert b"".join(chunks) == PNG_BYTES
    assert len(chunks[0]) == 10
    assert s3.bodies[-1].closed


@pytest.mark.anyio
async def test_missing(s3):
    store = S3BlobStore()
    assert not await store.exists(PATH)
    with pytest.raises(BlobNotFound):
        await store.read(PATH)
    # deleting a missing object is fine
    await store.delete(PATH)


@pytest.mark.anyio
async def test_delete(s3):
    store = S3BlobStore()
    await store.write(PATH, ChunkStream(PNG_BYTES), "image/png")
    await store.delete(PATH)
    assert (BUCKET, PATH) not in s3.objects


@pytest.mark.anyio
async def test_storage_errors(s3):
    store = S3BlobStore()
    s3.fail = True
    with pytest.raises(StorageError):
        await store.write(PATH, ChunkStream(PNG_BYTES), "image/png")
    with pytest.raises(StorageError):
        await store.read(PATH)
    with pytest.raises(StorageError):
        await store.exists(PATH)
    with pytest.raises(StorageError):
        await store.delete(PATH)


@pytest.mark.anyio
async def test_access_url(s3):
    store = S3BlobStore()
    url = await store.access_url(PATH, timedelta(days=7))
    assert url == f"http://minio:9000/{BUCKET}/{PATH}?X-Amz-Expires=604800"

    with paintbar_settings(s3_public_host="https://cdn.example.com"):
        url = await store.access_url(PATH, timedelta(hours=1))
    assert url == f"https://cdn.example.com/{BUCKET}/{PATH}?X-Amz-Expires=3600"


@pytest.mark.anyio
async def test_upload_form(s3):
    store = S3BlobStore()
    url, fields = await store.upload_form(PATH, "image/png", 1000, timedelta(hours=6))
    assert url == f"http://minio:9000/{BUCKET}"
    assert fields["key"] == PATH
    assert fields["Content-Type"] == "image/png"
    assert ["content-length-range", 0, 1000] in s3.last_conditions


@pytest.mark.anyio
async def test_blob_stream_close_once():
    calls = []

    async def close():
        calls.append(1)

    async def chunks():
        yield b"x"

    stream = BlobStream(chunks(), close=close)
    await stream.aclose()
    await stream.aclose()
    assert calls == [1]
    assert stream.closed
