"""
Interact with S3-compatible object storage (e.g., AWS S3, MinIO, SeaweedFS, Cloudflare R2).
"""

import re
from typing import Any

import async_lru
from botocore.exceptions import ClientError
from types_aiobotocore_s3.type_defs import GetObjectOutputTypeDef, HeadObjectOutputTypeDef

from paintbar.config import get_settings
from paintbar.connections import s3

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


async def get_bucket() -> str:
    """
    Get the project bucket, taking into account whether we are using a test database.
    """
    settings = get_settings()
    if settings.use_test_db:
        return await _create_or_get_bucket_name(f"test-{settings.s3_bucket}")
    else:
        return await _create_or_get_bucket_name(settings.s3_bucket)


@async_lru.alru_cache(maxsize=1000)
async def _create_or_get_bucket_name(bucket: str) -> str:
    try:
        await s3().head_bucket(Bucket=bucket)
    except ClientError as e:
        error = e.response.get("Error", {})
        if error.get("Code") in ("404", "NoSuchBucket"):
            await s3().create_bucket(Bucket=bucket)
        else:
            raise
    return bucket


def is_not_found(e: ClientError) -> bool:
    return e.response.get("Error", {}).get("Code") in NOT_FOUND_CODES


async def stat_s3_object(bucket: str, key: str) -> HeadObjectOutputTypeDef:
    try:
        return await s3().head_object(Bucket=bucket, Key=key)
    except ClientError as e:
        if is_not_found(e):
            raise FileNotFoundError(f"Object {key} not found in bucket")
        else:
            raise


async def get_s3_object(bucket: str, key: str) -> GetObjectOutputTypeDef:
    try:
        return await s3().get_object(Bucket=bucket, Key=key)
    except ClientError as e:
        if is_not_found(e):
            raise FileNotFoundError(f"Object {key} not found in bucket")
        else:
            raise


async def add_s3_object(bucket: str, key: str, data: bytes, content_type: str = "application/octet-stream"):
    await s3().put_object(Bucket=bucket, Key=key, Body=data, ContentType=content_type)


async def delete_s3_object(bucket: str, key: str):
    """Delete a single object. S3 delete is idempotent, but some stores still answer 404 for missing keys."""
    try:
        await s3().delete_object(Bucket=bucket, Key=key)
    except ClientError as e:
        if not is_not_found(e):
            raise


async def presigned_post(
    bucket: str, key: str, content_type: str = "", size: int | None = None, expires_in: int = 6 * 3600
) -> tuple[str, dict[str, str]]:
    conditions: list[Any] = [{"bucket": bucket}]
    fields: dict[str, str] = {}

    if content_type:
        conditions.append(["starts-with", "$Content-Type", content_type])
        fields["Content-Type"] = content_type
    if size is not None:
        conditions.append(["content-length-range", 0, size])

    pp = await s3().generate_presigned_post(
        Bucket=bucket,
        Key=key,
        Fields=fields,
        Conditions=conditions,
        ExpiresIn=expires_in,
    )
    return public_url(pp["url"]), pp["fields"]


async def presigned_get(bucket: str, key: str, expires_in: int = 24 * 3600, **kwargs) -> str:
    params = {"Bucket": bucket, "Key": key, **kwargs}
    params = {k: v for k, v in params.items() if v is not None}

    url = await s3().generate_presigned_url("get_object", Params=params, ExpiresIn=expires_in)
    return public_url(url)


def public_url(url: str) -> str:
    """
    Replace the scheme and host of a generated url by the public object store host, if one is configured.
    """
    public_host = get_settings().s3_public_host
    if public_host:
        url = re.sub("^https?://[^/]*/?", "", url)
        url = f"{public_host.rstrip('/')}/{url}"
    return url
