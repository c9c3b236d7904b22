"""
Shared clients for the metadata store (elasticsearch) and the object store (S3).

Both clients are created once, when the app (or a CLI command or test) starts, and are reached
through es() and s3(). The object store is optional: without s3 settings, s3() raises and
the API serves project metadata only.
"""

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncGenerator

from aiobotocore.config import AioConfig
from aiobotocore.session import get_session
from elasticsearch import AsyncElasticsearch
from types_aiobotocore_s3.client import S3Client

from paintbar.config import Settings, get_settings


class PaintbarConnections:
    def __init__(self):
        self.elastic: AsyncElasticsearch | None = None
        self.s3_client: S3Client | None = None
        self.exit_stack: AsyncExitStack | None = None


CONNECTIONS = PaintbarConnections()


@asynccontextmanager
async def paintbar_connections() -> AsyncGenerator[None, None]:
    """
    Open the connections for the duration of the block. Use it once per process:
    in the FastAPI lifespan, around a CLI command, or in a test fixture.
    """
    try:
        await start_paintbar_connections()
        yield
    finally:
        await close_paintbar_connections()


async def start_paintbar_connections() -> None:
    settings = get_settings()
    CONNECTIONS.exit_stack = AsyncExitStack()
    if s3_enabled():
        client = _s3_client(settings)
        CONNECTIONS.s3_client = await CONNECTIONS.exit_stack.enter_async_context(client)
        logging.info(f"Using object store at {settings.s3_host}, bucket {settings.s3_bucket}")
    else:
        logging.info("No object store configured, project images cannot be stored")

    CONNECTIONS.elastic = _elastic_client(settings)
    CONNECTIONS.exit_stack.push_async_callback(CONNECTIONS.elastic.close)
    if not await CONNECTIONS.elastic.ping():
        raise ConnectionError(f"Cannot connect to elasticsearch server {settings.elastic_host}")


async def close_paintbar_connections() -> None:
    if CONNECTIONS.exit_stack is not None:
        await CONNECTIONS.exit_stack.aclose()
    CONNECTIONS.exit_stack = None
    CONNECTIONS.elastic = None
    CONNECTIONS.s3_client = None


def es() -> AsyncElasticsearch:
    """The elasticsearch client. Raises ConnectionError if the connections were not started."""
    if CONNECTIONS.elastic is None:
        raise ConnectionError("Elasticsearch connection not initialized")
    return CONNECTIONS.elastic


def s3() -> S3Client:
    """The S3 client. Raises ConnectionError if no object store is configured or the connections were not started."""
    if CONNECTIONS.s3_client is None:
        raise ConnectionError("S3 client not started")
    return CONNECTIONS.s3_client


def s3_enabled() -> bool:
    settings = get_settings()
    return all([settings.s3_host, settings.s3_access_key, settings.s3_secret_key])


def _elastic_client(settings: Settings) -> AsyncElasticsearch:
    logging.debug(
        f"Connecting with elasticsearch at {settings.elastic_host}, password? {'yes' if settings.elastic_password else 'no'}"
    )
    if not settings.elastic_password:
        return AsyncElasticsearch(settings.elastic_host)
    return AsyncElasticsearch(
        settings.elastic_host,
        basic_auth=("elastic", settings.elastic_password),
        verify_certs=bool(settings.elastic_verify_ssl),
    )


def _s3_client(settings: Settings):
    # Path style addressing, so bucket names don't need to resolve as hosts (MinIO, SeaweedFS)
    config = AioConfig(signature_version="s3v4", s3={"addressing_style": "path"})
    return get_session().create_client(
        service_name="s3",
        endpoint_url=settings.s3_host,
        aws_access_key_id=settings.s3_access_key,
        aws_secret_access_key=settings.s3_secret_key,
        config=config,
    )
