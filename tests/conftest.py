import pytest
from httpx import ASGITransport, AsyncClient

from paintbar import api
from paintbar.api.projects import get_project_service
from paintbar.config import AuthOptions
from paintbar.models import ProjectCreate
from paintbar.projects.service import ProjectService
from tests.fakes import MemoryBlobStore, MemoryProjectStore
from tests.tools import HASH_A, paintbar_settings

JWT_SECRET = "paintbar-unittest-secret-with-at-least-32-bytes"
MAX_BLOB_BYTES = 1024


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def settings():
    with paintbar_settings(
        jwt_secret=JWT_SECRET,
        host="http://localhost:3000",
        auth=AuthOptions.authorized_users_only,
        use_test_db=True,
    ) as settings:
        yield settings


@pytest.fixture()
def store():
    return MemoryProjectStore()


@pytest.fixture()
def blobs():
    return MemoryBlobStore()


@pytest.fixture()
def service(store, blobs):
    return ProjectService(store, blobs, allowed_storage_hosts=["localhost"], max_blob_bytes=MAX_BLOB_BYTES)


@pytest.fixture()
async def client(service):
    api.app.dependency_overrides[get_project_service] = lambda: service
    async with AsyncClient(transport=ASGITransport(app=api.app), base_url="http://test", follow_redirects=False) as client:
        yield client
    api.app.dependency_overrides.clear()


@pytest.fixture()
def alice():
    return "alice"


@pytest.fixture()
def bob():
    return "bob"


@pytest.fixture()
async def project(service, alice) -> str:
    """A private project of alice with a content hash, but no image yet"""
    result = await service.create_or_upsert(alice, ProjectCreate(title="Sunset", content_hash=HASH_A, width=64, height=32))
    return result.project_id
