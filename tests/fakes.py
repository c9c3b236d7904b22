"""In-memory stores, so the project service and API can be tested without elasticsearch or S3"""

import itertools
from datetime import UTC, datetime, timedelta
from typing import Any, AsyncIterable

from paintbar.errors import BlobNotFound, ProjectNotFound, StorageError, TitleTaken
from paintbar.models import Project, ProjectUpdate
from paintbar.objectstorage.blobstore import BlobStore, BlobStream
from paintbar.systemdata.projects import ProjectStore, check_raw_fields

EPOCH = datetime(2024, 1, 1, tzinfo=UTC)


class MemoryProjectStore(ProjectStore):
    def __init__(self):
        self.projects: dict[str, Project] = {}
        self._ids = itertools.count(1)

    async def get(self, project_id: str) -> Project:
        if project_id not in self.projects:
            raise ProjectNotFound(f"Project {project_id} does not exist")
        return self.projects[project_id].model_copy(deep=True)

    async def find_by_owner_and_hash(self, owner_id: str, content_hash: str) -> Project | None:
        for p in self.projects.values():
            if p.owner_id == owner_id and p.content_hash == content_hash:
                return p.model_copy(deep=True)
        return None

    async def find_by_owner_and_title(self, owner_id: str, title: str) -> Project | None:
        holder = self._title_holder(owner_id, title)
        return holder.model_copy(deep=True) if holder else None

    async def list_by_owner(self, owner_id: str, limit: int, cursor: str | None = None) -> list[Project]:
        mine = sorted(
            (p for p in self.projects.values() if p.owner_id == owner_id),
            key=lambda p: (p.created_at, p.id),
            reverse=True,
        )
        if cursor:
            ids = [p.id for p in mine]
            if cursor not in ids:
                return []
            mine = mine[ids.index(cursor) + 1 :]
        return [p.model_copy(deep=True) for p in mine[:limit]]

    async def count_by_owner(self, owner_id: str) -> int:
        return sum(1 for p in self.projects.values() if p.owner_id == owner_id)

    async def create(self, project: Project) -> str:
        if holder := self._title_holder(project.owner_id, project.title):
            raise TitleTaken(f'A project with title "{project.title}" already exists', project_id=holder.id)
        n = next(self._ids)
        project_id = f"p{n:04d}"
        now = EPOCH + timedelta(seconds=n)
        self.projects[project_id] = project.model_copy(update=dict(id=project_id, created_at=now, updated_at=now))
        return project_id

    async def update(self, project_id: str, update: ProjectUpdate) -> None:
        current = await self.get(project_id)
        fields = update.model_dump(exclude_none=True)
        if "title" in fields and fields["title"] != current.title:
            if holder := self._title_holder(current.owner_id, fields["title"]):
                raise TitleTaken(f'A project with title "{fields["title"]}" already exists', project_id=holder.id)
        self.projects[project_id] = current.model_copy(update=fields)

    async def update_raw(self, project_id: str, fields: dict[str, Any]) -> None:
        check_raw_fields(fields)
        current = await self.get(project_id)
        self.projects[project_id] = current.model_copy(update=fields)

    async def delete(self, project_id: str) -> None:
        if project_id not in self.projects:
            raise ProjectNotFound(f"Project {project_id} does not exist")
        del self.projects[project_id]

    def _title_holder(self, owner_id: str, title: str) -> Project | None:
        for p in self.projects.values():
            if p.owner_id == owner_id and p.title == title:
                return p
        return None


class MemoryBlobStore(BlobStore):
    """
    Keeps blobs in a dict and records the calls made to it.
    Set fail_delete to make delete raise a StorageError.
    """

    def __init__(self, url_base: str = "http://localhost:9000/test-projects"):
        self.url_base = url_base
        self.blobs: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.writes: list[str] = []
        self.deletes: list[str] = []
        self.opened: list[BlobStream] = []
        self.fail_delete = False

    async def write(self, path: str, stream: AsyncIterable[bytes], content_type: str) -> None:
        self.writes.append(path)
        data = b"".join([chunk async for chunk in stream])
        self.blobs[path] = data
        self.content_types[path] = content_type

    async def read(self, path: str) -> BlobStream:
        if path not in self.blobs:
            raise BlobNotFound(f"Object {path} not found")
        data = self.blobs[path]

        async def chunks():
            for i in range(0, len(data), 16):
                yield data[i : i + 16]

        stream = BlobStream(chunks(), content_type=self.content_types[path], size=len(data))
        self.opened.append(stream)
        return stream

    async def exists(self, path: str) -> bool:
        return path in self.blobs

    async def delete(self, path: str) -> None:
        self.deletes.append(path)
        if self.fail_delete:
            raise StorageError(f"Cannot delete object {path}: the object store is down")
        self.blobs.pop(path, None)

    async def access_url(self, path: str, ttl: timedelta) -> str:
        return f"{self.url_base}/{path}?X-Amz-Expires={int(ttl.total_seconds())}"

    async def upload_form(
        self, path: str, content_type: str, max_bytes: int, ttl: timedelta
    ) -> tuple[str, dict[str, str]]:
        return self.url_base, {"key": path, "Content-Type": content_type}
