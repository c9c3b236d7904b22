"""
Project metadata store.

ProjectStore is the interface used by the project service. ElasticProjectStore keeps the projects
in elasticsearch, and guards the (owner, title) uniqueness with claim documents (see indices.py).
"""

import functools
import uuid
from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta
from typing import Any

import elasticsearch
from elasticsearch import ApiError, ConflictError, TransportError

from paintbar.connections import es
from paintbar.errors import ProjectNotFound, StorageError, TitleTaken
from paintbar.models import Project, ProjectUpdate
from paintbar.systemdata.indices import projects_index_name, title_claim_id, title_claims_index_name

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

# Fields that only the project service itself may change, through update_raw
RAW_FIELDS = frozenset(["content_hash", "storage_url", "thumbnail_data", "width", "height", "is_public", "tags"])


class ProjectStore(ABC):
    @abstractmethod
    async def get(self, project_id: str) -> Project:
        """Get a project by id. Raises ProjectNotFound"""

    @abstractmethod
    async def find_by_owner_and_hash(self, owner_id: str, content_hash: str) -> Project | None: ...

    @abstractmethod
    async def find_by_owner_and_title(self, owner_id: str, title: str) -> Project | None: ...

    @abstractmethod
    async def list_by_owner(self, owner_id: str, limit: int, cursor: str | None = None) -> list[Project]:
        """
        List the projects of an owner, newest first.
        The cursor is the id of the last project on the previous page. An unknown cursor gives an empty page.
        """

    @abstractmethod
    async def count_by_owner(self, owner_id: str) -> int: ...

    @abstractmethod
    async def create(self, project: Project) -> str:
        """
        Store a new project and return its id. The id and timestamps of the given project are ignored.
        Raises TitleTaken if another project of the same owner holds the title.
        """

    @abstractmethod
    async def update(self, project_id: str, update: ProjectUpdate) -> None:
        """Change the given fields only. Raises ProjectNotFound, or TitleTaken if the new title is in use."""

    @abstractmethod
    async def update_raw(self, project_id: str, fields: dict[str, Any]) -> None:
        """Change internal fields (see RAW_FIELDS). Raises ProjectNotFound"""

    @abstractmethod
    async def delete(self, project_id: str) -> None:
        """Delete a project and release its title. Raises ProjectNotFound"""


def check_raw_fields(fields: dict[str, Any]) -> None:
    if invalid := set(fields) - RAW_FIELDS:
        raise ValueError(f"Cannot update field(s) {', '.join(sorted(invalid))} with update_raw")


def _elastic_errors(func):
    """Turn elasticsearch failures into StorageError, so callers only see project errors"""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except (ApiError, TransportError) as e:
            raise StorageError(f"Metadata store failed in {func.__name__}: {e}") from e

    return wrapper


class ElasticProjectStore(ProjectStore):
    CLAIM_ATTEMPTS = 3

    @_elastic_errors
    async def get(self, project_id: str) -> Project:
        doc = await es().options(ignore_status=[404]).get(index=projects_index_name(), id=project_id)
        if not doc["found"]:
            raise ProjectNotFound(f"Project {project_id} does not exist")
        return _project_from_elastic(doc["_id"], doc["_source"])

    @_elastic_errors
    async def find_by_owner_and_hash(self, owner_id: str, content_hash: str) -> Project | None:
        query = {"bool": {"filter": [{"term": {"owner_id": owner_id}}, {"term": {"content_hash": content_hash}}]}}
        res = await es().search(index=projects_index_name(), query=query, size=1)
        for hit in res["hits"]["hits"]:
            return _project_from_elastic(hit["_id"], hit["_source"])
        return None

    @_elastic_errors
    async def find_by_owner_and_title(self, owner_id: str, title: str) -> Project | None:
        # GET is realtime in elasticsearch, so going through the claim avoids waiting for a refresh
        claim = await es().options(ignore_status=[404]).get(index=title_claims_index_name(), id=title_claim_id(owner_id, title))
        if not claim["found"]:
            return None
        doc = await es().options(ignore_status=[404]).get(index=projects_index_name(), id=claim["_source"]["project_id"])
        if not doc["found"]:
            return None
        project = _project_from_elastic(doc["_id"], doc["_source"])
        if project.owner_id != owner_id or project.title != title:
            return None
        return project

    @_elastic_errors
    async def list_by_owner(self, owner_id: str, limit: int, cursor: str | None = None) -> list[Project]:
        search_after = None
        if cursor:
            doc = await es().options(ignore_status=[404]).get(index=projects_index_name(), id=cursor)
            # Don't reveal whether a project with this id exists for someone else
            if not doc["found"] or doc["_source"]["owner_id"] != owner_id:
                return []
            last = _project_from_elastic(doc["_id"], doc["_source"])
            if last.created_at is None:
                return []
            search_after = [(last.created_at - EPOCH) // timedelta(milliseconds=1), last.id]

        res = await es().search(
            index=projects_index_name(),
            query={"term": {"owner_id": owner_id}},
            sort=[{"created_at": "desc"}, {"id": "desc"}],
            size=limit,
            search_after=search_after,
        )
        return [_project_from_elastic(hit["_id"], hit["_source"]) for hit in res["hits"]["hits"]]

    @_elastic_errors
    async def count_by_owner(self, owner_id: str) -> int:
        res = await es().count(index=projects_index_name(), query={"term": {"owner_id": owner_id}})
        return res["count"]

    @_elastic_errors
    async def create(self, project: Project) -> str:
        project_id = uuid.uuid4().hex
        now = datetime.now(UTC)
        doc = project.model_dump(exclude={"id", "created_at", "updated_at"})
        doc.update(id=project_id, created_at=now, updated_at=now)

        await self._claim_title(project.owner_id, project.title, project_id)
        try:
            await es().create(index=projects_index_name(), id=project_id, document=doc, refresh=True)
        except Exception:
            await self._release_title(project.owner_id, project.title, project_id)
            raise
        return project_id

    @_elastic_errors
    async def update(self, project_id: str, update: ProjectUpdate) -> None:
        current = await self.get(project_id)
        fields: dict[str, Any] = update.model_dump(exclude_none=True)

        new_title = fields.get("title")
        moves_title = new_title is not None and new_title != current.title
        if moves_title:
            await self._claim_title(current.owner_id, new_title, project_id)

        fields["updated_at"] = datetime.now(UTC)
        try:
            await es().update(index=projects_index_name(), id=project_id, doc=fields, refresh=True)
        except elasticsearch.NotFoundError as e:
            if moves_title:
                await self._release_title(current.owner_id, new_title, project_id)
            raise ProjectNotFound(f"Project {project_id} does not exist") from e

        if moves_title:
            await self._release_title(current.owner_id, current.title, project_id)

    @_elastic_errors
    async def update_raw(self, project_id: str, fields: dict[str, Any]) -> None:
        check_raw_fields(fields)
        doc = {**fields, "updated_at": datetime.now(UTC)}
        try:
            await es().update(index=projects_index_name(), id=project_id, doc=doc, refresh=True)
        except elasticsearch.NotFoundError as e:
            raise ProjectNotFound(f"Project {project_id} does not exist") from e

    @_elastic_errors
    async def delete(self, project_id: str) -> None:
        current = await self.get(project_id)
        try:
            await es().delete(index=projects_index_name(), id=project_id, refresh=True)
        except elasticsearch.NotFoundError as e:
            raise ProjectNotFound(f"Project {project_id} does not exist") from e
        await self._release_title(current.owner_id, current.title, project_id)

    async def _claim_title(self, owner_id: str, title: str, project_id: str) -> None:
        """
        Atomically claim (owner_id, title) for project_id.
        A claim that points to a project that no longer exists is stale and can be taken over.
        """
        index = title_claims_index_name()
        claim_id = title_claim_id(owner_id, title)
        doc = dict(owner_id=owner_id, title=title, project_id=project_id, claimed_at=datetime.now(UTC))

        for _ in range(self.CLAIM_ATTEMPTS):
            try:
                await es().create(index=index, id=claim_id, document=doc, refresh=True)
                return
            except ConflictError:
                pass

            existing = await es().options(ignore_status=[404]).get(index=index, id=claim_id)
            if not existing["found"]:
                continue  # released in the meantime, try again
            holder = existing["_source"]["project_id"]
            if holder == project_id:
                return
            if await es().exists(index=projects_index_name(), id=holder):
                raise TitleTaken(f'A project with title "{title}" already exists', project_id=holder)

            try:
                await es().index(
                    index=index,
                    id=claim_id,
                    document=doc,
                    if_seq_no=existing["_seq_no"],
                    if_primary_term=existing["_primary_term"],
                    refresh=True,
                )
                return
            except ConflictError:
                continue  # someone else took over the stale claim first

        latest = await es().options(ignore_status=[404]).get(index=index, id=claim_id)
        raise TitleTaken(
            f'A project with title "{title}" already exists',
            project_id=latest["_source"]["project_id"] if latest["found"] else "",
        )

    async def _release_title(self, owner_id: str, title: str, project_id: str) -> None:
        index = title_claims_index_name()
        claim_id = title_claim_id(owner_id, title)
        existing = await es().options(ignore_status=[404]).get(index=index, id=claim_id)
        if not existing["found"] or existing["_source"]["project_id"] != project_id:
            return
        await es().options(ignore_status=[404, 409]).delete(
            index=index,
            id=claim_id,
            if_seq_no=existing["_seq_no"],
            if_primary_term=existing["_primary_term"],
            refresh=True,
        )


def _project_from_elastic(id: str, source: dict) -> Project:
    return Project.model_validate({**source, "id": id})
