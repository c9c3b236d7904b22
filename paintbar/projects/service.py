"""
The project service keeps project metadata and project images consistent.

A project is a metadata document (see paintbar.models.Project) bound to a PNG image in the object store
by its content hash: the image of a project lives at projects/{owner_id}/{content_hash}.png.

Every operation takes the id of the authenticated caller as owner_id. Ownership is decided here,
never by the caller, and owner_id and storage_url in client input are always overwritten.
"""

import logging
from datetime import timedelta
from typing import AsyncIterable, AsyncIterator, Iterable
from urllib.parse import urlsplit

from paintbar.config import Settings, get_settings
from paintbar.errors import (
    ProjectNotFound,
    ProjectValidationError,
    StorageError,
    TitleTaken,
    Unauthorized,
    UntrustedStorageURL,
    UploadNotFound,
    NotFoundError,
)
from paintbar.models import CreateProjectResult, Project, ProjectCreate, ProjectUpdate, UploadForm
from paintbar.objectstorage.blobstore import BlobStore, BlobStream
from paintbar.objectstorage.paths import project_object_path
from paintbar.projects.validation import sanitize_project, validate_project, validate_title, validate_update
from paintbar.systemdata.projects import ProjectStore

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
PNG_CONTENT_TYPE = "image/png"

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 50


class ProjectService:
    def __init__(
        self,
        store: ProjectStore,
        blobs: BlobStore | None,
        allowed_storage_hosts: Iterable[str] = ("localhost", "127.0.0.1"),
        storage_url_ttl: timedelta = timedelta(days=7),
        upload_form_ttl: timedelta = timedelta(hours=6),
        max_blob_bytes: int = 10 * 1024 * 1024,
    ):
        """
        :param blobs: The object store, or None if no object store is configured.
                      Metadata operations still work, image operations raise StorageError.
        """
        self.store = store
        self.blobs = blobs
        self.allowed_storage_hosts = frozenset(host.lower() for host in allowed_storage_hosts)
        self.storage_url_ttl = storage_url_ttl
        self.upload_form_ttl = upload_form_ttl
        self.max_blob_bytes = max_blob_bytes

    @classmethod
    def from_settings(cls, store: ProjectStore, blobs: BlobStore | None, settings: Settings | None = None):
        settings = settings or get_settings()
        return cls(
            store,
            blobs,
            allowed_storage_hosts=settings.allowed_storage_hosts,
            storage_url_ttl=timedelta(days=settings.storage_url_days_valid),
            upload_form_ttl=timedelta(hours=settings.upload_form_hours_valid),
            max_blob_bytes=settings.max_blob_bytes,
        )

    async def create_or_upsert(self, owner_id: str, data: ProjectCreate) -> CreateProjectResult:
        """
        Create a project, or reuse an existing one:

        1. If the owner already has a project with the same content hash, return it as a duplicate (nothing changes).
        2. If the owner already has a project with the same title, replace its content and return it.
        3. Otherwise, create a new project.
        """
        if not owner_id:
            raise ProjectValidationError("owner id is required")
        data = sanitize_project(data, owner_id)
        validate_project(data)

        if data.content_hash:
            existing = await self.store.find_by_owner_and_hash(owner_id, data.content_hash)
            if existing is not None:
                return CreateProjectResult(project_id=existing.id, duplicate=True)

        existing = await self.store.find_by_owner_and_title(owner_id, data.title)
        if existing is not None:
            await self._replace_content(existing.id, data)
            return CreateProjectResult(project_id=existing.id)

        project = Project(
            id="",
            owner_id=owner_id,
            title=data.title,
            content_hash=data.content_hash,
            storage_url="",
            thumbnail_data=data.thumbnail_data,
            width=data.width,
            height=data.height,
            is_public=data.is_public,
            tags=data.tags,
        )
        try:
            project_id = await self.store.create(project)
        except TitleTaken as e:
            # A concurrent request created this title between our lookup and create
            if not e.project_id:
                raise
            logging.info(f"Title {data.title!r} of {owner_id} was claimed concurrently, updating {e.project_id}")
            await self._replace_content(e.project_id, data)
            return CreateProjectResult(project_id=e.project_id)
        return CreateProjectResult(project_id=project_id)

    async def get_project(self, owner_id: str, project_id: str) -> Project:
        """Get a project. Other users can only get it if it is public."""
        if not project_id:
            raise ProjectValidationError("project id is required")
        project = await self.store.get(project_id)
        if project.owner_id != owner_id and not project.is_public:
            raise Unauthorized("unauthorized: you do not have access to this project")
        return project

    async def get_project_by_title(self, owner_id: str, title: str) -> Project:
        title = title.strip()
        validate_title(title)
        project = await self.store.find_by_owner_and_title(owner_id, title)
        if project is None:
            raise ProjectNotFound(f"project with title {title!r} not found")
        return project

    async def list_projects(self, owner_id: str, limit: int | None = None, cursor: str | None = None) -> list[Project]:
        if not owner_id:
            raise ProjectValidationError("owner id is required")
        if not limit or limit <= 0:
            limit = DEFAULT_PAGE_SIZE
        limit = min(limit, MAX_PAGE_SIZE)
        return await self.store.list_by_owner(owner_id, limit, cursor or None)

    async def count_projects(self, owner_id: str) -> int:
        if not owner_id:
            raise ProjectValidationError("owner id is required")
        return await self.store.count_by_owner(owner_id)

    async def update_project(self, owner_id: str, project_id: str, update: ProjectUpdate) -> None:
        if not project_id:
            raise ProjectValidationError("project id is required")
        update = validate_update(update)
        await self._get_owned(owner_id, project_id, "update")
        await self.store.update(project_id, update)

    async def delete_project(self, owner_id: str, project_id: str) -> None:
        """
        Delete the project and its image. Removing the image is best effort: if it fails, the image is
        left as an orphan in the object store, but the project is deleted anyway.
        """
        project = await self._get_owned(owner_id, project_id, "delete")

        if self.blobs is not None and project.content_hash:
            try:
                await self.blobs.delete(project_object_path(project.owner_id, project.content_hash))
            except Exception as e:
                logging.warning(f"Could not delete image of project {project_id}, leaving it as an orphan: {e}")

        await self.store.delete(project_id)

    async def upload_blob(self, owner_id: str, project_id: str, stream: AsyncIterable[bytes]) -> str:
        """
        Store the PNG image of a project and set its storage url. The project metadata (with content hash)
        must be created first. The stream is always closed, also if it is rejected.

        :return: the new storage url
        """
        try:
            blobs = self._require_blobs()
            project = await self._get_owned(owner_id, project_id, "upload to")
            path = self._project_path(project)

            data = await _check_png(stream)
            await blobs.write(path, _limit_size(data, self.max_blob_bytes), PNG_CONTENT_TYPE)
        finally:
            await _close_stream(stream)

        return await self._publish_storage_url(project_id, path)

    async def create_upload_form(self, owner_id: str, project_id: str) -> UploadForm:
        """
        First step of a direct upload: a presigned form that lets the client upload the image to the object store.
        The client calls confirm_upload afterwards.
        """
        blobs = self._require_blobs()
        project = await self._get_owned(owner_id, project_id, "upload to")
        path = self._project_path(project)

        url, fields = await blobs.upload_form(path, PNG_CONTENT_TYPE, self.max_blob_bytes, self.upload_form_ttl)
        self.check_storage_url(url)
        return UploadForm(url=url, fields=fields, expires_in=int(self.upload_form_ttl.total_seconds()))

    async def confirm_upload(self, owner_id: str, project_id: str) -> str:
        """
        Second step of a direct upload: check that the image is in the object store and set the storage url.

        :return: the new storage url
        """
        blobs = self._require_blobs()
        project = await self._get_owned(owner_id, project_id, "confirm")
        path = self._project_path(project)

        if not await blobs.exists(path):
            raise UploadNotFound("upload not found: image has not been uploaded yet")
        return await self._publish_storage_url(project_id, path)

    async def download_blob(self, owner_id: str, project_id: str) -> BlobStream:
        """Open the image of a project. The caller must close the returned stream."""
        blobs = self._require_blobs()
        project = await self._get_owned(owner_id, project_id, "download")
        if not project.content_hash:
            raise NotFoundError("project has no content yet")
        return await blobs.read(project_object_path(project.owner_id, project.content_hash))

    def check_storage_url(self, url: str) -> None:
        """Raise UntrustedStorageURL unless url is an http(s) url on one of the allowed storage hosts."""
        try:
            parts = urlsplit(url)
            hostname = parts.hostname
        except ValueError as e:
            raise UntrustedStorageURL(f"malformed storage URL: {e}") from e
        if "\\" in parts.netloc or parts.username is not None or parts.password is not None:
            raise UntrustedStorageURL("storage URL must not contain credentials or backslashes in its host")
        if parts.scheme not in ("http", "https"):
            raise UntrustedStorageURL(f"storage URL scheme {parts.scheme!r} is not allowed")
        if not hostname or hostname not in self.allowed_storage_hosts:
            raise UntrustedStorageURL(f"storage URL host {hostname!r} is not in the allow-list")

    async def _publish_storage_url(self, project_id: str, path: str) -> str:
        url = await self._require_blobs().access_url(path, self.storage_url_ttl)
        try:
            self.check_storage_url(url)
        except UntrustedStorageURL:
            logging.warning(f"Refusing storage url for project {project_id}, image at {path} stays unlinked")
            raise
        await self.store.update_raw(project_id, {"storage_url": url})
        return url

    async def _replace_content(self, project_id: str, data: ProjectCreate) -> None:
        # New content invalidates the old image, so the storage url is cleared until the new image is uploaded
        await self.store.update_raw(
            project_id,
            {
                "content_hash": data.content_hash,
                "storage_url": "",
                "thumbnail_data": data.thumbnail_data,
                "width": data.width,
                "height": data.height,
                "is_public": data.is_public,
                "tags": data.tags,
            },
        )

    async def _get_owned(self, owner_id: str, project_id: str, action: str) -> Project:
        if not project_id:
            raise ProjectValidationError("project id is required")
        project = await self.store.get(project_id)
        if project.owner_id != owner_id:
            raise Unauthorized(f"unauthorized: cannot {action} another user's project")
        return project

    def _require_blobs(self) -> BlobStore:
        if self.blobs is None:
            raise StorageError("storage is not configured")
        return self.blobs

    @staticmethod
    def _project_path(project: Project) -> str:
        if not project.content_hash:
            raise ProjectValidationError("project has no content hash")
        return project_object_path(project.owner_id, project.content_hash)


async def _check_png(stream: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
    """
    Read the first 8 bytes of the stream and check the PNG signature.
    Returns an iterator over the complete stream, including the bytes that were read.
    """
    chunks = stream.__aiter__()
    header = b""
    while len(header) < len(PNG_SIGNATURE):
        try:
            header += await chunks.__anext__()
        except StopAsyncIteration:
            break
    if len(header) < len(PNG_SIGNATURE):
        raise ProjectValidationError("invalid upload: unable to read file header")
    if header[: len(PNG_SIGNATURE)] != PNG_SIGNATURE:
        raise ProjectValidationError("invalid upload: file is not a valid PNG image")
    return _rejoin(header, chunks)


async def _rejoin(first: bytes, rest: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
    yield first
    async for chunk in rest:
        yield chunk


async def _limit_size(chunks: AsyncIterable[bytes], max_bytes: int) -> AsyncIterator[bytes]:
    total = 0
    async for chunk in chunks:
        total += len(chunk)
        if total > max_bytes:
            raise ProjectValidationError(f"invalid upload: image must be {max_bytes} bytes or less")
        yield chunk


async def _close_stream(stream: AsyncIterable[bytes]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()
