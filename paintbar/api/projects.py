"""API Endpoints for projects and project images."""

from typing import Annotated

from fastapi import APIRouter, Body, Depends, Query, Request, status
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from paintbar.api.auth import authenticated_user
from paintbar.connections import s3_enabled
from paintbar.models import CreateProjectResult, Project, ProjectCreate, ProjectUpdate, UploadForm, User
from paintbar.objectstorage.blobstore import S3BlobStore
from paintbar.projects.service import PNG_CONTENT_TYPE, ProjectService
from paintbar.systemdata.projects import ElasticProjectStore

app_projects = APIRouter(prefix="/projects", tags=["projects"])


def get_project_service() -> ProjectService:
    """The project service on elasticsearch and (if configured) the S3 object store"""
    blobs = S3BlobStore() if s3_enabled() else None
    return ProjectService.from_settings(ElasticProjectStore(), blobs)


Service = Annotated[ProjectService, Depends(get_project_service)]


@app_projects.get("")
async def list_projects(
    service: Service,
    limit: Annotated[int | None, Query(description="Number of projects to return (default 10, max 50)")] = None,
    start_after: Annotated[
        str | None, Query(description="Id of the last project of the previous page, to get the next page")
    ] = None,
    user: User = Depends(authenticated_user),
) -> list[Project]:
    """List your projects, newest first."""
    return await service.list_projects(user.owner_id, limit, start_after)


@app_projects.get("/count")
async def count_projects(service: Service, user: User = Depends(authenticated_user)):
    return {"count": await service.count_projects(user.owner_id)}


@app_projects.get("/by-title")
async def get_project_by_title(
    service: Service,
    title: Annotated[str, Query(description="Title of the project")],
    user: User = Depends(authenticated_user),
) -> Project:
    """Get one of your projects by its title."""
    return await service.get_project_by_title(user.owner_id, title)


@app_projects.get("/{project_id}")
async def get_project(project_id: str, service: Service, user: User = Depends(authenticated_user)) -> Project:
    """Get a project. Projects of other users can only be retrieved if they are public."""
    return await service.get_project(user.owner_id, project_id)


@app_projects.post("", status_code=status.HTTP_201_CREATED)
async def create_project(
    project: Annotated[ProjectCreate, Body(...)],
    service: Service,
    user: User = Depends(authenticated_user),
) -> CreateProjectResult:
    """
    Create a project.

    If you already have a project with the same content hash, that project is returned with duplicate=true.
    If you already have a project with the same title, its content is replaced and the image needs to be uploaded again.
    """
    return await service.create_or_upsert(user.owner_id, project)


@app_projects.put("/{project_id}")
async def update_project(
    project_id: str,
    update: Annotated[ProjectUpdate, Body(...)],
    service: Service,
    user: User = Depends(authenticated_user),
):
    """Change the title, visibility or tags of a project."""
    await service.update_project(user.owner_id, project_id, update)
    return {"status": "updated"}


@app_projects.delete("/{project_id}")
async def delete_project(project_id: str, service: Service, user: User = Depends(authenticated_user)):
    await service.delete_project(user.owner_id, project_id)
    return {"status": "deleted"}


@app_projects.post("/{project_id}/blob")
async def upload_blob(project_id: str, request: Request, service: Service, user: User = Depends(authenticated_user)):
    """
    Upload the PNG image of a project as the raw request body.
    The project needs a content hash, the image is stored under that hash.
    """
    await service.upload_blob(user.owner_id, project_id, request.stream())
    return {"status": "uploaded"}


@app_projects.get("/{project_id}/blob")
async def download_blob(project_id: str, service: Service, user: User = Depends(authenticated_user)):
    """Download the PNG image of one of your projects."""
    blob = await service.download_blob(user.owner_id, project_id)
    headers = {"Cache-Control": "no-store"}
    if blob.size is not None:
        headers["Content-Length"] = str(blob.size)
    return StreamingResponse(
        blob,
        media_type=PNG_CONTENT_TYPE,
        headers=headers,
        background=BackgroundTask(blob.aclose),
    )


@app_projects.post("/{project_id}/upload-form")
async def create_upload_form(
    project_id: str, service: Service, user: User = Depends(authenticated_user)
) -> UploadForm:
    """
    Upload an image directly to the object store. This is a two step process.

    - First you call this endpoint to get a presigned POST url and form fields.
    - After uploading the file with that form, you call confirm-upload to link it to the project.
    """
    return await service.create_upload_form(user.owner_id, project_id)


@app_projects.post("/{project_id}/confirm-upload")
async def confirm_upload(project_id: str, service: Service, user: User = Depends(authenticated_user)):
    await service.confirm_upload(user.owner_id, project_id)
    return {"status": "confirmed"}
