from datetime import datetime

from pydantic import BaseModel, Field


class User(BaseModel):
    """For internal use only. Represents an authenticated caller."""

    owner_id: str  # subject of the verified token; this is the only source of project ownership


######################## PROJECTS #########################


class Project(BaseModel):
    """A project as stored in the metadata store."""

    id: str
    owner_id: str
    title: str
    content_hash: str = ""
    storage_url: str = ""
    thumbnail_data: str = ""
    width: int = 0
    height: int = 0
    is_public: bool = False
    tags: list[str] = []
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProjectCreate(BaseModel):
    """
    Form for creating (or upserting) a project.

    owner_id and storage_url are accepted so that clients sending whole project documents are not rejected,
    but they are always overwritten by the server.
    """

    title: str = Field(description="Title of the project, unique per owner")
    content_hash: str = Field(default="", description="SHA-256 hex digest of the PNG image")
    thumbnail_data: str = Field(default="", description="data:image/... URI of a small preview")
    width: int = 0
    height: int = 0
    is_public: bool = False
    tags: list[str] = []
    owner_id: str | None = Field(default=None, description="Ignored, the owner is the authenticated user")
    storage_url: str | None = Field(default=None, description="Ignored, storage URLs are generated by the server")


class ProjectUpdate(BaseModel):
    """Form for a partial project update. Only fields that are given are changed."""

    title: str | None = None
    is_public: bool | None = None
    tags: list[str] | None = None


class CreateProjectResult(BaseModel):
    project_id: str
    duplicate: bool = False


class UploadForm(BaseModel):
    url: str = Field(description="The URL to POST the file to")
    fields: dict[str, str] = Field(description="The form data to include in the POST request")
    expires_in: int = Field(description="Number of seconds the form stays valid")
