import re

from paintbar.errors import ProjectValidationError
from paintbar.models import ProjectCreate, ProjectUpdate

CONTENT_HASH_PATTERN = re.compile(r"^[0-9a-f]{64}$")

MAX_TITLE_LENGTH = 200
MAX_TAGS = 20
MAX_TAG_LENGTH = 50
MAX_THUMBNAIL_LENGTH = 500 * 1024
THUMBNAIL_PREFIX = "data:image/"


def sanitize_tags(tags: list[str]) -> list[str]:
    return [tag.strip().lower() for tag in tags]


def sanitize_project(data: ProjectCreate, owner_id: str) -> ProjectCreate:
    """
    Return a cleaned copy of the create form: owner and storage url are set by the server,
    the title is trimmed and tags are trimmed and lower cased.
    """
    return data.model_copy(
        update=dict(
            owner_id=owner_id,
            storage_url="",
            title=data.title.strip(),
            tags=sanitize_tags(data.tags),
        )
    )


def validate_project(data: ProjectCreate) -> None:
    validate_title(data.title)
    if data.content_hash and not CONTENT_HASH_PATTERN.match(data.content_hash):
        raise ProjectValidationError("content_hash must be a 64-character lowercase hex string")
    if data.thumbnail_data:
        validate_thumbnail_data(data.thumbnail_data)
    if data.width < 0 or data.height < 0:
        raise ProjectValidationError("width and height must not be negative")
    validate_tags(data.tags)


def validate_update(update: ProjectUpdate) -> ProjectUpdate:
    """Check a partial update and return it with the title trimmed and the tags cleaned"""
    changes: dict = {}
    if update.title is not None:
        changes["title"] = update.title.strip()
        validate_title(changes["title"])
    if update.tags is not None:
        changes["tags"] = sanitize_tags(update.tags)
        validate_tags(changes["tags"])
    return update.model_copy(update=changes)


def validate_title(title: str) -> None:
    if not title:
        raise ProjectValidationError("title is required")
    if len(title) > MAX_TITLE_LENGTH:
        raise ProjectValidationError(f"title must be {MAX_TITLE_LENGTH} characters or less")


def validate_tags(tags: list[str]) -> None:
    if len(tags) > MAX_TAGS:
        raise ProjectValidationError(f"maximum {MAX_TAGS} tags allowed")
    for tag in tags:
        if len(tag) > MAX_TAG_LENGTH:
            raise ProjectValidationError(f"each tag must be {MAX_TAG_LENGTH} characters or less")


def validate_thumbnail_data(data: str) -> None:
    if len(data.encode("utf-8")) > MAX_THUMBNAIL_LENGTH:
        raise ProjectValidationError(f"thumbnail_data must be {MAX_THUMBNAIL_LENGTH} bytes or less")
    if not data.startswith(THUMBNAIL_PREFIX):
        raise ProjectValidationError("thumbnail_data must be a data:image/ URI")
