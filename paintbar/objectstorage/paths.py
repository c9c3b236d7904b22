from paintbar.errors import InvalidObjectPath

PROJECT_PREFIX = "projects"
PROJECT_EXTENSION = "png"


def project_object_path(owner_id: str, content_hash: str) -> str:
    """
    The canonical object store path of a project image: projects/{owner_id}/{content_hash}.png

    This is the only place where blob paths are built. Both segments are checked so that neither
    can escape the owner's prefix.
    """
    _check_segment("owner_id", owner_id)
    _check_segment("content_hash", content_hash)
    return f"{PROJECT_PREFIX}/{owner_id}/{content_hash}.{PROJECT_EXTENSION}"


def _check_segment(name: str, value: str) -> None:
    if not value:
        raise InvalidObjectPath(f"Invalid {name}: must not be empty")
    if "/" in value or "\\" in value or ".." in value:
        raise InvalidObjectPath(f"Invalid {name}: must not contain path separators or traversal sequences")
