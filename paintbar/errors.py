"""
Errors raised by the project service and the stores behind it.

The API maps these to status codes (see paintbar.api):
validation errors are 400, Unauthorized 403, NotFoundError 404, TitleTaken 409 and StorageError 502.
"""


class ProjectError(Exception):
    pass


class ProjectValidationError(ProjectError, ValueError):
    """Malformed or oversized input. Always raised before any store is mutated."""


class InvalidObjectPath(ProjectValidationError):
    pass


class Unauthorized(ProjectError):
    """The caller does not own the project (and the project is not readable by others)."""


class NotFoundError(ProjectError):
    pass


class ProjectNotFound(NotFoundError):
    pass


class BlobNotFound(NotFoundError):
    pass


class UploadNotFound(NotFoundError):
    """A direct upload was confirmed, but the blob is not in the object store (yet)."""


class StorageError(ProjectError, IOError):
    """The object store or document store failed or returned something we cannot use."""


class UntrustedStorageURL(StorageError):
    pass


class TitleTaken(ProjectError):
    """Another project of the same owner already holds this title."""

    def __init__(self, message: str, project_id: str):
        super().__init__(message)
        self.project_id = project_id
