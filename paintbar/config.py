"""
Paintbar Configuration

Settings are taken from environment variables (prefixed with PAINTBAR_), falling back to a .env file.
The .env file is read from the working directory, or from the path in PAINTBAR_ENV_FILE.
"""

import functools
from enum import Enum
from pathlib import Path
from typing import Annotated, Any
from urllib.parse import urlsplit

from class_doc import extract_docs_from_cls_obj
from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PREFIX = "paintbar_"
LOCAL_ELASTIC_HOSTS = {"http://localhost:9200", "https://localhost:9200"}


class AuthOptions(str, Enum):
    #: no token is checked, the owner id is taken from the X-Owner-Id header (local development only)
    no_auth = "no_auth"

    #: every request needs a valid bearer token, the owner id is the token subject
    authorized_users_only = "authorized_users_only"


# The #: comments above become the docstrings of the options (shown by `python -m paintbar config`)
for option, doc in extract_docs_from_cls_obj(AuthOptions).items():
    AuthOptions[option].__doc__ = "\n".join(doc)


class Settings(BaseSettings):
    env_file: Annotated[Path, Field(description="Path of the .env file, relative to the working directory")] = Path(
        ".env"
    )
    host: Annotated[
        str, Field(description="Public URL of this API. Bearer tokens must name it as their audience (aud)")
    ] = "http://localhost:5000"

    elastic_host: Annotated[
        str | None,
        Field(description="URL of the elasticsearch server. Defaults to localhost:9200 (https if a password is set)"),
    ] = None
    elastic_password: Annotated[
        str | None, Field(description="Password of the 'elastic' user, if elasticsearch security is enabled")
    ] = None
    elastic_verify_ssl: Annotated[
        bool | None,
        Field(description="Check the certificate of elasticsearch (with a password only). Defaults to False on localhost"),
    ] = None

    index_prefix: Annotated[
        str,
        Field(
            description="Prefix of the elasticsearch indices that hold the project metadata and title claims",
        ),
    ] = "paintbar"

    use_test_db: Annotated[
        bool,
        Field(
            description="Use test indices and bucket (prefixed with test_/test-). Only used by the unit tests",
        ),
    ] = False

    auth: Annotated[AuthOptions, Field(description="Do we require authorization?")] = AuthOptions.authorized_users_only

    jwt_secret: Annotated[
        str | None,
        Field(
            description="Shared secret used to verify HS256 bearer tokens issued by the identity provider",
        ),
    ] = None

    s3_host: Annotated[str | None, Field(description="Endpoint of the S3 compatible object store")] = None
    s3_public_host: Annotated[
        str | None,
        Field(description="Public address of the object store, used to rewrite generated URLs (if different)"),
    ] = None
    s3_access_key: Annotated[str | None, Field(description="S3 access key")] = None
    s3_secret_key: Annotated[str | None, Field(description="S3 secret key")] = None
    s3_bucket: Annotated[str, Field(description="Bucket that holds the project images")] = "projects"

    allowed_storage_hosts: Annotated[
        list[str],
        Field(
            description=(
                "Hostnames that generated storage URLs may point to. "
                "The hosts of s3_host and s3_public_host are always added"
            ),
        ),
    ] = ["localhost", "127.0.0.1"]

    storage_url_days_valid: Annotated[
        int, Field(description="Number of days a generated storage URL stays valid", ge=1, le=7)
    ] = 7
    upload_form_hours_valid: Annotated[
        int, Field(description="Number of hours a presigned upload form stays valid", ge=1)
    ] = 6
    max_blob_bytes: Annotated[
        int, Field(description="Maximum size of an uploaded project image in bytes", ge=8)
    ] = 10 * 1024 * 1024

    @model_validator(mode="after")
    def set_elastic_defaults(self: Any) -> "Settings":
        if not self.elastic_host:
            scheme = "https" if self.elastic_password else "http"
            self.elastic_host = f"{scheme}://localhost:9200"
        if self.elastic_verify_ssl is None:
            self.elastic_verify_ssl = self.elastic_host not in LOCAL_ELASTIC_HOSTS
        return self

    @model_validator(mode="after")
    def add_storage_hosts(self: Any) -> "Settings":
        for url in (self.s3_host, self.s3_public_host):
            hostname = urlsplit(url).hostname if url else None
            if hostname and hostname not in self.allowed_storage_hosts:
                self.allowed_storage_hosts = [*self.allowed_storage_hosts, hostname]
        return self

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX)


@functools.lru_cache()
def get_settings() -> Settings:
    # env_file can itself come from the environment, so read it first and load that file
    temp = Settings()
    load_dotenv(temp.env_file, override=False)
    return Settings()


def validate_settings():
    settings = get_settings()
    if settings.auth != AuthOptions.no_auth and not settings.jwt_secret:
        return "Authentication is enabled but no jwt_secret is set, so no bearer token can be verified."
    if settings.s3_host is None:
        return "No s3_host is set. Project metadata will work, but images cannot be uploaded or downloaded."
