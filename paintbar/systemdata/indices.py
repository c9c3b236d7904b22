"""
Names and mappings of the elasticsearch indices used by paintbar.

- projects: one document per project, the document id is the project id
- title_claims: one document per (owner, title), holding the id of the project that owns that title.
  Claims are created with op_type=create, which makes claiming a title atomic.
"""

import hashlib

from paintbar.config import get_settings


def index_name(path: str) -> str:
    prefix = get_settings().index_prefix
    if get_settings().use_test_db:
        prefix = f"test_{prefix}"
    return f"{prefix}_{path}"


def projects_index_name() -> str:
    return index_name("projects")


def title_claims_index_name() -> str:
    return index_name("title_claims")


def title_claim_id(owner_id: str, title: str) -> str:
    # titles can be long and contain anything, so hash them into a fixed size id
    return hashlib.sha256(f"{owner_id}\x00{title}".encode("utf-8")).hexdigest()


projects_mapping: dict = dict(
    id={"type": "keyword"},
    owner_id={"type": "keyword"},
    title={"type": "keyword"},
    content_hash={"type": "keyword"},
    storage_url={"type": "keyword", "index": False, "doc_values": False},
    thumbnail_data={"type": "text", "index": False},
    width={"type": "long"},
    height={"type": "long"},
    is_public={"type": "boolean"},
    tags={"type": "keyword"},
    created_at={"type": "date"},
    updated_at={"type": "date"},
)

title_claims_mapping: dict = dict(
    owner_id={"type": "keyword"},
    title={"type": "keyword"},
    project_id={"type": "keyword"},
    claimed_at={"type": "date"},
)


def index_mappings() -> dict[str, dict]:
    return {
        projects_index_name(): projects_mapping,
        title_claims_index_name(): title_claims_mapping,
    }
