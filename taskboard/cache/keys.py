"""
Cache key namespace.

Entity keys are exact (``project_{id}``, ``task_{id}``). List keys start with
a scope prefix ending in ``_page_`` followed by every parameter that shapes the
result, so a whole scope can be invalidated by prefix without also hitting a
neighbouring scope (``projects_user_u1_page_`` never prefixes ``u10``).
"""

import hashlib
import uuid
from typing import Iterable

from taskboard.models import QueryParameters

NONE = "none"


def project_key(project_id: uuid.UUID) -> str:
    return f"project_{project_id}"


def task_key(task_id: uuid.UUID) -> str:
    return f"task_{task_id}"


def owner_projects_prefix(owner_id: str) -> str:
    return f"projects_user_{owner_id}_page_"


def all_projects_prefix() -> str:
    return "projects_all_page_"


def project_tasks_prefix(project_id: uuid.UUID) -> str:
    return f"tasks_project_{project_id}_page_"


def _search_part(search_query: str | None) -> str:
    term = (search_query or "").strip().lower()
    if not term:
        return NONE
    # Search text is user supplied; hash it to keep keys bounded in length
    return hashlib.sha256(term.encode("utf-8")).hexdigest()[:16]


def _sort_parts(
    sort_by: str | None, sort_order: str | None, sortable: Iterable[str]
) -> tuple[str, str]:
    field = (sort_by or "").strip().lower()
    if field not in set(sortable):
        return NONE, NONE
    order = (sort_order or "").strip().lower()
    return field, "desc" if order == "desc" else "asc"


def list_suffix(params: QueryParameters, sortable: Iterable[str]) -> str:
    sort_by, sort_order = _sort_parts(params.sort_by, params.sort_order, sortable)
    return (
        f"{params.page_number}_size_{params.page_size}"
        f"_search_{_search_part(params.search_query)}"
        f"_sortby_{sort_by}_sortorder_{sort_order}"
    )


def projects_list_key(
    actor_id: str, is_admin: bool, params: QueryParameters, sortable: Iterable[str]
) -> str:
    prefix = all_projects_prefix() if is_admin else owner_projects_prefix(actor_id)
    return prefix + list_suffix(params, sortable)


def project_tasks_key(
    project_id: uuid.UUID, params: QueryParameters, sortable: Iterable[str]
) -> str:
    return project_tasks_prefix(project_id) + list_suffix(params, sortable)
