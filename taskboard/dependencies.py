from fastapi import Depends, Query, Request
from sqlmodel.ext.asyncio.session import AsyncSession
from typing_extensions import Annotated

from taskboard.core.config import SettingsDep
from taskboard.core.security import CurrentUserDep
from taskboard.database import get_db
from taskboard.models import QueryParameters
from taskboard.pipeline.mediator import Mediator

DbDep = Annotated[AsyncSession, Depends(get_db)]


def get_mediator(request: Request) -> Mediator:
    return request.app.state.mediator


MediatorDep = Annotated[Mediator, Depends(get_mediator)]


def get_query_parameters(
    settings: SettingsDep,
    page_number: int = Query(default=1, alias="pageNumber"),
    page_size: int | None = Query(default=None, alias="pageSize"),
    search_query: str | None = Query(default=None, alias="searchQuery"),
    sort_by: str | None = Query(default=None, alias="sortBy"),
    sort_order: str | None = Query(default=None, alias="sortOrder"),
) -> QueryParameters:
    """Range checks are left to the request validators so they share one error format."""
    return QueryParameters(
        page_number=page_number,
        page_size=page_size if page_size is not None else settings.default_page_size,
        search_query=search_query,
        sort_by=sort_by,
        sort_order=sort_order,
    )


QueryParametersDep = Annotated[QueryParameters, Depends(get_query_parameters)]

__all__ = ["CurrentUserDep", "DbDep", "MediatorDep", "QueryParametersDep"]
