"""
Tests for the cached read path: paging, search, sorting and isolation
"""

import uuid

import pytest

from taskboard.cache import keys as cache_keys
from taskboard.core.exceptions import (
    ForbiddenAccessException,
    NotFoundException,
    ValidationFailedException,
)
from taskboard.models import Project, QueryParameters
from taskboard.repositories import ProjectRepository
from taskboard.requests import (
    GetAllProjectsQuery,
    GetProjectByIdQuery,
    GetTaskByIdQuery,
    GetTasksByProjectIdQuery,
)


def list_projects(user_id="user1", is_admin=False, **parameters):
    return GetAllProjectsQuery(
        user_id=user_id, is_admin=is_admin, parameters=QueryParameters(**parameters)
    )


class TestPagination:
    """Test page windows and derived totals"""

    @pytest.mark.asyncio
    async def test_second_page(self, dispatch, create_project):
        for i in range(15):
            await create_project("user1", f"Project {i:02d}")

        page = await dispatch(list_projects(page_number=2, page_size=10))

        assert page.total_count == 15
        assert page.total_pages == 2
        assert page.page_number == 2
        assert [p.name for p in page.items] == [f"Project {i:02d}" for i in range(10, 15)]

    @pytest.mark.asyncio
    async def test_empty_result(self, dispatch):
        page = await dispatch(list_projects())
        assert page.items == []
        assert page.total_count == 0
        assert page.total_pages == 0

    @pytest.mark.asyncio
    async def test_page_size_is_capped(self, dispatch):
        with pytest.raises(ValidationFailedException) as exc_info:
            await dispatch(list_projects(page_size=101))
        assert [e.field for e in exc_info.value.errors] == ["pageSize"]


class TestSearchAndSort:
    """Test search filters and the sort whitelist"""

    @pytest.mark.asyncio
    async def test_search_is_case_insensitive_over_name_and_description(
        self, dispatch, create_project
    ):
        await create_project("user1", "Alpha")
        await create_project("user1", "alphabet soup")
        await create_project("user1", "Beta", "Successor of ALPHA")
        await create_project("user1", "Gamma")

        page = await dispatch(list_projects(search_query="AlPhA"))

        assert {p.name for p in page.items} == {"Alpha", "alphabet soup", "Beta"}

    @pytest.mark.asyncio
    async def test_like_wildcards_are_literal(self, dispatch, create_project):
        await create_project("user1", "100% done")
        await create_project("user1", "Almost done")
        await create_project("user1", "snake_case")
        await create_project("user1", "snakecase")

        percent = await dispatch(list_projects(search_query="%"))
        underscore = await dispatch(list_projects(search_query="_"))

        assert [p.name for p in percent.items] == ["100% done"]
        assert [p.name for p in underscore.items] == ["snake_case"]

    @pytest.mark.asyncio
    async def test_sort_by_name_desc(self, dispatch, create_project):
        for name in ("Bravo", "Charlie", "Alpha"):
            await create_project("user1", name)

        page = await dispatch(list_projects(sort_by="name", sort_order="desc"))

        assert [p.name for p in page.items] == ["Charlie", "Bravo", "Alpha"]

    @pytest.mark.asyncio
    async def test_unknown_sort_field_falls_back_to_insertion_order(
        self, dispatch, create_project
    ):
        for name in ("Bravo", "Charlie", "Alpha"):
            await create_project("user1", name)

        page = await dispatch(list_projects(sort_by="owner_id; DROP TABLE projects"))

        assert [p.name for p in page.items] == ["Bravo", "Charlie", "Alpha"]

    @pytest.mark.asyncio
    async def test_task_list_filters(self, dispatch, create_project, create_task):
        project = await create_project("user1", "Alpha")
        await create_task(project, "Write docs", status="Done")
        await create_task(project, "Fix bug")
        await create_task(project, "Write tests")

        page = await dispatch(
            GetTasksByProjectIdQuery(
                project_id=project.id,
                user_id="user1",
                is_admin=False,
                parameters=QueryParameters(search_query="write", sort_by="title"),
            )
        )

        assert [t.title for t in page.items] == ["Write docs", "Write tests"]


class TestIsolation:
    """Test that list and item reads respect ownership"""

    @pytest.mark.asyncio
    async def test_admin_sees_everything(self, dispatch, create_project):
        await create_project("user1", "Alpha")
        await create_project("user2", "Gamma")

        mine = await dispatch(list_projects(user_id="user2"))
        everything = await dispatch(list_projects(user_id="admin", is_admin=True))

        assert [p.name for p in mine.items] == ["Gamma"]
        assert everything.total_count == 2

    @pytest.mark.asyncio
    async def test_task_list_of_foreign_project(self, dispatch, create_project):
        project = await create_project("user1", "Alpha")
        with pytest.raises(ForbiddenAccessException):
            await dispatch(
                GetTasksByProjectIdQuery(project_id=project.id, user_id="user2", is_admin=False)
            )

    @pytest.mark.asyncio
    async def test_access_is_checked_on_cache_hit(self, dispatch, create_project, create_task, cache):
        project = await create_project("user1", "Alpha")
        task = await create_task(project, "Write docs")
        # An admin read puts the entries in the cache
        await dispatch(GetProjectByIdQuery(project_id=project.id, user_id="admin", is_admin=True))
        await dispatch(GetTaskByIdQuery(task_id=task.id, user_id="admin", is_admin=True))
        await dispatch(
            GetTasksByProjectIdQuery(project_id=project.id, user_id="admin", is_admin=True)
        )
        assert await cache.get(cache_keys.project_key(project.id)) is not None

        with pytest.raises(ForbiddenAccessException):
            await dispatch(
                GetProjectByIdQuery(project_id=project.id, user_id="user2", is_admin=False)
            )
        with pytest.raises(ForbiddenAccessException):
            await dispatch(GetTaskByIdQuery(task_id=task.id, user_id="user2", is_admin=False))
        with pytest.raises(ForbiddenAccessException):
            await dispatch(
                GetTasksByProjectIdQuery(project_id=project.id, user_id="user2", is_admin=False)
            )

    @pytest.mark.asyncio
    async def test_missing_project_tasks(self, dispatch):
        with pytest.raises(NotFoundException):
            await dispatch(
                GetTasksByProjectIdQuery(project_id=uuid.uuid4(), user_id="user1", is_admin=False)
            )


class TestCacheAside:
    """Test that reads are served from cache until a write invalidates them"""

    @pytest.mark.asyncio
    async def test_list_hit_skips_store(self, dispatch, create_project, session_factory, cache):
        await create_project("user1", "Alpha")
        first = await dispatch(list_projects())

        # Written behind the handlers' back, so nothing is invalidated
        async with session_factory() as session:
            repository = ProjectRepository(session)
            repository.add(Project(name="Sideloaded", owner_id="user1"))
            await repository.save_changes()
            await session.commit()

        hits_before = cache.stats["l1_hits"]
        second = await dispatch(list_projects())

        assert second.total_count == first.total_count == 1
        assert cache.stats["l1_hits"] == hits_before + 1

    @pytest.mark.asyncio
    async def test_list_keys_are_scoped_by_parameters(self, dispatch, create_project, cache):
        await create_project("user1", "Alpha")
        await dispatch(list_projects(page_size=5))
        await dispatch(list_projects(page_size=5, search_query="alp"))

        sortable = ProjectRepository.sortable_fields
        for parameters in (
            QueryParameters(page_size=5),
            QueryParameters(page_size=5, search_query="alp"),
        ):
            key = cache_keys.projects_list_key("user1", False, parameters, sortable)
            assert await cache.get(key) is not None

    @pytest.mark.asyncio
    async def test_owner_scopes_do_not_collide(self, dispatch, create_project):
        await create_project("u1", "One")
        await create_project("u10", "Ten")
        await dispatch(list_projects(user_id="u1"))
        await dispatch(list_projects(user_id="u10"))

        await create_project("u1", "One more")

        ten = await dispatch(list_projects(user_id="u10"))
        one = await dispatch(list_projects(user_id="u1"))
        assert [p.name for p in ten.items] == ["Ten"]
        assert one.total_count == 2
