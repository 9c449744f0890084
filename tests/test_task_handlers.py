"""
Tests for task command and query handlers
"""

import json
import uuid
from unittest.mock import AsyncMock, patch

import pytest

from taskboard.core.exceptions import ForbiddenAccessException, NotFoundException
from taskboard.models import TaskStatus
from taskboard.repositories import TaskRepository
from taskboard.requests import (
    CreateTaskCommand,
    DeleteTaskCommand,
    GetProjectByIdQuery,
    GetTaskByIdQuery,
    GetTasksByProjectIdQuery,
    UpdateTaskCommand,
)


class TestCreateTask:
    """Test task creation under a project"""

    @pytest.mark.asyncio
    async def test_defaults_to_todo(self, create_project, create_task):
        project = await create_project("user1", "Alpha")
        task = await create_task(project, "Write docs")
        assert task.title == "Write docs"
        assert task.status == TaskStatus.TODO
        assert task.project_id == project.id

    @pytest.mark.asyncio
    async def test_publishes_created_event(self, create_project, create_task, outbox_messages):
        project = await create_project("user1", "Alpha")
        task = await create_task(project, "Write docs", status=TaskStatus.IN_PROGRESS)

        message = (await outbox_messages())[-1]
        assert message.event_type == "task-created"
        assert message.message_key == str(task.id)
        payload = json.loads(message.payload)
        assert payload["project_id"] == str(project.id)
        assert payload["status"] == "InProgress"

    @pytest.mark.asyncio
    async def test_missing_project(self, dispatch):
        missing = uuid.uuid4()
        with pytest.raises(NotFoundException) as exc_info:
            await dispatch(
                CreateTaskCommand(
                    project_id=missing, user_id="user1", is_admin=False, title="Orphan"
                )
            )
        assert exc_info.value.details["entity"] == "Project"

    @pytest.mark.asyncio
    async def test_authorized_against_parent_owner(self, create_project, create_task):
        project = await create_project("user1", "Alpha")
        with pytest.raises(ForbiddenAccessException):
            await create_task(project, "Sneaky", user_id="user2")

    @pytest.mark.asyncio
    async def test_refreshes_parent_task_count_and_lists(
        self, dispatch, create_project, create_task
    ):
        project = await create_project("user1", "Alpha")
        before = await dispatch(
            GetProjectByIdQuery(project_id=project.id, user_id="user1", is_admin=False)
        )
        listed = await dispatch(
            GetTasksByProjectIdQuery(project_id=project.id, user_id="user1", is_admin=False)
        )
        assert before.task_count == 0
        assert listed.total_count == 0

        await create_task(project, "First")

        after = await dispatch(
            GetProjectByIdQuery(project_id=project.id, user_id="user1", is_admin=False)
        )
        listed = await dispatch(
            GetTasksByProjectIdQuery(project_id=project.id, user_id="user1", is_admin=False)
        )
        assert after.task_count == 1
        assert [t.title for t in listed.items] == ["First"]


class TestUpdateTask:
    """Test task updates"""

    @pytest.mark.asyncio
    async def test_update_and_event(self, dispatch, create_project, create_task, outbox_messages):
        project = await create_project("user1", "Alpha")
        task = await create_task(project, "Write docs")
        await dispatch(GetTaskByIdQuery(task_id=task.id, user_id="user1", is_admin=False))

        await dispatch(
            UpdateTaskCommand(
                task_id=task.id,
                user_id="user1",
                is_admin=False,
                title="Write better docs",
                description="With examples",
                status=TaskStatus.DONE,
            )
        )

        fetched = await dispatch(
            GetTaskByIdQuery(task_id=task.id, user_id="user1", is_admin=False)
        )
        assert fetched.title == "Write better docs"
        assert fetched.status == TaskStatus.DONE

        message = (await outbox_messages())[-1]
        assert message.event_type == "task-updated"
        payload = json.loads(message.payload)
        assert payload["description"] == "With examples"
        assert payload["status"] == "Done"

    @pytest.mark.asyncio
    async def test_noop_update_is_saved_but_publishes_nothing(
        self, dispatch, create_project, create_task, outbox_messages
    ):
        project = await create_project("user1", "Alpha")
        task = await create_task(project, "Write docs", description="As is")

        with patch.object(TaskRepository, "save_changes", new_callable=AsyncMock) as save:
            await dispatch(
                UpdateTaskCommand(
                    task_id=task.id,
                    user_id="user1",
                    is_admin=False,
                    title="Write docs",
                    description="As is",
                    status="Todo",
                )
            )

        save.assert_awaited_once()
        assert [m.event_type for m in await outbox_messages()] == [
            "project-created",
            "task-created",
        ]

    @pytest.mark.asyncio
    async def test_missing_task(self, dispatch):
        with pytest.raises(NotFoundException) as exc_info:
            await dispatch(
                UpdateTaskCommand(
                    task_id=uuid.uuid4(), user_id="user1", is_admin=False, title="Ghost"
                )
            )
        assert exc_info.value.details["entity"] == "Task"

    @pytest.mark.asyncio
    async def test_non_owner_is_forbidden(self, dispatch, create_project, create_task):
        project = await create_project("user1", "Alpha")
        task = await create_task(project, "Write docs")
        with pytest.raises(ForbiddenAccessException):
            await dispatch(
                UpdateTaskCommand(task_id=task.id, user_id="user2", is_admin=False, title="Mine")
            )


class TestDeleteTask:
    """Test task deletion"""

    @pytest.mark.asyncio
    async def test_delete(self, dispatch, create_project, create_task, outbox_messages):
        project = await create_project("user1", "Alpha")
        task = await create_task(project, "Write docs")
        await dispatch(GetTaskByIdQuery(task_id=task.id, user_id="user1", is_admin=False))

        await dispatch(DeleteTaskCommand(task_id=task.id, user_id="user1", is_admin=False))

        with pytest.raises(NotFoundException):
            await dispatch(GetTaskByIdQuery(task_id=task.id, user_id="user1", is_admin=False))
        fetched = await dispatch(
            GetProjectByIdQuery(project_id=project.id, user_id="user1", is_admin=False)
        )
        assert fetched.task_count == 0

        message = (await outbox_messages())[-1]
        assert message.event_type == "task-deleted"
        assert json.loads(message.payload)["task_id"] == str(task.id)

    @pytest.mark.asyncio
    async def test_admin_may_delete(self, dispatch, create_project, create_task):
        project = await create_project("user1", "Alpha")
        task = await create_task(project, "Write docs")
        await dispatch(DeleteTaskCommand(task_id=task.id, user_id="admin", is_admin=True))
        with pytest.raises(NotFoundException):
            await dispatch(GetTaskByIdQuery(task_id=task.id, user_id="admin", is_admin=True))
