"""
Requests dispatched through the mediator.

A request is a plain immutable record. Requests that change state derive
from ``Command`` and so carry the ``Mutating`` marker, which is what the
transaction behavior looks for.
"""

import uuid
from dataclasses import dataclass, field

from taskboard.models import QueryParameters, TaskStatus


class Request:
    """Anything the mediator can dispatch."""


class Mutating:
    """Marker for requests that change state and need a transaction."""


class Command(Request, Mutating):
    pass


class Query(Request):
    pass


# Projects


@dataclass(frozen=True)
class CreateProjectCommand(Command):
    owner_id: str
    name: str
    description: str | None = None


@dataclass(frozen=True)
class UpdateProjectCommand(Command):
    project_id: uuid.UUID
    user_id: str
    is_admin: bool
    name: str
    description: str | None = None


@dataclass(frozen=True)
class DeleteProjectCommand(Command):
    project_id: uuid.UUID
    user_id: str
    is_admin: bool


@dataclass(frozen=True)
class GetProjectByIdQuery(Query):
    project_id: uuid.UUID
    user_id: str
    is_admin: bool


@dataclass(frozen=True)
class GetAllProjectsQuery(Query):
    user_id: str
    is_admin: bool
    parameters: QueryParameters = field(default_factory=QueryParameters)


# Tasks


@dataclass(frozen=True)
class CreateTaskCommand(Command):
    project_id: uuid.UUID
    user_id: str
    is_admin: bool
    title: str
    description: str | None = None
    status: TaskStatus = TaskStatus.TODO


@dataclass(frozen=True)
class UpdateTaskCommand(Command):
    task_id: uuid.UUID
    user_id: str
    is_admin: bool
    title: str
    description: str | None = None
    status: TaskStatus = TaskStatus.TODO


@dataclass(frozen=True)
class DeleteTaskCommand(Command):
    task_id: uuid.UUID
    user_id: str
    is_admin: bool


@dataclass(frozen=True)
class GetTaskByIdQuery(Query):
    task_id: uuid.UUID
    user_id: str
    is_admin: bool


@dataclass(frozen=True)
class GetTasksByProjectIdQuery(Query):
    project_id: uuid.UUID
    user_id: str
    is_admin: bool
    parameters: QueryParameters = field(default_factory=QueryParameters)
