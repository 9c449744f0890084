"""
Input validators.

A validator takes a request and yields a ``FieldError`` for every rule it
breaks. Several validators may be registered for one request type; the
validation behavior runs them all and reports every failure at once.
"""

from collections import defaultdict
from typing import Any, Callable, Iterable, Iterator

from taskboard.core.exceptions import FieldError
from taskboard.models import TaskStatus
from taskboard.requests import (
    CreateProjectCommand,
    CreateTaskCommand,
    GetAllProjectsQuery,
    GetTasksByProjectIdQuery,
    UpdateProjectCommand,
    UpdateTaskCommand,
)

NAME_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500
SEARCH_MAX_LENGTH = 200
MAX_PAGE_SIZE = 100

Validator = Callable[[Any], Iterable[FieldError]]


class ValidatorRegistry:
    def __init__(self):
        self._validators: dict[type, list[Validator]] = defaultdict(list)

    def register(self, *request_types: type) -> Callable[[Validator], Validator]:
        def decorator(fn: Validator) -> Validator:
            for request_type in request_types:
                self._validators[request_type].append(fn)
            return fn

        return decorator

    def validators_for(self, request_type: type) -> list[Validator]:
        return list(self._validators.get(request_type, ()))


registry = ValidatorRegistry()


def _required_text(value: str | None, field: str, label: str) -> Iterator[FieldError]:
    if value is None or not value.strip():
        yield FieldError(field, f"{label} is required.")
    elif len(value) > NAME_MAX_LENGTH:
        yield FieldError(field, f"{label} cannot exceed {NAME_MAX_LENGTH} characters.")


def _optional_description(value: str | None, label: str) -> Iterator[FieldError]:
    if value is not None and len(value) > DESCRIPTION_MAX_LENGTH:
        yield FieldError(
            "description",
            f"{label} description cannot exceed {DESCRIPTION_MAX_LENGTH} characters.",
        )


def _is_task_status(value) -> bool:
    try:
        TaskStatus(value)
    except ValueError:
        return False
    return True


@registry.register(CreateProjectCommand, UpdateProjectCommand)
def validate_project_fields(request) -> Iterator[FieldError]:
    yield from _required_text(request.name, "name", "Project name")
    yield from _optional_description(request.description, "Project")


@registry.register(CreateProjectCommand)
def validate_project_owner(request: CreateProjectCommand) -> Iterator[FieldError]:
    if not request.owner_id or not request.owner_id.strip():
        yield FieldError("owner_id", "Owner is required.")


@registry.register(CreateTaskCommand, UpdateTaskCommand)
def validate_task_fields(request) -> Iterator[FieldError]:
    yield from _required_text(request.title, "title", "Task title")
    yield from _optional_description(request.description, "Task")
    if not _is_task_status(request.status):
        yield FieldError("status", "Invalid task status.")


@registry.register(GetAllProjectsQuery, GetTasksByProjectIdQuery)
def validate_query_parameters(request) -> Iterator[FieldError]:
    parameters = request.parameters
    if parameters.page_number < 1:
        yield FieldError("pageNumber", "Page number must be at least 1.")
    if not 1 <= parameters.page_size <= MAX_PAGE_SIZE:
        yield FieldError("pageSize", f"Page size must be between 1 and {MAX_PAGE_SIZE}.")
    if parameters.search_query and len(parameters.search_query) > SEARCH_MAX_LENGTH:
        yield FieldError(
            "searchQuery", f"Search query cannot exceed {SEARCH_MAX_LENGTH} characters."
        )
