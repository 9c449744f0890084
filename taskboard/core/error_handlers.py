import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from taskboard.core.exceptions import (
    ConflictException,
    FieldError,
    ForbiddenAccessException,
    NotFoundException,
    TaskboardException,
    UnauthenticatedException,
    ValidationFailedException,
)

logger = logging.getLogger(__name__)

STATUS_BY_EXCEPTION: dict[type[TaskboardException], int] = {
    NotFoundException: status.HTTP_404_NOT_FOUND,
    ForbiddenAccessException: status.HTTP_403_FORBIDDEN,
    UnauthenticatedException: status.HTTP_401_UNAUTHORIZED,
    ConflictException: status.HTTP_409_CONFLICT,
    ValidationFailedException: status.HTTP_400_BAD_REQUEST,
}


def error_body(status_code: int, message: str, errors: list[FieldError] | None = None) -> dict:
    return {
        "statusCode": status_code,
        "message": message,
        "errors": (
            [{"field": e.field, "message": e.message} for e in errors]
            if errors is not None
            else None
        ),
    }


def _status_for(exc: TaskboardException) -> int:
    for exc_type in type(exc).__mro__:
        if exc_type in STATUS_BY_EXCEPTION:
            return STATUS_BY_EXCEPTION[exc_type]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def taskboard_exception_handler(request: Request, exc: TaskboardException):
    status_code = _status_for(exc)
    errors = exc.errors if isinstance(exc, ValidationFailedException) else None
    headers = (
        {"WWW-Authenticate": "Bearer"}
        if status_code == status.HTTP_401_UNAUTHORIZED
        else None
    )
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status_code,
        content=error_body(status_code, exc.message, errors),
        headers=headers,
    )


def _field_name(loc: tuple) -> str:
    # ("body", "name") -> "name", ("query", "pageSize") -> "pageSize"
    parts = [str(part) for part in loc[1:]] or [str(part) for part in loc]
    return ".".join(parts)


async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        FieldError(_field_name(tuple(error.get("loc", ()))), error.get("msg", ""))
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(status.HTTP_400_BAD_REQUEST, "Validation failed.", errors),
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "An unexpected error occurred. Please try again later.",
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TaskboardException, taskboard_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
