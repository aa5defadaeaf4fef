"""Domain error taxonomy and the FastAPI handlers that render it."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from http import HTTPStatus
from typing import Any, Mapping

from fastapi import FastAPI, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request

from .core.config import Settings, get_settings
from .core.context import REQUEST_ID_HEADER, bind_request_id, reset_request_id
from .schemas.system import ErrorResponse

logger = logging.getLogger(__name__)


class ApplicationError(Exception):
    """Base class for errors surfaced to callers with a stable code."""

    default_message = "Application error."
    default_code = "application_error"
    default_status_code = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: Any | None = None,
    ) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        self.code = code or self.default_code
        self.status_code = status_code or self.default_status_code
        self.details = details


class UnauthorizedError(ApplicationError):
    """The actor is not permitted to perform the requested action."""

    default_message = "You are not authorized to perform this action."
    default_code = "unauthorized"
    default_status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(ApplicationError):
    default_message = "Resource not found."
    default_code = "not_found"
    default_status_code = status.HTTP_404_NOT_FOUND


class AssigneeNotFoundError(NotFoundError):
    default_message = "Assignee not found."
    default_code = "assignee_not_found"


class InvalidInputError(ApplicationError):
    """Caller-supplied data was rejected before anything was written."""

    default_message = "Invalid input."
    default_code = "invalid_input"
    default_status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(
        self,
        message: str | None = None,
        *,
        errors: Mapping[str, list[str]] | None = None,
        details: Any | None = None,
    ) -> None:
        if errors:
            details = {"errors": dict(errors)}
        super().__init__(message, details=details)
        self.errors: dict[str, list[str]] = dict(errors or {})


class ValidationFailedError(InvalidInputError):
    """A field-level constraint was violated while updating a record."""

    default_message = "Validation failed."
    default_code = "validation_failed"


class AlreadyCompletedError(ApplicationError):
    default_message = "Task is already completed."
    default_code = "already_completed"
    default_status_code = status.HTTP_409_CONFLICT


class AlreadyAssignedError(ApplicationError):
    default_message = "Task is already assigned to this user."
    default_code = "already_assigned"
    default_status_code = status.HTTP_409_CONFLICT


class DatabaseIntegrityError(ApplicationError):
    default_message = "Database integrity violation."
    default_code = "db_integrity_error"
    default_status_code = status.HTTP_409_CONFLICT


class ServiceUnavailableError(ApplicationError):
    """A downstream transport is unreachable; the caller may retry later."""

    default_message = "Service temporarily unavailable."
    default_code = "service_unavailable"
    default_status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class InternalError(ApplicationError):
    default_message = "Internal server error."
    default_code = "internal_error"
    default_status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


_HTTP_STATUS_CODES: dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: "bad_request",
    status.HTTP_401_UNAUTHORIZED: "unauthenticated",
    status.HTTP_403_FORBIDDEN: "unauthorized",
    status.HTTP_404_NOT_FOUND: "not_found",
    status.HTTP_405_METHOD_NOT_ALLOWED: "method_not_allowed",
    status.HTTP_409_CONFLICT: "conflict",
    status.HTTP_429_TOO_MANY_REQUESTS: "rate_limited",
}


@contextmanager
def _request_logging_context(request: Request) -> Iterator[None]:
    """Re-bind the request id; handlers run outside the correlation middleware."""

    request_id = getattr(request.state, "request_id", None)
    token = bind_request_id(request_id) if request_id else None
    try:
        yield
    finally:
        if token is not None:
            reset_request_id(token)


def _request_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    return settings if isinstance(settings, Settings) else get_settings()


def _with_request_id(request: Request, details: Any | None) -> Any | None:
    request_id = getattr(request.state, "request_id", None)
    if not request_id:
        return details
    if details is None:
        return {"request_id": request_id}
    if isinstance(details, dict):
        return {"request_id": request_id, **details} if "request_id" not in details else details
    return {"request_id": request_id, "detail": details}


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any | None = None,
    headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    """Render the ``{code, message, details}`` envelope shared by every error."""

    envelope = ErrorResponse(code=code, message=message, details=_with_request_id(request, details))
    response = JSONResponse(status_code=status_code, content=jsonable_encoder(envelope), headers=headers)
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
    return response


def _log_for(status_code: int) -> Callable[..., None]:
    return logger.error if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR else logger.warning


def _http_error_body(exc: StarletteHTTPException) -> tuple[str, Any | None]:
    if isinstance(exc.detail, str):
        return exc.detail, None
    try:
        phrase = HTTPStatus(exc.status_code).phrase
    except ValueError:
        phrase = "Error"
    if isinstance(exc.detail, list):
        return phrase, {"errors": exc.detail}
    return phrase, exc.detail


async def _handle_application_error(request: Request, exc: ApplicationError) -> JSONResponse:
    with _request_logging_context(request):
        _log_for(exc.status_code)(
            "Request failed: %s",
            exc.code,
            extra={"code": exc.code, "status_code": exc.status_code},
        )
        return error_response(
            request,
            status_code=exc.status_code,
            code=exc.code,
            message=exc.message,
            details=exc.details,
        )


async def _handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = jsonable_encoder(exc.errors())
    with _request_logging_context(request):
        logger.warning("Request validation failed", extra={"errors": errors})
        return error_response(
            request,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            code="validation_error",
            message="Request validation failed.",
            details={"errors": errors},
        )


async def _handle_integrity_error(request: Request, exc: IntegrityError) -> JSONResponse:
    with _request_logging_context(request):
        logger.error("Database integrity error", exc_info=exc)
        return error_response(
            request,
            status_code=DatabaseIntegrityError.default_status_code,
            code=DatabaseIntegrityError.default_code,
            message=DatabaseIntegrityError.default_message,
        )


async def _handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _HTTP_STATUS_CODES.get(exc.status_code, "http_error")
    message, details = _http_error_body(exc)
    with _request_logging_context(request):
        _log_for(exc.status_code)(
            "HTTP %s on %s",
            exc.status_code,
            request.url.path,
            extra={"code": code, "status_code": exc.status_code},
        )
        return error_response(
            request,
            status_code=exc.status_code,
            code=code,
            message=message,
            details=details,
            headers=exc.headers,
        )


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    with _request_logging_context(request):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        details = None
        if _request_settings(request).debug:
            details = {"exception": type(exc).__name__, "detail": str(exc)}
        return error_response(
            request,
            status_code=InternalError.default_status_code,
            code=InternalError.default_code,
            message=InternalError.default_message,
            details=details,
        )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the error envelope handlers on ``app``."""

    app.add_exception_handler(ApplicationError, _handle_application_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation_error)
    app.add_exception_handler(IntegrityError, _handle_integrity_error)
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)
    app.add_exception_handler(Exception, _handle_unexpected_error)


__all__ = [
    "AlreadyAssignedError",
    "AlreadyCompletedError",
    "ApplicationError",
    "AssigneeNotFoundError",
    "DatabaseIntegrityError",
    "InternalError",
    "InvalidInputError",
    "NotFoundError",
    "ServiceUnavailableError",
    "UnauthorizedError",
    "ValidationFailedError",
    "error_response",
    "register_exception_handlers",
]
