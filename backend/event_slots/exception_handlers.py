import logging
from typing import Any, Callable, Coroutine

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from .domain.errors import ConflictError, DomainError, SlotFullError, TransientError
from .schemas import ErrorEnvelope

logger = logging.getLogger(__name__)

ExceptionHandler = Callable[[Request, Exception], Coroutine[Any, Any, Response]]


def error_response(status_code: int, message: str, *, full: bool = False) -> JSONResponse:
    envelope = ErrorEnvelope(message=message, full=True if full else None)
    return JSONResponse(status_code=status_code, content=envelope.model_dump(exclude_none=True))


async def domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error = exc if isinstance(exc, DomainError) else DomainError(str(exc))
    return error_response(error.status_code, error.message, full=isinstance(error, SlotFullError))


async def http_error_handler(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, StarletteHTTPException):
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")
    return error_response(exc.status_code, str(exc.detail))


async def validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    errors = exc.errors() if isinstance(exc, RequestValidationError) else []
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "invalid request")
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        f"{location}: {message}" if location else message,
    )


async def integrity_error_handler(request: Request, exc: Exception) -> JSONResponse:
    conflict = ConflictError("conflicting registration, please retry")
    return error_response(conflict.status_code, conflict.message)


async def database_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("database unavailable: %s", exc.__class__.__name__)
    transient = TransientError("service temporarily unavailable, please retry")
    return error_response(transient.status_code, transient.message)


async def general_500_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


EXCEPTION_HANDLERS: dict[type[Exception], ExceptionHandler] = {
    DomainError: domain_error_handler,
    StarletteHTTPException: http_error_handler,
    RequestValidationError: validation_error_handler,
    IntegrityError: integrity_error_handler,
    OperationalError: database_error_handler,
    DBAPIError: database_error_handler,
    Exception: general_500_exception_handler,
}


def register_exception_handlers(app: FastAPI) -> None:
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)
