import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from app.exceptions import BaseAPIException, DuplicateAffiliateCodeException
from app.schemas.common import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)


# Unique constraints whose violation maps to a domain error
UNIQUE_VIOLATIONS: dict[str, Callable[[], BaseAPIException]] = {
    "uq_affiliates_affiliate_code": DuplicateAffiliateCodeException,
}

# SQLite reports the violated columns instead of the constraint name
SQLITE_UNIQUE_PREFIX = "UNIQUE constraint failed: "
SQLITE_UNIQUE_COLUMNS = {
    "affiliates.affiliate_code": "uq_affiliates_affiliate_code",
}


def violated_constraint(exc: IntegrityError) -> Optional[str]:
    """Name of the constraint behind an IntegrityError, when the driver tells us.

    asyncpg attaches it to the adapted error's cause, psycopg to ``diag``.
    """
    orig = exc.orig
    for source in (orig, getattr(orig, "__cause__", None), getattr(orig, "diag", None)):
        name = getattr(source, "constraint_name", None)
        if name:
            return name

    message = str(orig)
    if SQLITE_UNIQUE_PREFIX in message:
        columns = message.split(SQLITE_UNIQUE_PREFIX, 1)[1].strip()
        return SQLITE_UNIQUE_COLUMNS.get(columns)
    return None


async def api_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Global handler for custom API exceptions.

    Returns structured error response with status code and error details.
    """
    assert isinstance(exc, BaseAPIException)
    logger.warning(
        f"API Exception: {exc.error_code} - {exc.message}",
        extra={
            "error_code": exc.error_code,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
        },
    )

    error_response = ErrorResponse(
        error=ErrorDetail(
            code=exc.error_code,
            message=exc.message,
            details=exc.details if exc.details else None,
        ),
        meta={
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "path": request.url.path,
        },
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=error_response.model_dump(exclude_none=True),
    )


async def integrity_error_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Handle database integrity constraint violations.

    Known unique constraints are reported as their domain error; anything
    else becomes a generic 409.
    """
    assert isinstance(exc, IntegrityError)
    constraint = violated_constraint(exc)

    domain_error = UNIQUE_VIOLATIONS.get(constraint) if constraint else None
    if domain_error is not None:
        return await api_exception_handler(request, domain_error())

    logger.warning(
        "Database integrity error constraint=%s",
        constraint,
        extra={
            "constraint": constraint,
            "error": str(exc.orig),
            "path": request.url.path,
            "method": request.method,
        },
    )

    error_response = ErrorResponse(
        error=ErrorDetail(
            code="INTEGRITY_ERROR",
            message="Database constraint violation",
        ),
        meta={
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "path": request.url.path,
        },
    )

    return JSONResponse(
        status_code=409, content=error_response.model_dump(exclude_none=True)
    )


async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Catch-all handler for unexpected errors.

    Returns generic 500 error without exposing internal details.
    """
    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        exc_info=exc,
        extra={
            "path": request.url.path,
            "method": request.method,
        },
    )

    error_response = ErrorResponse(
        error=ErrorDetail(
            code="INTERNAL_ERROR",
            message="An unexpected error occurred",
        ),
        meta={
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "path": request.url.path,
        },
    )

    return JSONResponse(
        status_code=500, content=error_response.model_dump(exclude_none=True)
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register all global exception handlers to the FastAPI application.

    Handlers are registered in order of specificity:
    1. Custom API exceptions (BaseAPIException)
    2. Database integrity errors (IntegrityError)
    3. Unhandled exceptions (Exception)
    """
    app.add_exception_handler(
        BaseAPIException,
        api_exception_handler,
    )
    app.add_exception_handler(
        IntegrityError,
        integrity_error_handler,
    )
    app.add_exception_handler(Exception, unhandled_exception_handler)
