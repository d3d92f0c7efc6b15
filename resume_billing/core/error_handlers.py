"""Error handlers for the application with consistent request_id tracking."""
from fastapi import Request, HTTPException
from fastapi.exceptions import RequestValidationError
from typing import Dict, Any

from sqlalchemy.exc import SQLAlchemyError
from resume_billing.log.logging import logger
from resume_billing.core.exceptions import BillingException
from resume_billing.core.responses import DecimalJSONResponse
from resume_billing.middleware.request_id import get_request_id


def _build_error_response(
    error: str,
    message: str,
    details: Any = None,
    include_request_id: bool = True
) -> Dict[str, Any]:
    """
    Build a consistent error response structure.

    All error responses follow the same format for consistency:
    - error: Error type identifier (e.g., "ValidationError", "InsufficientCredits")
    - message: Human-readable error message
    - request_id: Unique request identifier for debugging (if enabled)
    - details: Additional error details (optional)
    """
    response = {
        "error": error,
        "message": message
    }

    if include_request_id:
        request_id = get_request_id()
        if request_id:
            response["request_id"] = request_id

    if details is not None:
        response["details"] = details

    return response


async def billing_exception_handler(request: Request, exc: BillingException) -> DecimalJSONResponse:
    """
    Handle billing exceptions.

    The exception context is merged into the body at the top level, so a 402
    carries ``required``/``available`` and a 403 carries ``upgrade_url``.
    """
    log_level = logger.warning if exc.status_code < 500 else logger.error
    log_level(
        f'Billing error on {request.url}: {exc.detail}',
        event_type='billing_error',
        error_type=exc.error_type,
        status_code=exc.status_code,
        path=str(request.url),
        method=request.method,
    )

    content = _build_error_response(error=exc.error_type, message=str(exc.detail))
    for key, value in exc.context.items():
        if value is not None and key not in content:
            content[key] = value

    return DecimalJSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=exc.headers
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> DecimalJSONResponse:
    """Handle validation exceptions."""
    logger.warning(
        f'Validation error on {request.url}',
        event_type='validation_error',
        path=str(request.url),
        method=request.method,
        errors=exc.errors()
    )
    return DecimalJSONResponse(
        status_code=422,
        content=_build_error_response(
            error="ValidationError",
            message="Invalid request data",
            details=exc.errors()
        )
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> DecimalJSONResponse:
    """Handle HTTP exceptions."""
    # Use warning for client errors (4xx), error for server errors (5xx)
    log_level = logger.warning if 400 <= exc.status_code < 500 else logger.error
    log_level(
        f'HTTP error on {request.url}',
        event_type='http_error',
        status_code=exc.status_code,
        path=str(request.url),
        method=request.method,
        detail=str(exc.detail)[:200]  # Truncate for logging
    )

    # If detail is already a dict with message, keep it as is
    if isinstance(exc.detail, dict) and "message" in exc.detail:
        response = exc.detail.copy()
        request_id = get_request_id()
        if request_id:
            response["request_id"] = request_id
        return DecimalJSONResponse(
            status_code=exc.status_code,
            content=response,
            headers=getattr(exc, "headers", None)
        )

    # Map status codes to error types
    error_type_map = {
        400: "BadRequest",
        401: "Unauthorized",
        403: "Forbidden",
        404: "NotFound",
        405: "MethodNotAllowed",
        409: "Conflict",
        429: "RateLimitExceeded",
    }
    error_type = error_type_map.get(exc.status_code, "HTTPError")

    return DecimalJSONResponse(
        status_code=exc.status_code,
        content=_build_error_response(
            error=error_type,
            message=str(exc.detail)
        ),
        headers=getattr(exc, "headers", None)
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> DecimalJSONResponse:
    """Handle SQLAlchemy exceptions."""
    logger.error(
        f'SQLAlchemy error on {request.url}',
        event_type='db_sqlalchemy_error',
        error_type=type(exc).__name__,
        path=str(request.url),
        method=request.method,
        exc_info=True
    )

    return DecimalJSONResponse(
        status_code=500,
        content=_build_error_response(
            error="DatabaseError",
            message="A database error occurred. Please try again later."
        )
    )


async def generic_exception_handler(request: Request, exc: Exception) -> DecimalJSONResponse:
    """Handle generic/unhandled exceptions."""
    logger.error(
        f'Unhandled error on {request.url}',
        event_type='unhandled_error',
        error_type=type(exc).__name__,
        path=str(request.url),
        method=request.method,
        exc_info=True
    )
    return DecimalJSONResponse(
        status_code=500,
        content=_build_error_response(
            error="InternalServerError",
            message="An unexpected error occurred."
        )
    )
