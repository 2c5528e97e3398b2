"""
RFC 7807 problem-details error responses.

Every error leaving the API has the shape
{type, title, status, detail, instance} with `errors` for validation
failures and `request_id` for server errors.
"""

import logging
from http import HTTPStatus

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

PROBLEM_TYPES = {
    400: "https://tools.ietf.org/html/rfc7231#section-6.5.1",
    401: "https://tools.ietf.org/html/rfc7235#section-3.1",
    403: "https://tools.ietf.org/html/rfc7231#section-6.5.3",
    404: "https://tools.ietf.org/html/rfc7231#section-6.5.4",
    409: "https://tools.ietf.org/html/rfc7231#section-6.5.8",
    429: "https://tools.ietf.org/html/rfc6585#section-4",
    500: "https://tools.ietf.org/html/rfc7231#section-6.6.1",
}

PROBLEM_MEDIA_TYPE = "application/problem+json"


def problem_response(
    request: Request,
    status_code: int,
    detail: str,
    errors: list | None = None,
    headers: dict | None = None,
    **extra,
) -> JSONResponse:
    """Build a problem-details JSON response."""
    try:
        title = HTTPStatus(status_code).phrase
    except ValueError:
        title = "Error"

    content = {
        "type": PROBLEM_TYPES.get(status_code, "about:blank"),
        "title": title,
        "status": status_code,
        "detail": detail,
        "instance": request.url.path,
    }
    if errors:
        content["errors"] = errors
    content.update(extra)

    return JSONResponse(
        status_code=status_code,
        content=content,
        headers=headers,
        media_type=PROBLEM_MEDIA_TYPE,
    )


def format_validation_errors(exc: RequestValidationError) -> list[dict]:
    """Flatten pydantic errors to [{field, message}]."""
    formatted = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ())]
        # Drop the leading "body"/"query"/"path" location segment
        field = ".".join(loc[1:]) or (loc[0] if loc else "")
        formatted.append({
            "field": field,
            "message": error.get("msg", "Invalid value"),
        })
    return formatted


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return problem_response(request, exc.status_code, detail, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return problem_response(
        request,
        status.HTTP_400_BAD_REQUEST,
        "Request validation failed",
        errors=format_validation_errors(exc),
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    """Global exception handler to prevent information leakage."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)

    return problem_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An internal error occurred",
        request_id=request_id,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
