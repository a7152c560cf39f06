import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.core.config import settings
from src.core.exceptions import AppException
from src.shared.schemas import ErrorResponse, ErrorDetail

logger = logging.getLogger(__name__)

# (fragments that must all appear in the DB message, user message, field, status)
_DB_ERROR_RULES: list[tuple[tuple[str, ...], str, str | None, int]] = [
    (
        ("does not exist", "column"),
        "Database schema is out of date. Run the latest migrations and try again.",
        None,
        500,
    ),
    (
        ("does not exist", "relation"),
        "Database schema is out of date. Run the latest migrations and try again.",
        None,
        500,
    ),
    (("no such table",), "Database schema is out of date. Run the latest migrations and try again.", None, 500),
    (("unique", "document_id"), "A record with this document id already exists", "document_id", 409),
    (("foreign key",), "The record references a missing or protected record", None, 409),
    (("billing_run_locks",), "Another billing run holds the lock", None, 409),
]


def _error_response(status_code: int, message: str, errors: list[ErrorDetail]) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message, errors=errors).model_dump(),
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Render an ``AppException`` with its field (validation) when it has one."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    errors = [ErrorDetail(field=exc.details.get("field"), message=exc.message)]
    return _error_response(exc.status_code, exc.message, errors)


def _format_validation_errors(errors: list[dict]) -> list[ErrorDetail]:
    details: list[ErrorDetail] = []
    for error in errors:
        loc = error.get("loc", ())
        # Drop top-level "body"/"query" for cleaner field paths
        if loc and loc[0] in ("body", "query"):
            loc = loc[1:]
        field = ".".join(str(part) for part in loc) if loc else None
        details.append(ErrorDetail(field=field, message=error.get("msg", "Invalid value")))
    return details


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body / query validation, same envelope as ``ValidationError``."""
    return _error_response(422, "Validation error", _format_validation_errors(exc.errors()))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    message = str(exc.detail) if exc.detail else "HTTP error"
    return _error_response(exc.status_code, message, [ErrorDetail(field=None, message=message)])


def _friendly_db_error(exc: Exception) -> tuple[str, str | None, int]:
    """
    Map a DB error to ``(message, field, status)``.

    Raw driver messages are only returned when debug is enabled.
    """
    raw = str(getattr(exc, "orig", exc))
    lower = raw.lower()
    for fragments, message, field, status_code in _DB_ERROR_RULES:
        if all(fragment in lower for fragment in fragments):
            return message, field, status_code
    if settings.debug:
        return raw, None, 500
    return "Database error", None, 500


async def sqlalchemy_db_error_handler(request: Request, exc: Exception) -> JSONResponse:
    message, field, status_code = _friendly_db_error(exc)
    logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return _error_response(status_code, message, [ErrorDetail(field=field, message=message)])
