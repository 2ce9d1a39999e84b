"""API error taxonomy and the JSON error envelope.

Every error leaves the service as::

    {"error": {"code": "UNAUTHORIZED", "message": "...", "details": null}}
"""

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

VALIDATION_ERROR = "VALIDATION_ERROR"
UNAUTHORIZED = "UNAUTHORIZED"
FORBIDDEN = "FORBIDDEN"
NOT_FOUND = "NOT_FOUND"
CONFLICT = "CONFLICT"
RATE_LIMITED = "RATE_LIMITED"
INTERNAL_ERROR = "INTERNAL_ERROR"

INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
ACCOUNT_SUSPENDED = "ACCOUNT_SUSPENDED"
USER_EXISTS = "USER_EXISTS"
SAME_PASSWORD = "SAME_PASSWORD"
INVALID_TOKEN = "INVALID_TOKEN"

_STATUS_TO_CODE = {
    status.HTTP_400_BAD_REQUEST: VALIDATION_ERROR,
    status.HTTP_401_UNAUTHORIZED: UNAUTHORIZED,
    status.HTTP_403_FORBIDDEN: FORBIDDEN,
    status.HTTP_404_NOT_FOUND: NOT_FOUND,
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
    status.HTTP_409_CONFLICT: CONFLICT,
    status.HTTP_429_TOO_MANY_REQUESTS: RATE_LIMITED,
}


class ApiError(HTTPException):
    """HTTPException with a stable machine-readable error code."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Any = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.code = code
        self.message = message
        self.details = details


def unauthorized(message: str = "Unauthorized") -> ApiError:
    return ApiError(
        status.HTTP_401_UNAUTHORIZED,
        UNAUTHORIZED,
        message,
        headers={"WWW-Authenticate": "Bearer"},
    )


def forbidden(message: str = "Forbidden") -> ApiError:
    return ApiError(status.HTTP_403_FORBIDDEN, FORBIDDEN, message)


def not_found(message: str = "Not found") -> ApiError:
    return ApiError(status.HTTP_404_NOT_FOUND, NOT_FOUND, message)


def conflict(message: str, code: str = CONFLICT) -> ApiError:
    return ApiError(status.HTTP_409_CONFLICT, code, message)


def validation_error(details: list[dict[str, str]], message: str = "Validation failed") -> ApiError:
    return ApiError(status.HTTP_400_BAD_REQUEST, VALIDATION_ERROR, message, details=details)


def rate_limited(retry_after: int) -> ApiError:
    return ApiError(
        status.HTTP_429_TOO_MANY_REQUESTS,
        RATE_LIMITED,
        "Too many requests",
        details={"retryAfter": retry_after},
        headers={"Retry-After": str(retry_after)},
    )


def error_body(code: str, message: str, details: Any = None) -> dict:
    return {"error": {"code": code, "message": message, "details": details}}


def _field_name(loc: tuple | list) -> str:
    # ("body", "email") -> "email"
    parts = [str(part) for part in loc if part != "body"]
    return ".".join(parts) or "body"


def _validation_details(exc: RequestValidationError) -> list[dict[str, str]]:
    details = []
    for err in exc.errors():
        message = err.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        details.append({"field": _field_name(err.get("loc", ())), "message": message})
    return details


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        if exc.status_code >= 500:
            logger.error("%s %s -> %s %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.code, exc.message, exc.details),
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body(VALIDATION_ERROR, "Validation failed", _validation_details(exc)),
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        code = _STATUS_TO_CODE.get(exc.status_code, INTERNAL_ERROR)
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(code, message),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body(INTERNAL_ERROR, "Internal server error"),
        )
