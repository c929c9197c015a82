"""Response envelope and exception handlers.

Every body leaving the API is either ``{"ok": true, "data": ...}`` or
``{"ok": false, "error": "..."}``.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import to_json

logger = logging.getLogger(__name__)


class ExternalServiceError(Exception):
    """Raised when object storage or email delivery fails."""

    status_code = 502

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def ok(data: Any = None, message: Optional[str] = None, **extra: Any) -> dict:
    body = {"ok": True, "data": to_json(data)}
    if message:
        body["message"] = message
    body.update(to_json(extra))
    return body


def error_response(status_code: int, message: str, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"ok": False, "error": message}),
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail), getattr(exc, "headers", None))


async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "form"))
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request"
    return error_response(400, message)


async def external_service_exception_handler(request: Request, exc: ExternalServiceError):
    logger.error("External service failure on %s %s: %s", request.method, request.url.path, exc.message)
    return error_response(exc.status_code, exc.message)


async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(ExternalServiceError, external_service_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
