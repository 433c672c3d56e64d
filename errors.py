"""
Error taxonomy

ConfigurationError stops the process at startup. Everything else derives
from APIError and is rendered into the response envelope
{"success": false, "error": ..., "details": ...} by the handlers installed
with install_error_handlers().
"""

import logging
from typing import Any, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError as FastAPIValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Invalid startup configuration. The server must not start."""


class APIError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[List[Any]] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_payload(self) -> dict:
        payload = {"success": False, "error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class RequestValidationError(APIError):
    status_code = 400


class MalformedIdentifier(APIError):
    status_code = 400

    def __init__(self, identifier: str):
        super().__init__(f'Invalid ID format: "{identifier}"')
        self.identifier = identifier


class AttachmentValidationError(APIError):
    status_code = 400

    def __init__(self, details: List[str]):
        super().__init__("File validation failed", details=details)


class NotFound(APIError):
    status_code = 404

    def __init__(self, resource_name: str, identifier: str):
        super().__init__(f'{resource_name} with id "{identifier}" not found')


class UniquenessViolation(APIError):
    status_code = 409

    def __init__(self, field: str):
        super().__init__(f'Duplicate value for field "{field}"')
        self.field = field


class StorageError(APIError):
    """Unclassified document store failure."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message, status_code=getattr(cause, "status_code", None))
        self.cause = cause


class BlobStoreError(APIError):
    """Unclassified blob store failure."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message, status_code=getattr(cause, "status_code", None))
        self.cause = cause


def error_response(status_code: int, message: str, details: Optional[List[Any]] = None, **extra) -> JSONResponse:
    payload = {"success": False, "error": message}
    if details:
        payload["details"] = details
    payload.update(extra)
    return JSONResponse(status_code=status_code, content=payload)


# -----------------
# Exception handlers
# -----------------

async def api_error_handler(request: Request, exc: APIError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404 and exc.detail == "Not Found":
        return error_response(
            404,
            f"Route not found: {request.method} {request.url.path}",
            hint="Visit / to see all available endpoints, or the docs route for API documentation.",
        )
    return error_response(exc.status_code, str(exc.detail))


async def request_validation_handler(request: Request, exc: FastAPIValidationError):
    for err in exc.errors():
        if err.get("type") == "json_invalid":
            return error_response(400, "Invalid JSON in request body")
    details = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    return error_response(400, "Validation failed", details)


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    status_code = getattr(exc, "status_code", None)
    if not isinstance(status_code, int) or status_code < 400:
        status_code = 500
    return error_response(status_code, "Internal server error")


def install_error_handlers(app: FastAPI):
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(FastAPIValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
