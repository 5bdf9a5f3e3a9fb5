"""
API error types and their JSON rendering.
"""
from typing import Any, Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from event_discovery.services.ingestion.errors import IngestionError


class ApiError(Exception):
    """Base for errors raised by the HTTP layer itself."""
    status_code: int = 400
    error_code: str = "BAD_REQUEST"

    def __init__(self, detail: str, context: Optional[dict[str, Any]] = None):
        self.detail = detail
        self.context = context or {}
        super().__init__(detail)


class NotFoundError(ApiError):
    status_code = 404
    error_code = "NOT_FOUND"


class AuthenticationError(ApiError):
    status_code = 401
    error_code = "UNAUTHORIZED"


class InvalidScheduleError(ApiError):
    status_code = 422
    error_code = "INVALID_SCHEDULE"


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error_code, "detail": exc.detail, "context": exc.context},
    )


async def ingestion_error_handler(request: Request, exc: IngestionError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error_code, "detail": exc.detail, "context": exc.context},
    )


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": "HTTP_ERROR", "detail": exc.detail},
    )
