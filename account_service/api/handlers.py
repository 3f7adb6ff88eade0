"""
Exception handlers translating errors into the structured error body

    {"error": {"code", "message", "timestamp", "status", "details"?}}
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..errors import AccountServiceError
from ..logging_config import get_logger


logger = get_logger("account_service.api")

_HTTP_ERROR_CODES = {
    401: "UNAUTHENTICATED",
    403: "UNAUTHORIZED_ACCESS",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


def error_response(status_code: int, code: str, message: str,
                   details: Optional[Dict[str, Any]] = None,
                   headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    error = {
        "code": code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "status": status_code,
    }
    if details:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error}, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """Register handlers for business, validation, HTTP and unexpected errors"""

    @app.exception_handler(AccountServiceError)
    async def account_service_error_handler(request: Request, exc: AccountServiceError):
        log_method = logger.error if exc.status_code >= 500 else logger.warning
        log_method(f"{request.method} {request.url.path} -> {exc}")

        headers = None
        if exc.status_code == 401:
            headers = {"WWW-Authenticate": "Bearer"}
        elif exc.retryable:
            headers = {"Retry-After": "5"}

        return error_response(exc.status_code, exc.error_code, exc.message,
                              exc.details, headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
                "message": err.get("msg", "invalid value"),
            }
            for err in exc.errors()
        ]
        logger.warning(f"{request.method} {request.url.path} -> validation failed: {errors}")
        return error_response(400, "VALIDATION_FAILED", "Request validation failed",
                              {"errors": errors})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        code = _HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
        return error_response(exc.status_code, code, str(exc.detail),
                              headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(
            f"Unhandled exception on {request.method} {request.url.path}",
            exc_info=exc
        )
        return error_response(500, "INTERNAL_SERVER_ERROR", "An unexpected error occurred")
