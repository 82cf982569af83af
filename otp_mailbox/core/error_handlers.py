"""
Error Handlers - Unified JSON errors for the HTTP service

Every error leaves the service as
{"error": {"code", "message", "status", "details"?}}. Retrieval outcomes
that are not a code (timeout, fatal mailbox error) are raised as
RetrievalHTTPException so their specific code survives the handler.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

ERROR_CODE_MAP = {
    400: "INVALID_REQUEST",
    404: "NOT_FOUND",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_SERVER_ERROR",
    502: "MAILBOX_ERROR",
    503: "SERVICE_UNAVAILABLE",
    504: "CODE_TIMEOUT",
}


class ErrorResponse:
    """Unified error response body"""

    def __init__(
        self,
        error_code: str,
        message: str,
        status_code: int,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.error_code = error_code
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "code": self.error_code,
            "message": self.message,
            "status": self.status_code,
        }
        if self.details:
            body["details"] = self.details
        return {"error": body}

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


class RetrievalHTTPException(HTTPException):
    """
    HTTPException with an explicit error code

    Args:
        status_code: HTTP status (502 or 504 for retrieval failures)
        detail: Diagnostic shown to the caller
        error_code: e.g. CODE_TIMEOUT, MAILBOX_AUTH_FAILED
        details: Extra fields such as the attempt count
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail)
        self.error_code = error_code
        self.details = details or {}


def _log_context(request: Request) -> Dict[str, str]:
    return {"path": request.url.path, "method": request.method}


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle HTTPException, including RetrievalHTTPException

    Args:
        request: FastAPI request
        exc: Exception instance

    Returns:
        JSONResponse: Unified error response
    """
    status_code = getattr(exc, "status_code", status.HTTP_500_INTERNAL_SERVER_ERROR)
    detail = getattr(exc, "detail", str(exc))
    error_code = getattr(exc, "error_code", None) or ERROR_CODE_MAP.get(status_code, "UNKNOWN_ERROR")

    level = logging.ERROR if status_code >= 500 else logging.WARNING
    logger.log(level, f"HTTP {status_code} {error_code}: {detail}", extra=_log_context(request))

    return ErrorResponse(
        error_code=error_code,
        message=detail,
        status_code=status_code,
        details=getattr(exc, "details", None),
    ).to_response()


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions without leaking their message"""
    logger.error(
        f"Unhandled {type(exc).__name__}: {exc}", exc_info=exc, extra=_log_context(request)
    )

    return ErrorResponse(
        error_code="INTERNAL_SERVER_ERROR",
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        details={"exception_type": type(exc).__name__},
    ).to_response()


async def validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """List the invalid request fields"""
    errors: List[Dict[str, str]] = []
    if hasattr(exc, "errors"):
        for error in exc.errors():
            errors.append(
                {
                    "field": ".".join(str(loc) for loc in error["loc"]),
                    "message": error["msg"],
                    "type": error["type"],
                }
            )

    logger.warning(f"Validation error: {errors}", extra=_log_context(request))

    return ErrorResponse(
        error_code="VALIDATION_ERROR",
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors},
    ).to_response()
