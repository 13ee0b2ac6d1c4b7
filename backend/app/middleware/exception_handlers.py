"""Global exception handlers.

Errors raised outside the webhook processor (unknown routes, wrong methods,
unexpected crashes) are answered with the same ``{"success": false,
"message": ...}`` envelope that webhook outcomes use, plus an ``error``
block carrying a stable code and the request id.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.middleware.error_codes import ErrorCode, get_error_code
from app.utils.datetime import utc_now

logger = logging.getLogger("app.exception")


def build_error_response(
    request: Request,
    status_code: int,
    code: ErrorCode,
    message: str,
    details: list[dict[str, Any]] | None = None,
) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)

    body: dict[str, Any] = {
        "success": False,
        "message": message,
        "error": {"code": code.value, "request_id": request_id},
        "timestamp": utc_now().isoformat() + "Z",
    }
    if details:
        body["error"]["details"] = details

    return JSONResponse(status_code=status_code, content=body)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Routing errors (404/405) and explicit HTTPExceptions."""
    if exc.status_code >= 500:
        logger.error(
            f"HTTPException status={exc.status_code} detail={exc.detail} "
            f"request_id={getattr(request.state, 'request_id', None)}"
        )

    return build_error_response(
        request=request,
        status_code=exc.status_code,
        code=get_error_code(exc.status_code),
        message=str(exc.detail),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = [
        {
            "field": " -> ".join(str(x) for x in error.get("loc", [])),
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]
    return build_error_response(
        request=request,
        status_code=422,
        code=ErrorCode.VALIDATION_ERROR,
        message="Invalid request",
        details=details,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        f"Unhandled exception request_id={getattr(request.state, 'request_id', None)} "
        f"path={request.url.path}"
    )
    return build_error_response(
        request=request,
        status_code=500,
        code=ErrorCode.INTERNAL_ERROR,
        message="Failed to process request",
    )
