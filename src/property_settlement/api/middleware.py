"""HTTP middleware: request correlation and domain error translation.

Every ``SettlementServiceError`` becomes a JSON body of the form
``{"error": code, "reason": reason, "message": ..., "details": ...}`` with
the status taken from the reason. Anything else is logged with its
traceback and answered with an opaque 500 so internals never leak.
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from property_settlement.config import get_settings
from property_settlement.domain.enums import ReasonCode
from property_settlement.domain.exceptions import (
    ComplianceError,
    LedgerInconsistencyError,
    SettlementServiceError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

STATUS_BY_REASON: dict[ReasonCode, int] = {
    ReasonCode.VALIDATION: 422,
    ReasonCode.COMPLIANCE: 403,
    ReasonCode.NOT_FOUND: 404,
    ReasonCode.CONFLICT: 409,
    ReasonCode.UPSTREAM: 502,
    ReasonCode.INCONSISTENCY: 500,
}

_INTERNAL_ERROR = {
    "error": "INTERNAL_ERROR",
    "reason": "internal",
    "message": "An unexpected error occurred",
    "details": {},
}


def status_for(exc: SettlementServiceError) -> int:
    return STATUS_BY_REASON.get(exc.reason, 400)


def error_response(exc: SettlementServiceError) -> JSONResponse:
    """Log a domain error at a level matching its status and render it."""
    status_code = status_for(exc)
    if isinstance(exc, ComplianceError):
        logger.info(
            "compliance.rejected",
            stage=exc.stage,
            missing=[m.type.value for m in exc.missing],
        )
    elif not isinstance(exc, LedgerInconsistencyError):  # logged as critical at the source
        log = logger.error if status_code >= 500 else logger.warning
        log("domain.error", code=exc.code, reason=exc.reason.value, error=exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id to the log context and log each request's outcome."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "http.request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Translate exceptions raised by route handlers into JSON responses."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            return await call_next(request)
        except SettlementServiceError as exc:
            return error_response(exc)
        except Exception:
            logger.exception("http.unhandled_error", path=request.url.path)
            return JSONResponse(status_code=500, content=_INTERNAL_ERROR)


def setup_middleware(app: FastAPI) -> None:
    """Register middleware; the last one added is the outermost."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_settings().cors_allow_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestContextMiddleware)
