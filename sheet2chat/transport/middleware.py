# sheet2chat/transport/middleware.py
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from sheet2chat.infra.logging_config import LogContext, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's X-Request-ID or mint a uuid4, and echo it back"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request.state.request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Start / completion lines per request (can be switched off via settings)"""

    def __init__(self, app: ASGIApp, enabled: bool = True):
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled:
            return await call_next(request)

        log = LogContext(logger, request_id=_request_id(request))
        route = f"{request.method} {request.url.path}"
        started = time.perf_counter()
        log.info(f"Request started: {route}", extra={"client_ip": request.client.host if request.client else None})

        try:
            response = await call_next(request)
        except Exception as exc:
            elapsed = (time.perf_counter() - started) * 1000
            log.error(f"Request failed: {route} error={type(exc).__name__} duration={elapsed:.2f}ms", exc_info=True)
            raise

        elapsed = (time.perf_counter() - started) * 1000
        log.info(
            f"Request completed: {route} status={response.status_code} duration={elapsed:.2f}ms",
            extra={"status_code": response.status_code, "duration_ms": round(elapsed, 2)},
        )
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turns anything a route lets escape into a generic 500 body; details stay in the log"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = _request_id(request)
            LogContext(logger, request_id=request_id).error(
                f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}: {exc}",
                exc_info=True,
            )
            body = {"success": False, "error": "Internal server error", "request_id": request_id}
            return JSONResponse(status_code=500, content=body)
