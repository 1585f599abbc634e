"""
API Middleware - Request/response processing.

Provides:
- Request ID tracking
- Response latency measurement
- DealSearchError to JSON error mapping
- Sliding-window rate limiting per client
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from dealsearch.config.errors import DealSearchError, ErrorCode

logger = logging.getLogger(__name__)

_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.SEARCH_INVALID_QUERY: 400,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.SECURITY_RATE_LIMITED: 429,
    ErrorCode.STORAGE_CONNECTION_FAILED: 503,
    ErrorCode.STORAGE_READ_FAILED: 503,
    ErrorCode.STORAGE_WRITE_FAILED: 503,
}


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def error_response(
    status_code: int,
    error: dict[str, Any],
    request: Request,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Render the `{"error": ..., "request_id": ...}` envelope."""
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "request_id": _request_id(request)},
        headers=headers,
    )


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach request ID for tracing across logs and responses."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request.state.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        response = await call_next(request)
        response.headers["X-Request-ID"] = request.state.request_id
        return response


class LatencyMiddleware(BaseHTTPMiddleware):
    """Log each request with its latency and expose it as a header."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time-Ms"] = f"{duration_ms:.2f}"

        query = request.query_params.get("q")
        logger.info(
            "%s %s status=%d latency_ms=%.2f request_id=%s%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            _request_id(request),
            f" q='{query[:50]}'" if query else "",
        )
        return response


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Convert DealSearchError exceptions to structured JSON responses."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        try:
            return await call_next(request)
        except DealSearchError as e:
            status_code = status_for(e.code)
            logger.log(
                logging.WARNING if status_code < 500 else logging.ERROR,
                "%s: %s request_id=%s details=%s",
                e.code.value,
                e.message,
                _request_id(request),
                e.details,
            )
            return error_response(status_code, e.to_dict(), request)
        except Exception:
            logger.exception("Unhandled error on %s request_id=%s", request.url.path, _request_id(request))
            return error_response(
                500,
                {"code": ErrorCode.INTERNAL_ERROR.value, "message": "Internal server error", "details": {}},
                request,
            )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Per-client rate limiting over a sliding one-minute window.

    Each client keeps the timestamps of its accepted requests; a request is
    rejected while the window already holds `requests_per_minute` of them.
    """

    def __init__(
        self,
        app: ASGIApp,
        requests_per_minute: int = 60,
        exempt_paths: Iterable[str] = ("/health",),
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.exempt_paths = frozenset(exempt_paths)
        self.window_seconds = window_seconds
        self._clock = clock
        self._history: dict[str, deque[float]] = defaultdict(deque)
        self._last_sweep = clock()

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        client = request.client.host if request.client else "unknown"
        now = self._clock()
        if now - self._last_sweep >= self.window_seconds:
            self._sweep(now)
        history = self._history[client]
        while history and now - history[0] >= self.window_seconds:
            history.popleft()

        if len(history) >= self.requests_per_minute:
            retry_after = max(1, int(history[0] + self.window_seconds - now + 0.999))
            logger.warning("Rate limit exceeded for %s request_id=%s", client, _request_id(request))
            return error_response(
                429,
                {
                    "code": ErrorCode.SECURITY_RATE_LIMITED.value,
                    "message": f"Too many requests. Please retry after {retry_after} seconds.",
                    "details": {"retry_after": retry_after},
                },
                request,
                headers={"Retry-After": str(retry_after)},
            )

        history.append(now)
        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.requests_per_minute)
        response.headers["X-RateLimit-Remaining"] = str(self.requests_per_minute - len(history))
        return response

    def _sweep(self, now: float) -> None:
        """Forget clients with no request inside the window."""
        idle = [c for c, h in self._history.items() if not h or now - h[-1] >= self.window_seconds]
        for client in idle:
            del self._history[client]
        self._last_sweep = now


def status_for(code: ErrorCode) -> int:
    """HTTP status for an error code (500 when unmapped)."""
    return _STATUS_BY_CODE.get(code, 500)
