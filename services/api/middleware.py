"""Security and rate limiting middleware."""

from __future__ import annotations

import time
from collections import defaultdict
from typing import Any, Callable

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window rate limiting per client IP.

    Only ``POST`` requests to the configured paths are counted.
    """

    def __init__(
        self,
        app: Any,
        *,
        max_requests: int = 20,
        window_seconds: int = 15 * 60,
        paths: list[str] | None = None,
    ) -> None:
        """Initialize rate limiter.

        Args:
            app: FastAPI application.
            max_requests: Maximum requests per window per IP.
            window_seconds: Length of the sliding window.
            paths: Request paths subject to the limit.
        """
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.paths = set(paths or ["/upload"])
        self.requests: dict[str, list[float]] = defaultdict(list)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.method != "POST" or request.url.path not in self.paths:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        current_time = time.time()
        self._clean_old_entries(client_ip, current_time)

        if len(self.requests[client_ip]) >= self.max_requests:
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"success": False, "message": "Too many upload attempts. Please try again later."},
                headers={"Retry-After": str(self.window_seconds)},
            )

        self.requests[client_ip].append(current_time)
        return await call_next(request)

    def _clean_old_entries(self, client_ip: str, current_time: float) -> None:
        """Remove entries that fell out of the window."""
        recent = [t for t in self.requests[client_ip] if current_time - t < self.window_seconds]
        if recent:
            self.requests[client_ip] = recent
        else:
            self.requests.pop(client_ip, None)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to responses."""

    CONTENT_SECURITY_POLICY = (
        "default-src 'self'; "
        "style-src 'self' 'unsafe-inline'; "
        "script-src 'self' 'unsafe-inline'; "
        "img-src 'self' data: https:"
    )

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Content-Security-Policy"] = self.CONTENT_SECURITY_POLICY
        return response
