"""
API Middleware Module
Request logging and CORS configuration
"""
import os
import time
from typing import List

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from logging_config import http_request_summary


def allowed_origins() -> List[str]:
    """
    Allowed CORS origins.
    Reads a comma-separated list from the ALLOWED_ORIGINS environment variable.
    """
    raw = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:8081")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


class LoggingMiddleware(BaseHTTPMiddleware):
    """Request/response logging middleware"""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        response = await call_next(request)

        process_time = time.time() - start_time
        http_request_summary(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(process_time * 1000, 2),
        )

        response.headers["X-Process-Time"] = str(process_time)
        return response
