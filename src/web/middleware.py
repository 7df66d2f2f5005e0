"""
Middleware for FastAPI application

Provides:
- Request ID injection (header and logging context)
- Performance monitoring
- CORS setup
"""

import logging
import time
from datetime import datetime

from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from services.logging_config import request_id_var

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


# =============================================================================
# Request ID Middleware
# =============================================================================

class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Inject request ID into all requests for tracing.

    An incoming X-Request-ID is reused so traces can span services.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or f"REQ-{datetime.now().strftime('%Y%m%d%H%M%S%f')}"

        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


# =============================================================================
# Performance Monitoring Middleware
# =============================================================================

class PerformanceMiddleware(BaseHTTPMiddleware):
    """Log every request with its duration; warn on slow ones."""

    def __init__(self, app, slow_request_threshold: float = 2.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        response_time = time.time() - start_time

        response.headers["X-Response-Time"] = f"{response_time:.3f}s"

        if response_time > self.slow_request_threshold:
            logger.warning(f"Slow request: {request.method} {request.url.path} - {response_time:.3f}s")

        logger.info(
            f"{request.method} {request.url.path} - {response.status_code} - {response_time:.3f}s",
            extra={
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
            },
        )
        return response


def setup_cors(app, origins: list = None):
    """Setup CORS middleware."""
    if origins is None:
        origins = ["http://localhost:3000"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def setup_middleware(app, cors_origins: list = None):
    """
    Setup all middleware for the application.

    Last added runs first, so request IDs are set before timing starts.
    """
    app.add_middleware(PerformanceMiddleware, slow_request_threshold=2.0)
    app.add_middleware(RequestIDMiddleware)
    setup_cors(app, cors_origins)
    logger.info("Middleware setup complete")
