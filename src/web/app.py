"""
FastAPI application for the referral platform.

Routes:
- POST /api/tax-intake/lead        : public intake form with attribution
- GET  /go/{code}                  : short link redirect (sets referral cookie)
- /api/tracking-code/*             : tracking code management
- /api/earnings/*                  : commissions and payouts
- /api/support/*                   : support tickets
- /api/restrictions/*              : page access checks
- /api/admin/*                     : admin operations
- /api/landing-pages/{slug}        : generated city landing pages
- POST /api/webhooks/square        : payment webhooks
- GET  /health                     : health check
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from config.settings import get_settings, validate_startup_security
from database.connection import close_sync_engine
from services.logging_config import configure_logging
from web.helpers.error_responses import handle_validation_error, server_error
from web.middleware import setup_middleware
from web.routers import (
    content_router,
    earnings_router,
    health_router,
    leads_router,
    referrals_router,
    restrictions_router,
    support_router,
    webhooks_router,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    validate_startup_security(settings)
    logger.info(f"{settings.name} {settings.version} starting ({settings.environment})")
    yield
    close_sync_engine()
    logger.info("Shutdown complete")


def _request_id(request: Request):
    return getattr(request.state, "request_id", None)


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_output=settings.log_json)

    app = FastAPI(
        title=settings.name,
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
    )

    setup_middleware(app, cors_origins=settings.cors_origins)

    # Global exception handlers
    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        """Invalid request bodies and parameters answer 400."""
        return handle_validation_error(exc.errors(), request_id=_request_id(request))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return server_error(request_id=_request_id(request))

    app.include_router(health_router)
    app.include_router(leads_router)
    app.include_router(referrals_router)
    app.include_router(earnings_router)
    app.include_router(support_router)
    app.include_router(restrictions_router)
    app.include_router(content_router)
    app.include_router(webhooks_router)

    logger.info("Routers registered")
    return app


app = create_app()
