"""API application factory."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from folio_lens import __version__
from folio_lens.brokerage.exceptions import BrokerageAPIError, BrokerageAuthError
from folio_lens.config import Settings
from folio_lens.services import Services, build_services

from .routes import fundamentals, health, portfolio

logger = structlog.get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log method, path, status and duration of every request."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.monotonic()
        response = await call_next(request)
        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
        return response


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(BrokerageAuthError)
    async def brokerage_auth_error(request: Request, exc: BrokerageAuthError):
        logger.warning("brokerage_auth_failed", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": str(exc)},
        )

    @app.exception_handler(BrokerageAPIError)
    async def brokerage_api_error(request: Request, exc: BrokerageAPIError):
        logger.error(
            "brokerage_request_failed",
            path=request.url.path,
            status_code=exc.status_code,
            error=str(exc),
        )
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"detail": str(exc), "upstream_status": exc.status_code},
        )


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """
    Create and configure the API application.

    With `services` given the caller owns them and they are not closed on
    shutdown. Otherwise the lifespan builds them from `settings` and closes
    their HTTP sessions when the app stops.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        app.state.services = services if services is not None else build_services(settings)
        logger.info("api_started", providers=app.state.services.aggregator.provider_ids)
        try:
            yield
        finally:
            if owned:
                await app.state.services.close()
            logger.info("api_stopped")

    app = FastAPI(
        title="Folio Lens",
        version=__version__,
        description="Portfolio fundamentals enrichment API",
        lifespan=lifespan,
    )
    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)

    app.include_router(health.router, tags=["Health"])
    app.include_router(portfolio.router, tags=["Portfolio"])
    app.include_router(fundamentals.router, tags=["Fundamentals"])
    return app
