"""FastAPI application entrypoint.

Configures CORS, builds the attribution service, includes routers, maps
engine errors to HTTP responses and exposes a healthcheck endpoint.
"""

import logging
import os
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from .deps import build_default_service, get_settings
from .routers import attribution as attribution_router
from .routers import tracking as tracking_router
from .services.attribution import (
    AttributionService,
    InvalidModelError,
    StorageError,
)
from .telemetry import init_observability, shutdown_observability
from . import schemas


# Tracking calls come from any site that embeds the tracking script
PUBLIC_TRACKING_PATHS = ("/v1/touches",)


def create_app(service: Optional[AttributionService] = None) -> FastAPI:
    """Build the API.

    Args:
        service: AttributionService to serve; defaults to one bound to
            DATABASE_URL. Tests pass their own.
    """
    app = FastAPI(
        title="touchcredit API",
        description="""
        Multi-touch attribution engine.

        This API provides endpoints for:
        - Recording marketing touches and conversions
        - Per-conversion credit under five attribution models
        - Channel performance reports and model comparison
        """,
        version="1.0.0",
    )

    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

    settings = get_settings()

    # BACKEND_CORS_ORIGINS is a comma-separated list
    cors_origins_str = os.getenv("BACKEND_CORS_ORIGINS", settings.BACKEND_CORS_ORIGINS)
    ALLOWED_ORIGINS = [origin.strip() for origin in cors_origins_str.split(",") if origin.strip()]
    logger.info(f"[CORS] Allowed origins: {ALLOWED_ORIGINS}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Runs before CORSMiddleware (middleware runs in reverse order)
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.responses import Response as StarletteResponse

    class TrackingCORSMiddleware(BaseHTTPMiddleware):
        """Wildcard CORS for the tracking endpoint; no credentials are involved."""
        async def dispatch(self, request, call_next):
            if request.url.path in PUBLIC_TRACKING_PATHS:
                cors_headers = {
                    "Access-Control-Allow-Origin": "*",
                    "Access-Control-Allow-Methods": "POST, OPTIONS",
                    "Access-Control-Allow-Headers": "Content-Type",
                    "Access-Control-Max-Age": "86400",
                }
                if request.method == "OPTIONS":
                    return StarletteResponse(status_code=200, headers=cors_headers)

                response = await call_next(request)
                for key, value in cors_headers.items():
                    response.headers[key] = value
                return response

            return await call_next(request)

    app.add_middleware(TrackingCORSMiddleware)

    app.state.attribution_service = service or build_default_service()

    # Include all API routers
    app.include_router(tracking_router.router)
    app.include_router(attribution_router.router)

    @app.exception_handler(InvalidModelError)
    async def invalid_model_handler(request: Request, exc: InvalidModelError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": exc.message},
        )

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error(f"[API] Storage failure during {exc.operation}: {exc.message}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Attribution store unavailable"},
        )

    @app.get(
        "/health",
        response_model=schemas.HealthResponse,
        tags=["Health"],
        summary="Health check",
        description="""
        Simple health check endpoint to verify the API is running.

        This endpoint:
        - Does not require authentication
        - Can be used for load balancer health checks
        """
    )
    def health():
        return schemas.HealthResponse(status="ok")

    @app.on_event("startup")
    async def startup_event():
        status_map = init_observability()
        logger.info(f"[STARTUP] Observability initialized: {status_map}")

    @app.on_event("shutdown")
    async def shutdown_event():
        shutdown_observability()

    return app


app = create_app()
