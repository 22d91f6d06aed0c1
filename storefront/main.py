"""
Storefront API
Checkout, payment verification and order lookup for the shop frontend
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.api import auth_router, orders_router, payments_router
from storefront.api.errors import register_exception_handlers
from storefront.core import RequestLoggingMiddleware, ServiceHealth, get_logger, setup_logging
from storefront.core_settings import OPTIONAL_ENV_VARS, REQUIRED_ENV_VARS, Settings, get_settings
from storefront.infrastructure.db import configure_engine, get_engine, init_models
from storefront.rate_limit import FixedWindowRateLimiter

SERVICE_NAME = "storefront-api"
SERVICE_DESCRIPTION = "Storefront checkout and payment service"

logger = get_logger(__name__)

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        return response

def log_environment(settings: Settings) -> bool:
    """Report which configuration keys are set. Returns False if a required key is missing."""
    missing = [name for name in REQUIRED_ENV_VARS if not str(getattr(settings, name, "") or "").strip()]
    for name in REQUIRED_ENV_VARS:
        if name in missing:
            logger.warning(f"Missing required: {name}")
        else:
            logger.info(f"{name}: configured")
    for name in OPTIONAL_ENV_VARS:
        state = "configured" if name in settings.model_fields_set else "not set (optional)"
        logger.info(f"{name}: {state}")
    if missing:
        logger.warning("Some required environment variables are missing. The server will start, but online payments will not work.")
    return not missing

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifecycle management"""
        setup_logging(
            service_name=SERVICE_NAME,
            level=settings.LOG_LEVEL,
            environment=settings.ENVIRONMENT,
            version=settings.SERVICE_VERSION,
        )
        logger.info(f"Starting {SERVICE_NAME} version {settings.SERVICE_VERSION}")
        log_environment(settings)

        try:
            engine = configure_engine(settings.DATABASE_URL)
            if engine is None:
                logger.warning("DATABASE_URL not set; orders will not be persisted")
            else:
                init_models()
                logger.info("Database models initialized")
        except Exception as e:
            logger.error(f"Failed to initialize database models: {e}")
            raise

        logger.info(f"{SERVICE_NAME} started successfully")
        yield
        logger.info(f"Shutting down {SERVICE_NAME}")

    app = FastAPI(
        title=SERVICE_NAME,
        description=SERVICE_DESCRIPTION,
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )
    app.state.settings = settings

    if settings.RATE_LIMIT_ENABLED:
        app.add_middleware(
            FixedWindowRateLimiter,
            max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
            redis_url=settings.REDIS_URL,
        )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Idempotency-Key", "X-Request-ID", "x-client-info", "apikey"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app, settings)

    health_service = ServiceHealth(
        SERVICE_NAME,
        settings.SERVICE_VERSION,
        environment=settings.ENVIRONMENT,
        engine_provider=get_engine,
        redis_url=settings.REDIS_URL,
        gateway_configured=lambda: settings.gateway_configured,
    )
    app.include_router(health_service.create_health_router())

    app.include_router(orders_router)
    app.include_router(payments_router)
    app.include_router(auth_router)

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "success": True,
            "service": SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "status": "running",
            "docs": "/api/docs",
        }

    return app

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("storefront.main:app", host="0.0.0.0", port=get_settings().PORT)
