"""
Manuflix Checkout API - Main Application
FastAPI application with CORS, error handling, middleware, and logging
Services are wired by create_app so tests can swap the store and the gateway
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import logging
import traceback

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from manuflix.api.routes import checkout_router, plans_router, subscriptions_router
from manuflix.api.webhooks import router as webhooks_router
from manuflix.core.config import Settings, get_settings
from manuflix.core.exceptions import (
    ConfigurationError,
    GatewayError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from manuflix.services.checkout_service import PaymentSessionOrchestrator
from manuflix.services.checkout_session import SessionRegistry
from manuflix.services.plan_catalog import PlanCatalog
from manuflix.services.pushinpay_service import PushinPayClient
from manuflix.services.store import SubscriptionStore, build_store


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error(status_code: int, detail: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "detail": detail, **extra},
    )


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[SubscriptionStore] = None,
    gateway: Optional[PushinPayClient] = None,
) -> FastAPI:
    """
    Build the API with its services

    Args:
        settings: Defaults to the cached environment settings
        store: Defaults to Supabase when configured, otherwise the SQL store
        gateway: Defaults to a PushinPay client built from settings
    """
    settings = settings or get_settings()
    logging.getLogger().setLevel(settings.LOG_LEVEL.upper())

    # ==================== STARTUP & SHUTDOWN ====================

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 70)
        logger.info(f"Starting {settings.PROJECT_NAME} v{settings.VERSION}")
        logger.info("=" * 70)
        logger.info(f"Environment: {'Production' if not settings.DEBUG else 'Development'}")
        logger.info(f"Frontend URL: {settings.FRONTEND_URL}")
        logger.info(f"Webhook URL: {settings.webhook_callback_url}")

        missing = settings.missing_required()
        if missing:
            logger.error(f"[CONFIG] Missing required settings: {', '.join(missing)}")
            if not settings.DEBUG and not settings.TESTING:
                raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")
            logger.warning("[WARN] Continuing without required settings (debug/testing)")

        logger.info("[OK] Application startup complete!")
        yield

        logger.info("Shutting down application...")
        await app.state.registry.close_all()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description=settings.PROJECT_DESCRIPTION,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    # ==================== SERVICES ====================

    store = store or build_store(settings)
    gateway = gateway or PushinPayClient.from_settings(settings)
    catalog = PlanCatalog(store)
    orchestrator = PaymentSessionOrchestrator(
        gateway=gateway,
        store=store,
        catalog=catalog,
        callback_url=settings.webhook_callback_url,
        expiration_seconds=settings.PIX_EXPIRATION_SECONDS,
    )

    app.state.settings = settings
    app.state.store = store
    app.state.catalog = catalog
    app.state.orchestrator = orchestrator
    app.state.registry = SessionRegistry(
        orchestrator,
        poll_interval=settings.POLL_INTERVAL_SECONDS,
        tick_interval=settings.COUNTDOWN_TICK_SECONDS,
    )
    app.dependency_overrides[get_settings] = lambda: settings

    # ==================== MIDDLEWARE ====================

    # Compression: GZip responses
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # CORS: the checkout frontend plus local dev servers
    allowed_origins = list(dict.fromkeys([settings.FRONTEND_URL, *settings.ALLOWED_ORIGINS]))
    if settings.DEBUG:
        allowed_origins.extend([
            "http://localhost:8000",
            "http://localhost:8080",
        ])

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        max_age=3600,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all incoming requests"""
        # Skip logging for health checks
        if request.url.path == "/health":
            return await call_next(request)

        start_time = datetime.now(timezone.utc)
        client = request.client.host if request.client else "-"
        logger.info(f">> {request.method} {request.url.path} - {client}")

        try:
            response = await call_next(request)
            duration = (datetime.now(timezone.utc) - start_time).total_seconds()
            logger.info(f"<< {request.method} {request.url.path} - {response.status_code} ({duration:.2f}s)")
            return response
        except Exception as e:
            duration = (datetime.now(timezone.utc) - start_time).total_seconds()
            logger.error(f"[ERROR] {request.method} {request.url.path} - Error: {str(e)} ({duration:.2f}s)")
            raise

    # ==================== ROUTERS ====================

    app.include_router(plans_router, prefix=f"{settings.API_PREFIX}/plans", tags=["Plans"])
    app.include_router(checkout_router, prefix=f"{settings.API_PREFIX}/checkout", tags=["Checkout"])
    app.include_router(subscriptions_router, prefix=f"{settings.API_PREFIX}/subscriptions", tags=["Subscriptions"])
    app.include_router(webhooks_router, prefix=settings.API_PREFIX)

    # ==================== ERROR HANDLERS ====================

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors with detailed response"""
        logger.warning(f"Validation error on {request.url}: {exc}")
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation error", errors=jsonable_encoder(exc.errors()))

    @app.exception_handler(ValidationError)
    async def checkout_validation_handler(request: Request, exc: ValidationError):
        logger.warning(f"Rejected input on {request.url.path}: {exc} {exc.errors}")
        return _error(status.HTTP_400_BAD_REQUEST, str(exc), errors=exc.errors)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        logger.warning(f"Not found on {request.url.path}: {exc}")
        return _error(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        logger.error(f"Payment provider error on {request.url.path}: {exc} (status={exc.status_code})")
        return _error(
            status.HTTP_502_BAD_GATEWAY,
            f"Erro ao gerar pagamento PIX: {exc}",
            retryable=exc.retryable,
        )

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError):
        logger.error(f"Store error on {request.url.path}: {exc}")
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Serviço temporariamente indisponível", retryable=True)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle all unhandled exceptions"""
        logger.error(f"Unhandled exception: {exc}\n{traceback.format_exc()}")

        # Don't expose internal errors in production
        error_message = str(exc) if settings.DEBUG else "Internal server error"
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, error_message, timestamp=_timestamp())

    # ==================== HEALTH & STATUS ENDPOINTS ====================

    @app.get("/", tags=["System"])
    async def root():
        """Root endpoint - API information"""
        return {
            "success": True,
            "message": "Welcome to Manuflix Checkout API",
            "app_name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": "/api/docs",
            "status": "operational",
            "environment": "production" if not settings.DEBUG else "development",
        }

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for monitoring"""
        try:
            store.list_plans()
        except PersistenceError as e:
            logger.error(f"Health check failed: {e}")
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    "success": False,
                    "status": "degraded",
                    "database": "disconnected",
                    "timestamp": _timestamp(),
                },
            )

        return {
            "success": True,
            "status": "healthy",
            "database": "connected",
            "store": type(store).__name__,
            "open_sessions": len(app.state.registry),
            "timestamp": _timestamp(),
        }

    @app.get("/api/version", tags=["System"])
    async def get_version():
        """Get API version information"""
        return {
            "success": True,
            "api_version": settings.VERSION,
            "app_name": settings.PROJECT_NAME,
        }

    return app
