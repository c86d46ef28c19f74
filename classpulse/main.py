"""
FastAPI Application Entry Point

This module initializes the FastAPI application with:
- CORS configuration
- Route registration
- Health check endpoints
- Record store error translation
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from classpulse.core.config import settings
from classpulse.db.redis import (
    check_redis_connection,
    get_redis_pool,
    close_redis_pool,
    close_arq_pool,
)
from classpulse.services.live_updates import shutdown_live_update_publisher
from classpulse.services.websocket_manager import shutdown_connection_manager
from classpulse.store import (
    RecordNotFoundError,
    TransientStoreError,
    get_record_store,
)
from classpulse.api.v1.router import api_router

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


# ============================================================
# Application Lifespan Events
# ============================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.

    Startup:
    - Check record store connectivity
    - Initialize Redis connection pool

    Shutdown:
    - Close WebSocket connections and live subscriptions
    - Close Redis connections and the record store
    """
    # ========== STARTUP ==========
    logger.info(f"Starting {settings.PROJECT_NAME}...")
    logger.info(f"Debug mode: {settings.DEBUG}, record store: {settings.RECORD_STORE_BACKEND}")

    try:
        if await get_record_store().ping():
            logger.info("Record store connection established successfully")
        else:
            logger.warning("Record store connection check failed")
    except Exception as e:
        logger.error(f"Record store connection error on startup: {e}")

    try:
        get_redis_pool()
        if await check_redis_connection():
            logger.info("Redis connection established successfully")
        else:
            logger.warning("Redis connection check failed - analytics refresh jobs will not run")
    except Exception as e:
        logger.error(f"Redis connection error on startup: {e}")
        # Don't fail startup - live updates and the inbox work without Redis

    yield  # Application runs here

    # ========== SHUTDOWN ==========
    logger.info(f"Shutting down {settings.PROJECT_NAME}...")

    await shutdown_connection_manager()
    await shutdown_live_update_publisher()

    await close_redis_pool()
    await close_arq_pool()
    await get_record_store().close()

    logger.info("Shutdown complete")


# ============================================================
# Create FastAPI Application
# ============================================================
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="""
    Learning Management Realtime & Analytics API

    Features:
    - Notification inbox (Firebase ID token auth)
    - Realtime update feed
    - Live updates over WebSocket and SSE
    - Activity tracking
    - Batch performance analytics and submission trends
    """,
    version="1.0.0",
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# ----------------------------------------------------
# Middleware Configuration
# ----------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.DEBUG else settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
    expose_headers=["*"],
)


# ----------------------------------------------------
# Health Check Endpoints
# ----------------------------------------------------
@app.get("/", tags=["Health"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.PROJECT_NAME,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs" if settings.DEBUG else "disabled"
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint for monitoring.

    Checks:
    - Record store connectivity
    - Redis connectivity
    """
    try:
        store_healthy = await get_record_store().ping()
        redis_healthy = await check_redis_connection()

        return {
            "status": "healthy" if store_healthy and redis_healthy else "degraded",
            "record_store": "connected" if store_healthy else "disconnected",
            "redis": "connected" if redis_healthy else "disconnected",
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "error": str(e)
            }
        )

# ============================================================
# Include API Router
# ============================================================
app.include_router(
    api_router,
    prefix=settings.API_V1_PREFIX
)


# ----------------------------------------------------
# Exception Handlers
# ----------------------------------------------------
@app.exception_handler(RecordNotFoundError)
async def record_not_found_handler(request, exc: RecordNotFoundError):
    return JSONResponse(
        status_code=404,
        content={"detail": "Not found"}
    )


@app.exception_handler(TransientStoreError)
async def transient_store_error_handler(request, exc: TransientStoreError):
    """Store unreachable or transaction aborted; the client may retry."""
    logger.warning(f"Record store unavailable for {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": "Record store temporarily unavailable, retry later"}
    )


@app.exception_handler(500)
async def internal_error_handler(request, exc):
    """Handle 500 errors."""
    logger.error(f"Internal server error: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )
