"""
Snake Arena Server - Main Application
"""
import logging
import sys
import traceback
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import uvicorn

from .core.config import settings
from .core.rate_limit import limiter
from .api.v1 import api_router, ws_router
from .services.orchestrator import GameOrchestrator
from .services.scheduler_service import scheduler_service
from .utils.time_utils import to_utc_isoformat, utc_now

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ]
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting Snake Arena Server...")

    try:
        app.state.orchestrator = GameOrchestrator()

        scheduler_service.start(app.state.orchestrator)
        logger.info("Scheduler service started")

        logger.info(f"Debug mode: {settings.DEBUG}")
        logger.info(f"API running at: http://{settings.API_HOST}:{settings.API_PORT}")

    except Exception as e:
        logger.error(f"Failed to initialize server: {e}")
        raise

    yield  # Application runs here

    # Shutdown
    logger.info("Shutting down Snake Arena Server...")

    try:
        scheduler_service.shutdown()
        await app.state.orchestrator.shutdown()
        logger.info("Games and scheduler stopped")

    except Exception as e:
        logger.error(f"Error during shutdown: {e}")


# Create FastAPI application
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Authoritative real-time multiplayer Snake server for 2D and 3D rooms",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url=f"{settings.API_PREFIX}/openapi.json",
    lifespan=lifespan,
    redirect_slashes=False
)

# Initialize rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unexpected errors."""
    # Generate a unique error ID for tracking
    error_id = str(uuid.uuid4())[:8]

    logger.error(
        f"[ERROR_ID: {error_id}] Unhandled exception on {request.method} {request.url.path}",
        exc_info=True
    )

    if settings.DEBUG:
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "detail": str(exc),
                "error_id": error_id,
                "type": type(exc).__name__,
                "path": str(request.url.path),
                "traceback": traceback.format_exc()
            }
        )
    else:
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "detail": "An internal server error occurred. Please try again later.",
                "error_id": error_id
            }
        )


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "service": settings.PROJECT_NAME,
        "version": "1.0.0",
        "status": "running",
        "environment": settings.ENVIRONMENT,
        "docs_url": "/docs" if settings.DEBUG else "disabled",
        "websocket": "/ws",
    }


# Health check endpoint
@app.get(f"{settings.API_PREFIX}/health")
async def health_check(request: Request):
    """Health check endpoint for monitoring."""
    scheduler_running = scheduler_service.scheduler.running if scheduler_service.scheduler else False
    scheduled_jobs = len(scheduler_service.get_scheduled_jobs()) if scheduler_running else 0

    orchestrator = getattr(request.app.state, "orchestrator", None)
    games = orchestrator.get_debug_info() if orchestrator else {}

    return {
        "status": "healthy",
        "timestamp": to_utc_isoformat(utc_now()),
        "service": "snake-arena-server",
        "version": "1.0.0",
        "rooms": games.get("rooms", {}).get("total_rooms", 0),
        "players": games.get("players", {}).get("total_players", 0),
        "active_games": games.get("games", {}).get("active_games", 0),
        "services": {
            "scheduler": {
                "status": "running" if scheduler_running else "stopped",
                "scheduled_jobs": scheduled_jobs
            }
        }
    }


app.include_router(api_router, prefix=settings.API_PREFIX)
app.include_router(ws_router)


if __name__ == "__main__":
    # Run the application
    uvicorn.run(
        "app.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
