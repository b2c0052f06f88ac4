"""
FastAPI application entry point.
Version: 1.0.0
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import logging

from .config import settings
from .api.routes import admin, agents, chat, chats, feedback, health, media, messages
from .database import check_db_connection, cleanup_db, get_db_context, init_db
from .errors import EmmieError
from .services.openai_client import close_openai_client
from .services.tool_admin import ToolAdminService
from .tools.registry import get_function_tool_registry
from .utils.telemetry import setup_telemetry, metrics_collector
from .utils.middleware import (
    RequestIDMiddleware,
    TimingMiddleware,
    ErrorHandlingMiddleware
)

# Configure structured logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO) if not settings.debug else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)

logger = logging.getLogger(__name__)


def seed_system_tools() -> int:
    """Register the built-in tool definitions for the organisation."""
    with get_db_context() as db:
        return ToolAdminService(db).ensure_system_tools(get_function_tool_registry())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle events.
    Initialize resources on startup, cleanup on shutdown.
    """
    # === STARTUP ===
    try:
        logger.info("=" * 60)
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")
        logger.info(f"Environment: {settings.environment}")
        logger.info(f"Debug mode: {settings.debug}")
        logger.info("=" * 60)

        logger.info("Initializing database...")
        init_db()

        if not check_db_connection():
            raise RuntimeError("Database connection check failed")
        logger.info("✓ Database initialized and verified")

        created = seed_system_tools()
        logger.info(f"✓ System tools ready ({created} added)")

        for warning in settings.validate_configuration():
            logger.warning(f"Configuration: {warning}")

        logger.info("=" * 60)
        logger.info("✓ Application started successfully")
        logger.info(f"API docs: http://{settings.api_host}:{settings.api_port}/docs")
        logger.info(f"Health check: http://{settings.api_host}:{settings.api_port}/health")
        logger.info("=" * 60)

    except Exception as e:
        logger.error(f"Failed to start application: {e}", exc_info=True)
        raise

    yield  # === APPLICATION RUNS HERE ===

    # === SHUTDOWN ===
    logger.info("Shutting down application...")

    try:
        await close_openai_client()
        logger.info("✓ OpenAI client closed")
    except Exception as e:
        logger.error(f"Error closing OpenAI client: {e}")

    try:
        cleanup_db()
        logger.info("✓ Database cleanup complete")
    except Exception as e:
        logger.error(f"Error during database cleanup: {e}")

    logger.info("✓ Application shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Chat service for configurable AI agents with tools, streaming and generated images",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Middleware, outermost last
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(TimingMiddleware)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Response-Time"],
)

if settings.enable_telemetry:
    setup_telemetry(app)
    logger.info("✓ Telemetry initialized")

# Routers
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(chats.router, prefix=f"{settings.api_prefix}/chats", tags=["chats"])
app.include_router(messages.router, prefix=f"{settings.api_prefix}/messages", tags=["messages"])
app.include_router(feedback.router, prefix=f"{settings.api_prefix}/feedback", tags=["feedback"])
app.include_router(chat.router, prefix=f"{settings.api_prefix}/chat", tags=["chat"])
app.include_router(agents.router, prefix=f"{settings.api_prefix}/agents", tags=["agents"])
app.include_router(admin.router, prefix=f"{settings.api_prefix}/admin", tags=["admin"])
app.include_router(media.router, prefix=settings.media_base_url.rstrip("/"), tags=["media"])


# ===========================
# Exception handlers
# ===========================

@app.exception_handler(EmmieError)
async def emmie_exception_handler(request: Request, exc: EmmieError):
    """Domain errors that reach the app carry their own status."""
    if exc.status_code >= 500:
        metrics_collector.record_error()
        logger.error(f"{type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors as ``{"error": ...}``."""
    content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Body validation failures are 400s naming the first bad field."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = [str(part) for part in first.get("loc", ()) if part != "body"]
    message = first.get("msg", "Invalid request")
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]

    return JSONResponse(
        status_code=400,
        content={
            "error": message,
            "code": "validation_error",
            "details": {"field": ".".join(location) or None},
        }
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions globally."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error(f"Unhandled exception: {exc}", exc_info=True, extra={"request_id": request_id})
    metrics_collector.record_error()

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "request_id": request_id,
        }
    )


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "operational",
        "environment": settings.environment,
        "stats": metrics_collector.get_stats(),
        "endpoints": {
            "health": "/health",
            "chat": f"{settings.api_prefix}/chat",
            "chats": f"{settings.api_prefix}/chats",
            "admin": f"{settings.api_prefix}/admin",
            "metrics": "/metrics" if settings.enable_telemetry else None,
        }
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "emmie.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.api_workers,
        log_level=settings.log_level.lower(),
    )
