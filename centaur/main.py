"""
Main FastAPI Application

Entry point for the CentaurOS marketplace API.
Configures middleware, routes, error handlers, and startup/shutdown events.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
from contextlib import asynccontextmanager

from centaur.config import get_settings
from centaur.database import engine, init_db
from centaur.middleware.foundry import FoundryMiddleware
from centaur.middleware.rate_limit import RateLimitMiddleware
from centaur.utils.logging import setup_logging, get_logger, log_security_event
from centaur.core.exceptions import (
    AuthenticationError,
    FoundryIsolationError,
    RateLimitExceeded
)
from centaur.core.sanitize import GENERIC_ERROR_MESSAGE, sanitize_error_message

from centaur.api.endpoints import (
    auth,
    users,
    providers,
    rfqs,
    retainers,
    timesheets,
    fraud,
    orders,
    objectives,
    uploads,
)

settings = get_settings()

setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=(settings.ENVIRONMENT == "production")
)
logger = get_logger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting application in {settings.ENVIRONMENT} mode")

    # Dev only; production schemas are migrated separately
    if settings.ENVIRONMENT == "development":
        logger.warning("Initializing database tables (dev mode)")
        init_db()

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application")
    engine.dispose()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="CentaurOS Marketplace API",
    description="Foundry-isolated planning, RFQ marketplace, retainers and fraud controls",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)


# ============================================================================
# MIDDLEWARE CONFIGURATION
# ============================================================================
# Starlette runs the most recently added middleware first, so the
# request path is: CORS -> FoundryMiddleware -> RateLimitMiddleware -> timing.

@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add X-Process-Time header to track request duration."""
    start_time = time.time()
    response = await call_next(request)
    response.headers["X-Process-Time"] = str(time.time() - start_time)
    return response


# Reads request.state.foundry, so it must sit inside FoundryMiddleware
app.add_middleware(RateLimitMiddleware)

# CRITICAL: resolves the foundry every foundry-scoped route depends on
app.add_middleware(FoundryMiddleware)

# SECURITY: In production, restrict origins to the foundry domains
allowed_origins = [
    "http://localhost:3000",
    "http://localhost:8000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.ENVIRONMENT == "development" else allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

@app.exception_handler(FoundryIsolationError)
async def foundry_isolation_error_handler(request: Request, exc: FoundryIsolationError):
    """
    CRITICAL: isolation violations are security incidents; log them as such.
    """
    log_security_event(
        "foundry_isolation_violation",
        {
            "detail": exc.detail,
            "path": request.url.path,
            "method": request.method,
            "foundry_id": getattr(request.state, "foundry_id", None)
        },
        logger
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "type": exc.error_type}
    )


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "type": exc.error_type},
        headers=exc.headers or {}
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_error_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(
        f"Rate limit exceeded: {request.url.path}",
        extra={"foundry_id": getattr(request.state, "foundry_id", None)}
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "type": exc.error_type},
        headers=exc.headers or {}
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Domain errors and framework HTTP errors share one body shape."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "type": getattr(exc, "error_type", "http_error")},
        headers=getattr(exc, "headers", None) or {}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Catch-all exception handler.

    SECURITY: the message is only passed through if it is a known
    user-facing message; database errors and stack details never are.
    """
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {str(exc)}",
        exc_info=True,
        extra={
            "path": request.url.path,
            "method": request.method,
            "foundry_id": getattr(request.state, "foundry_id", None)
        }
    )

    if settings.DEBUG:
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc),
                "type": type(exc).__name__,
                "traceback": "See logs for traceback"
            }
        )

    return JSONResponse(
        status_code=500,
        content={
            "detail": sanitize_error_message(str(exc)) or GENERIC_ERROR_MESSAGE,
            "type": "internal_error"
        }
    )


# ============================================================================
# ROUTES
# ============================================================================

@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint for load balancers."""
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "version": VERSION
    }


@app.get("/", tags=["root"])
async def root():
    return {
        "message": "CentaurOS Marketplace API",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health"
    }


for module in (auth, users, providers, rfqs, retainers, timesheets, fraud, orders, objectives, uploads):
    app.include_router(module.router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn

    logger.info("=" * 80)
    logger.info("CentaurOS Marketplace API")
    logger.info("=" * 80)
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug: {settings.DEBUG}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")
    logger.info("=" * 80)

    uvicorn.run(
        "centaur.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
