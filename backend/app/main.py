"""
Membership Booking API - Main Application Entry Point

Program-ticket purchases and event bookings for member organisations:
- Balance ledger with conditional updates (no lost updates under concurrency)
- Booking saga over external ticketing / webinar platforms with partial success
- Optional invoicing on the accounting platform
- Structured logging with request and saga correlation
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import get_settings
from app.core.logging import setup_logging, get_logger
from app.core.metrics import metrics_endpoint
from app.api.router import api_router
from app.api.middleware import RequestLoggingMiddleware
from app.infrastructure.redis_client import get_redis, close_redis
from app.services.integration_factory import close_integrations

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        balance_guard=settings.BALANCE_GUARD_STRATEGY,
        invoicing=settings.INVOICING_ENABLED,
    )

    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Balance guard and token store running without Redis")

    yield

    await close_integrations()
    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Program ticket purchases and event bookings for member organisations",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Custom middleware
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    body = {"success": False, "error": exc.detail}
    body.update(getattr(exc, "extra", None) or {})
    if exc.status_code >= 500:
        logger.error("request_error", status_code=exc.status_code, error=exc.detail)
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": "; ".join(messages) or "Invalid request"},
    )


# Routes
app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    redis_client = await get_redis()
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "redis": "connected" if redis_client else "unavailable",
    }


@app.get("/metrics", include_in_schema=False)
def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
