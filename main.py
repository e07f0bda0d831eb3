"""FastAPI application entrypoint for the library lending API."""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
import uuid

from app.api.routes import router
from app.core.errors import LendingError
from app.core.logging import get_logger, setup_logging
from app.core.config import settings
from app.infrastructure.redis import close_redis_client
from app.infrastructure.stores import get_stores

# Initialize structured logging
log_format = settings.environment == "production"
setup_logging(level=settings.log_level, json_format=log_format)
logger = get_logger(__name__)

# Application metadata
APP_VERSION = "1.0.0"
APP_NAME = "Library Lending API"


@asynccontextmanager
async def lifespan(app: FastAPI):
    stores = get_stores()
    logger.info("Application starting up", extra={"version": APP_VERSION, "backend": stores.backend})
    try:
        yield
    finally:
        logger.info("Application shutting down")
        close_redis_client()


app = FastAPI(
    title=APP_NAME,
    description="Catalog, users and lending transactions for a small library",
    version=APP_VERSION,
    docs_url="/docs" if settings.environment != "production" else None,  # Disable in prod
    redoc_url="/redoc" if settings.environment != "production" else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Middleware to log all requests with timing and status code."""
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id

    start_time = time.time()

    logger.info(
        f"Request started: {request.method} {request.url.path}",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
        }
    )

    try:
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000

        logger.info(
            f"Request completed: {request.method} {request.url.path}",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            }
        )

        response.headers["X-Request-ID"] = request_id
        return response

    except Exception as e:
        duration_ms = (time.time() - start_time) * 1000
        logger.error(
            f"Request failed: {request.method} {request.url.path}",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "duration_ms": round(duration_ms, 2),
                "error_type": type(e).__name__,
            },
            exc_info=True
        )
        return JSONResponse(
            status_code=500,
            content={"error": "Server error", "request_id": request_id},
            headers={"X-Request-ID": request_id},
        )


@app.exception_handler(LendingError)
async def lending_error_handler(request: Request, exc: LendingError):
    """Render domain failures as ``{"error": message}`` with their status."""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.message}", extra={"error_type": type(exc).__name__})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies are client errors (400), like other invalid arguments."""
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request body", "details": jsonable_encoder(exc.errors())},
    )


app.include_router(router, prefix=settings.api_prefix)


@app.get("/")
def root():
    """Root endpoint with basic service info."""
    return {
        "service": APP_NAME,
        "version": APP_VERSION,
        "status": "running",
        "environment": settings.environment
    }


@app.get("/health")
def health_check():
    """Liveness probe."""
    return {
        "status": "healthy",
        "version": APP_VERSION,
        "checks": {
            "api": "ok",
            "storage": get_stores().backend,
        }
    }


@app.get("/ready")
def readiness_check():
    """Readiness probe: verifies the configured store answers."""
    stores = get_stores()
    checks = {"storage": stores.backend}

    if stores.backend == "redis":
        try:
            stores.inventory.redis.ping()
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "error"
    elif settings.storage_backend == "redis":
        checks["redis"] = "fallback_memory"

    all_ok = checks.get("redis", "ok") != "error"

    return {
        "status": "ready" if all_ok else "degraded",
        "checks": checks
    }
