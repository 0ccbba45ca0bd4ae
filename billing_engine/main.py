from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from billing_engine.config import settings
from billing_engine.api.v1.router import api_router
from billing_engine.core.exceptions import BillingError
from billing_engine.database import init_db, async_session_factory


logger = logging.getLogger(__name__)

# Error kind -> HTTP status. Anything unmapped is a 500.
ERROR_STATUS_CODES = {
    "validation": 400,
    "not_found": 404,
    "conflict": 409,
    "persistence": 500,
    "timeout": 504,
}


def configure_logging(level: str = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Configure logging
    - Create tables that do not exist yet (use Alembic for real schema changes)
    """
    configure_logging()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()

    yield

    logger.info("Shutting down...")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Billing document computation and transactional persistence engine",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router)


@app.exception_handler(BillingError)
async def billing_exception_handler(request: Request, exc: BillingError):
    """Map engine error kinds to HTTP status codes."""
    status_code = ERROR_STATUS_CODES.get(exc.kind, 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")

    content = {
        "error": exc.message,
        "kind": exc.kind,
        "path": str(request.url.path),
    }
    if exc.details:
        content["details"] = jsonable_encoder(exc.details)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are validation errors like any other."""
    errors = jsonable_encoder(exc.errors())
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    return JSONResponse(
        status_code=400,
        content={
            "error": f"Invalid request: {location}: {first.get('msg')}" if first else "Invalid request",
            "kind": "validation",
            "path": str(request.url.path),
            "details": {"errors": errors},
        },
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError
    from datetime import datetime, timezone

    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        }
    }

    # Check database connectivity
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except SQLAlchemyError as e:
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status
