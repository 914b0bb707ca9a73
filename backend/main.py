"""
Main FastAPI application entry point
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException as FastAPIHTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from benefits_bpp.api.deps import close_content_provider
from benefits_bpp.api.routes import applications, benefits, health
from benefits_bpp.core.config import get_settings
from benefits_bpp.core.database import init_db
from benefits_bpp.core.exceptions import ProtocolError
from benefits_bpp.core.logging_config import LoggingConfig
from benefits_bpp.core.middleware import LoggingContextMiddleware
from benefits_bpp.core.utils import to_iso8601, utcnow
from benefits_bpp.services.eligibility_scheduler import \
    get_eligibility_scheduler

# Configure logging first
LoggingConfig.configure()

logger = LoggingConfig.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for FastAPI app"""
    # Startup
    settings = get_settings()
    settings.validate_protocol_settings()
    logger.info(f"Starting {settings.app_name} in {settings.app_env} mode...")

    init_db()

    scheduler = get_eligibility_scheduler()
    if settings.eligibility_check_enabled:
        await scheduler.start()

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.app_name}...")
    await scheduler.stop()
    await scheduler.content_provider.aclose()
    await close_content_provider()


_settings = get_settings()
app = FastAPI(
    title=_settings.app_name,
    description="Benefit provider (BPP) adapter for ONEST/DSEP style transactions",
    version="0.1.0",
    lifespan=lifespan,
)

# Add logging context middleware (before CORS to capture all requests)
app.add_middleware(LoggingContextMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_body(request: Request, status_code: int, code: str, message: str) -> dict:
    return {
        "statusCode": status_code,
        "code": code,
        "message": message,
        "timestamp": to_iso8601(utcnow()),
        "path": request.url.path,
    }


@app.exception_handler(ProtocolError)
async def protocol_exception_handler(request: Request, exc: ProtocolError):
    """Domain errors: client faults keep their message, server faults are sanitized"""
    log = logger.warning if exc.is_client_fault else logger.error
    log(
        f"{exc.code}: {exc.message}",
        exc_info=not exc.is_client_fault,
        extra={
            "error_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
            **exc.metadata,
        }
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.status_code, exc.code, exc.safe_message()),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler to log all unhandled errors"""
    # Don't handle HTTPException - let FastAPI handle it
    if isinstance(exc, FastAPIHTTPException):
        raise exc

    logger.error(
        "Unhandled exception",
        exc_info=True,
        extra={
            "error": str(exc),
            "error_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
        }
    )
    return JSONResponse(
        status_code=500,
        content=_error_body(request, 500, "INTERNAL_ERROR", "Internal Server Error"),
    )


# Include routers
app.include_router(health.router)
app.include_router(benefits.router)
app.include_router(applications.router)


@app.get("/api")
async def root():
    """Root API endpoint"""
    settings = get_settings()
    return {
        "name": settings.app_name,
        "version": "0.1.0",
        "status": "running",
        "environment": settings.app_env,
        "bpp_id": settings.bpp_id,
    }


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.app_env == "development",
    )
