"""
FastAPI Application Entry Point
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.dependencies import close_rate_limiter, close_voice_provider
from app.api.v1.routes import api_router
from app.core.config import get_settings
from app.core.errors import CallError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan - startup and shutdown events.

    Startup:
    - Validates provider configurations (strict in production)

    Shutdown:
    - Closes the Vapi HTTP client
    - Closes the rate limiter store (Redis connection)
    """
    logger.info("Starting CallTone API...")

    settings = get_settings()
    strict_validation = settings.environment == "production"

    try:
        from app.core.validation import validate_providers_on_startup
        validate_providers_on_startup(strict=strict_validation, settings=settings)
    except RuntimeError as e:
        if strict_validation:
            logger.error(f"Startup failed: {e}")
            raise
        else:
            logger.warning(f"Configuration warnings (non-fatal in {settings.environment}): {e}")

    logger.info(f"CallTone API started (storage={settings.storage_backend}, rate_limit={settings.rate_limit_backend})")

    yield  # Application is running

    logger.info("Shutting down CallTone API...")

    try:
        await close_voice_provider()
        await close_rate_limiter()
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")

    logger.info("CallTone API shutdown complete")


app = FastAPI(
    title="CallTone API",
    description="Outbound AI voice calls: initiation, status reconciliation and retries",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CallError)
async def call_error_handler(request: Request, exc: CallError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code.value},
    )


app.include_router(api_router, prefix=get_settings().api_prefix)


@app.get("/")
async def root():
    return {"message": "CallTone API", "status": "running"}


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    settings = get_settings()
    return {
        "status": "healthy",
        "environment": settings.environment,
        "storage_backend": settings.storage_backend,
        "rate_limit_backend": settings.rate_limit_backend,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
