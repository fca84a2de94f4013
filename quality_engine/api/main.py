"""
FastAPI application factory.

The engine is built by the caller (it needs concrete evaluator and reviser
clients) and attached to ``app.state``.
"""

from datetime import UTC, datetime

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..core.config import settings
from ..core.exceptions import QualityEngineException
from ..services.evaluation.engine import QualityEngine
from ..utils.logging import get_logger, setup_logging
from .routes import evaluation_router, review_router

logger = get_logger(__name__)


def exception_handler(request: Request, exc: QualityEngineException) -> JSONResponse:
    """Handle quality engine exceptions."""
    logger.error(
        "QualityEngineException: %s - %s (status=%d) for %s %s",
        exc.error_code,
        exc.detail,
        exc.status_code,
        request.method,
        request.url.path,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception(
        "Unhandled exception for %s %s: %s", request.method, request.url.path, str(exc)
    )
    detail = "An unexpected error occurred" if settings.ENVIRONMENT == "production" else str(exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_SERVER_ERROR",
            "detail": detail,
            "timestamp": datetime.now(UTC).isoformat(),
        },
    )


def create_app(engine: QualityEngine) -> FastAPI:
    """Build the API around an already-wired engine."""
    setup_logging(log_level=settings.LOG_LEVEL)
    app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION)
    app.state.engine = engine

    app.add_exception_handler(QualityEngineException, exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(evaluation_router)
    app.include_router(review_router)

    @app.get("/health")
    async def health():
        return {"status": "healthy", "version": settings.APP_VERSION}

    return app
