"""
Visit Logger API

Usage:
    uvicorn --factory visit_logger.main:create_app
    python -m visit_logger
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from visit_logger import __version__
from visit_logger.database import MongoConnection
from visit_logger.exceptions import VisitLoggerError
from visit_logger.health import router as health_router
from visit_logger.log import configure_logging
from visit_logger.metrics import PrometheusMiddleware
from visit_logger.routes import router as visits_router
from visit_logger.settings import Settings, get_settings

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    connection: MongoConnection = app.state.connection
    logger.info("application_starting", environment=app.state.settings.app_env)
    connection.connect()
    yield
    connection.close()
    logger.info("application_stopped")


async def visit_logger_error_handler(request: Request, exc: VisitLoggerError) -> JSONResponse:
    logger.error("request_failed", path=request.url.path, reason=exc.message, details=exc.details)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "path": request.url.path},
    )


def create_app(settings: Optional[Settings] = None,
               connection: Optional[MongoConnection] = None) -> FastAPI:
    """Build the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_json)
    connection = connection or MongoConnection(settings)

    app = FastAPI(title="Visit Logger", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.connection = connection

    app.add_middleware(PrometheusMiddleware)
    app.add_exception_handler(VisitLoggerError, visit_logger_error_handler)

    app.include_router(visits_router)
    app.include_router(health_router)
    return app


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port, log_config=None)
