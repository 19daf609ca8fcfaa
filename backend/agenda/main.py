# backend/agenda/main.py
"""
FastAPI application for the Agenda booking API.

Routers are mounted under /api/v1; /health and /metrics stay at the root
for health checks and scrapers.
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from .core.config import settings
from .core.exceptions import DomainException
from .database import Base, engine
from .routes.v1 import admin as admin_v1
from .routes.v1 import appointments as appointments_v1
from .routes.v1 import availability as availability_v1
from .routes.v1 import health as health_v1

API_TITLE = "Agenda API"
API_VERSION = "1.0.0"

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown."""
    logger.info(f"{API_TITLE} starting up (environment={settings.environment})")
    if settings.is_sqlite:
        # Local development database; PostgreSQL schemas are managed outside the app
        Base.metadata.create_all(bind=engine)
    yield
    logger.info(f"{API_TITLE} shutting down")


async def domain_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render any DomainException that escaped a route as its HTTP equivalent."""
    assert isinstance(exc, DomainException)
    if exc.status_code >= 500:
        logger.error(f"Unhandled {type(exc).__name__} on {request.url.path}: {exc.message}")
    http_exc = exc.to_http_exception()
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


def create_app() -> FastAPI:
    app = FastAPI(
        title=API_TITLE,
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=app_lifespan,
    )
    app.add_exception_handler(DomainException, domain_exception_handler)

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(availability_v1.router, prefix="/availability")
    api_v1.include_router(appointments_v1.router, prefix="/appointments")
    api_v1.include_router(admin_v1.router, prefix="/admin")
    app.include_router(api_v1)
    app.include_router(health_v1.router)
    return app


app = create_app()
