# backend/agenda/routes/v1/health.py
"""
Health and metrics endpoints for monitoring and load balancer health checks.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...api.dependencies import get_db
from ...core.config import settings
from ...database import with_db_retry
from ...monitoring.prometheus_metrics import prometheus_metrics
from ...schemas.health import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health_check(db: Session = Depends(get_db)) -> HealthResponse:
    """
    Health check endpoint.

    Reports the database as unreachable instead of failing the request.
    """
    database = "ok"
    try:
        with_db_retry("health_check", lambda: db.execute(text("SELECT 1")))
    except SQLAlchemyError as exc:
        logger.warning("Health check database ping failed: %s", exc)
        database = "unavailable"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        service="agenda-api",
        environment=settings.environment,
        database=database,
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    )


@router.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.get_content_type(),
    )
