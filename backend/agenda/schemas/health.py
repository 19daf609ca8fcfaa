"""Health check response."""

from ._strict_base import StrictModel


class HealthResponse(StrictModel):
    status: str
    service: str
    environment: str
    database: str
    timestamp: str
