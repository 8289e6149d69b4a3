"""Pydantic models for health endpoints."""

from pydantic import BaseModel


class HealthCheckResponse(BaseModel):
    """Response model for service health checks."""

    status: str = "healthy"
    environment: str = "development"
    checkout_sdk_loaded: bool = False
    active_purchase_sessions: int = 0
