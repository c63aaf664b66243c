"""
CareBridge Backend — Shared Response Schemas
==============================================

What:  Error envelope, health and confirmation responses used by every router.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Standardized error response format for all API errors.

    Example:
        {
            "error": "validation_error",
            "message": "Contract must be signed by both parties",
            "details": {"field": "contract_status"},
            "request_id": "a1b2c3d4"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class MessageResponse(BaseModel):
    message: str = Field(description="Human-readable confirmation")


class HealthResponse(BaseModel):
    """Service and dependency status returned by GET /health."""
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    redis: str = Field(description="Key-value store connectivity: connected, disconnected")
    ledger: str = Field(description="Ledger circuit state: available, circuit_open")
    uptime_seconds: float = Field(description="Seconds since service started")
