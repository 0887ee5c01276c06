"""
CardSync Pro Backend — Shared Response Schemas
===============================================
"""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    What:  Standardized error response format for all API errors.

    Example:
        {
            "error": "quota_exceeded",
            "message": "You have reached the 10 contact limit of the free plan. ...",
            "details": {"plan": "free", "limit": 10, "contact_count": 10},
            "request_id": "1f2e3d4c"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str
    database: str = Field(description="connected, disconnected")
    gemini: str = Field(description="available, unavailable, circuit_open")
    uptime_seconds: float
