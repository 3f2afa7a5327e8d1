"""
Supply Tracker Backend: Shared Schema Pieces
==============================================

What:  The camelCase base model and the error/health/message envelopes used
       by every endpoint.
How:   `ApiModel` serializes field `day_of_month` as `dayOfMonth` and accepts
       either spelling on input.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base for every API schema: camelCase aliases, ORM attribute reading."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class MessageResponse(ApiModel):
    message: str = Field(description="Human-readable outcome")


class ErrorResponse(BaseModel):
    """
    Standardized error response format for all API errors.

    Fields:
        error: Machine-readable error kind (e.g. "validation_error", "forbidden")
        message: Human-readable description for display to users
        details: Optional extra context (e.g. which field failed validation)
        request_id: Correlation ID for tracing this error in server logs

    Example:
        {
            "error": "dependency_blocked",
            "message": "Cannot delete facility: 3 patients still reference it",
            "details": {"blocking_count": 3, "dependent": "patients"},
            "request_id": "1f2e3d4c"
        }
    """
    error: str = Field(description="Machine-readable error kind")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """Returned by GET /api/health for monitoring and load balancer checks."""
    status: str = Field(description="Overall service status: healthy, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    uptime_seconds: float = Field(description="Seconds since service started")
