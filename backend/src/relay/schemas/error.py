"""Structured error response schemas."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    field: str | None = Field(default=None, description="Field that caused the error (for validation errors)")
    value: Any | None = Field(default=None, description="Invalid value (for validation errors)")


class ErrorResponse(BaseModel):
    """Standard error body returned by every exception handler."""

    error: str = Field(..., description="Error type (e.g., 'ValidationError', 'NotFound')")
    message: str = Field(..., description="Primary error message")
    details: list[ErrorDetail] | None = Field(default=None, description="Detailed error information")
    remediation: str | None = Field(default=None, description="Suggestion for fixing the error")
    request_id: str | None = Field(default=None, description="Request ID for tracing")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Error timestamp")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "NotFound",
                "message": "DLQ entry not found",
                "details": [{"code": "dead_letter_not_found", "message": "DLQ entry not found"}],
                "remediation": "List entries with GET /v1/dead-letters to find a valid id",
                "request_id": "req_1234567890",
                "timestamp": "2024-01-15T10:30:00Z",
            }
        }
    )


class ErrorCode:
    """Standard error codes used across the API."""

    # Validation errors (422)
    VALIDATION_ERROR = "validation_error"
    INVALID_UUID = "invalid_uuid"
    MISSING_REQUIRED_FIELD = "missing_required_field"

    # Not found errors (404)
    WEBHOOK_NOT_FOUND = "webhook_not_found"
    DEAD_LETTER_NOT_FOUND = "dead_letter_not_found"

    # State errors (409)
    INVALID_STATE_TRANSITION = "invalid_state_transition"

    # External service errors (503)
    DATABASE_ERROR = "database_error"

    # Internal errors (500)
    INTERNAL_ERROR = "internal_error"


REMEDIATION_HINTS = {
    ErrorCode.WEBHOOK_NOT_FOUND: "Verify the webhook ID is correct and the webhook exists",
    ErrorCode.DEAD_LETTER_NOT_FOUND: "List entries with GET /v1/dead-letters to find a valid id",
    ErrorCode.INVALID_STATE_TRANSITION: "Reload the webhook; its status changed since it was read",
    ErrorCode.DATABASE_ERROR: "Database temporarily unavailable. Please try again in a few moments.",
}
