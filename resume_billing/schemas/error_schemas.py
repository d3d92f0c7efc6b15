"""Error response schemas for API documentation."""

from typing import Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error envelope."""
    error: str = Field(..., description="Error type identifier", examples=["NotFound"])
    message: str = Field(..., description="Human-readable error message")
    request_id: Optional[str] = Field(None, description="Request ID for support and log correlation")
    details: Optional[Any] = Field(None, description="Additional error details")


class InsufficientCreditsResponse(ErrorResponse):
    """Returned with 402 when a paid action cannot be afforded."""
    required: int = Field(..., description="Credits the action costs")
    available: int = Field(..., description="Credits the user has")

    model_config = {
        "json_schema_extra": {
            "example": {
                "error": "InsufficientCredits",
                "message": "Insufficient credits",
                "required": 3,
                "available": 2
            }
        }
    }
