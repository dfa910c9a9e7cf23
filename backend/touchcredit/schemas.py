"""Pydantic schemas shared across routers."""

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(
        description="Service status",
        examples=["ok"],
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "status": "ok"
            }
        }
    }


class ErrorResponse(BaseModel):
    """Error payload returned by the attribution exception handlers."""

    detail: str = Field(description="Human readable error message")
