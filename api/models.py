"""
API response models for CarLot's JSON surface.

The web UI answers with rendered HTML; only /api/ paths answer with JSON.
These Pydantic v2 models define that JSON contract: the health payload and
the error envelope every /api/ failure is wrapped in, so clients can parse
errors without choosing a schema by status code.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None
    fields: dict[str, str] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Envelope for all /api/ error responses: {"error": {...}}."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
