"""API request and response schemas.

Pydantic v2 models for API serialization/deserialization.
"""

import enum
from typing import Any

from pydantic import BaseModel, Field

from docsynth.db.models import DocumentTemplateRead, GenerationRequestRead


class DispatchMode(str, enum.Enum):
    """How a generation request is executed."""

    ASYNC = "async"  # queued on the Celery worker, retried with backoff
    SYNC = "sync"  # one attempt inside the HTTP request


# =============================================================================
# Template Schemas
# =============================================================================


class TemplateListResponse(BaseModel):
    """Response for listing templates."""

    templates: list[DocumentTemplateRead] = Field(default_factory=list)
    total: int = Field(default=0, ge=0)


# =============================================================================
# Generation Schemas
# =============================================================================


class GenerationResponse(BaseModel):
    """Response for creating or retrying a generation."""

    request: GenerationRequestRead
    dispatch: DispatchMode
    message: str


# =============================================================================
# Error Schemas
# =============================================================================


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str = Field(description="Error message")
    error_code: str | None = Field(default=None, description="Application-specific error code")
    extra: dict[str, Any] | None = Field(default=None, description="Additional error context")
