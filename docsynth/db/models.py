"""Database models using SQLModel.

Defines the persisted records of the generation service:
- DocumentTemplate: An uploaded Word or Excel template
- GenerationRequest: One request to generate a document from a template
"""

import datetime
import enum
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Uuid, func
from sqlmodel import Field, Relationship, SQLModel

from docsynth.strategies.template_engine.models import OutputKind


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class GenerationStatus(str, enum.Enum):
    """Status of a generation request.

    PENDING -> PROCESSING -> COMPLETED
                    |
                    v
                  FAILED -> PROCESSING (explicit retry only)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# =============================================================================
# Shared Models (for API responses, not database tables)
# =============================================================================


class DocumentTemplateBase(SQLModel):
    """Base template fields."""

    name: str = Field(min_length=1, max_length=150)
    description: str | None = Field(default=None, max_length=2048)
    output_kind: OutputKind
    template_path: str = Field(max_length=500)


class GenerationRequestBase(SQLModel):
    """Base generation request fields."""

    source_file_path: str | None = Field(default=None, max_length=500)
    status: GenerationStatus = Field(default=GenerationStatus.PENDING)
    result_file_path: str | None = Field(default=None, max_length=500)
    error_message: str | None = Field(default=None, max_length=2048)


# =============================================================================
# Database Models
# =============================================================================


class DocumentTemplate(DocumentTemplateBase, table=True):
    """Template model.

    Read-only while generations run; the file at ``template_path`` is never
    modified.
    """

    __tablename__ = "document_templates"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True),
    )
    created_at: datetime.datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now()),
    )
    updated_at: datetime.datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now()),
    )

    # Relationships
    generation_requests: list["GenerationRequest"] = Relationship(back_populates="template")


class GenerationRequest(GenerationRequestBase, table=True):
    """Generation request model.

    ``result_file_path`` is set only when COMPLETED and ``error_message``
    only when FAILED. The user instruction is not stored.
    """

    __tablename__ = "generation_requests"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        sa_column=Column(Uuid(as_uuid=True), primary_key=True),
    )
    template_id: uuid.UUID = Field(
        sa_column=Column(
            Uuid(as_uuid=True),
            ForeignKey("document_templates.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    task_id: str | None = Field(default=None, max_length=255, index=True)
    attempt_count: int = Field(default=0, ge=0)
    processing_started_at: datetime.datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    processing_completed_at: datetime.datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    created_at: datetime.datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now()),
    )
    updated_at: datetime.datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now()),
    )

    # Relationships
    template: DocumentTemplate = Relationship(back_populates="generation_requests")


# =============================================================================
# Response Models
# =============================================================================


class DocumentTemplateRead(DocumentTemplateBase):
    """Template response model."""

    id: uuid.UUID
    created_at: datetime.datetime
    updated_at: datetime.datetime


class GenerationRequestRead(GenerationRequestBase):
    """Generation request response model."""

    id: uuid.UUID
    template_id: uuid.UUID
    task_id: str | None
    attempt_count: int
    processing_started_at: datetime.datetime | None
    processing_completed_at: datetime.datetime | None
    created_at: datetime.datetime
    updated_at: datetime.datetime
