"""
Student Schemas

Pydantic models for provisioning and status queries.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from alcovia.core.models import StudentStatus

from .checkins import CheckInLogSchema
from .interventions import InterventionSchema


class StudentCreate(BaseModel):
    """Schema for provisioning a student."""

    student_id: str = Field(
        ...,
        min_length=1,
        max_length=100,
        pattern=r"^[A-Za-z0-9_.:@-]+$",
        description="Stable external identifier",
    )
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr | None = None


class StudentSchema(BaseModel):
    """Full student schema for responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_id: str
    name: str
    email: str | None
    status: StudentStatus
    requires_follow_up: bool
    created_at: datetime
    updated_at: datetime


class StudentStatusResponse(BaseModel):
    """Authoritative state a client re-syncs from after (re)connecting."""

    student: StudentSchema
    intervention: InterventionSchema | None
    timestamp: datetime


class StudentHistoryResponse(BaseModel):
    """Most recent first."""

    student_id: str
    logs: list[CheckInLogSchema]
    interventions: list[InterventionSchema]
