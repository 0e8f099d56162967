"""
Intervention Schemas

Pydantic models for mentor callbacks, remedial completion and ticket views.
"""

from datetime import datetime
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from alcovia.core.models import EscalationStatus, StudentStatus, TicketStatus


class InterventionAssign(BaseModel):
    """Callback body from the mentor dispatch workflow."""

    student_id: str = Field(..., min_length=1, max_length=100)
    intervention_id: UUID
    remedial_task: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        validation_alias=AliasChoices("remedial_task", "task_text"),
    )
    mentor_contact: str = Field(
        ...,
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices("mentor_contact", "mentor_email"),
    )


class RemedialComplete(BaseModel):
    student_id: str = Field(..., min_length=1, max_length=100)
    intervention_id: UUID


class InterventionSchema(BaseModel):
    """Full ticket view."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_id: str
    trigger_log_id: UUID | None
    status: TicketStatus
    remedial_task: str | None
    mentor_contact: str | None
    auto_assigned: bool
    created_at: datetime
    expires_at: datetime
    assigned_at: datetime | None
    completed_at: datetime | None
    expired_at: datetime | None
    escalation_status: EscalationStatus
    escalation_attempts: int


class TransitionResponse(BaseModel):
    """Definite new state after an assign or complete."""

    success: bool = True
    message: str
    student_id: str
    status: StudentStatus
    intervention: InterventionSchema


class SweepResponse(BaseModel):
    examined: int
    reminded: int
    auto_assigned: int
    expired: int
    failed: int
    intervention_ids: list[UUID]
