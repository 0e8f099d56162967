"""
Check-in Schemas

Pydantic models for check-in submission and responses.
"""

from datetime import date, datetime
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from alcovia.core.models import StudentStatus


class CheckInSubmit(BaseModel):
    """Daily check-in from the student client."""

    student_id: str = Field(..., min_length=1, max_length=100)
    quiz_score: int = Field(..., ge=0, le=10, description="Quiz score out of 10")
    focus_minutes: int = Field(..., ge=0, description="Minutes of focused study")
    distraction_count: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("distraction_count", "tab_switches"),
        description="Distractions (tab switches) during the session",
    )


class CheckInLogSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_id: str
    quiz_score: int
    focus_minutes: int
    distraction_count: int
    passed: bool
    session_date: date
    created_at: datetime


class CheckInResponse(BaseModel):
    """Verdict plus everything the client needs to render the next screen."""

    passed: bool
    status: StudentStatus
    message: str
    log: CheckInLogSchema
    intervention_id: UUID | None = None
    escalation_dispatched: bool | None = None
