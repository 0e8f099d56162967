"""
Push channel events.

Serialized with ``model_dump(mode="json")`` and sent as JSON text frames.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from alcovia.core.models import StudentStatus, utcnow


class PushEvent(BaseModel):
    """Common envelope for every event pushed to a student's session."""

    event: str
    student_id: str
    timestamp: datetime = Field(default_factory=utcnow)


class StatusChanged(PushEvent):
    event: Literal["status_changed"] = "status_changed"
    status: StudentStatus
    requires_follow_up: bool = False


class InterventionAssigned(PushEvent):
    event: Literal["intervention_assigned"] = "intervention_assigned"
    status: Literal[StudentStatus.REMEDIAL] = StudentStatus.REMEDIAL
    ticket_id: UUID
    task_text: str
    mentor_contact: str
