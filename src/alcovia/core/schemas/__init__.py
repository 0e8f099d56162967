"""Pydantic schemas for API validation."""

from .checkins import CheckInLogSchema, CheckInResponse, CheckInSubmit
from .interventions import (
    InterventionAssign,
    InterventionSchema,
    RemedialComplete,
    SweepResponse,
    TransitionResponse,
)
from .students import (
    StudentCreate,
    StudentHistoryResponse,
    StudentSchema,
    StudentStatusResponse,
)

__all__ = [
    # Check-ins
    "CheckInSubmit",
    "CheckInLogSchema",
    "CheckInResponse",
    # Interventions
    "InterventionAssign",
    "RemedialComplete",
    "InterventionSchema",
    "TransitionResponse",
    "SweepResponse",
    # Students
    "StudentCreate",
    "StudentSchema",
    "StudentStatusResponse",
    "StudentHistoryResponse",
]
