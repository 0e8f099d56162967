"""
Alcovia SQLAlchemy Models

Three relations: students, check-in logs and intervention tickets.
"""

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, UTCDateTime, utcnow
from .checkins import CheckInLog
from .interventions import (
    OPEN_TICKET_STATUSES,
    EscalationStatus,
    InterventionTicket,
    TicketStatus,
)
from .students import Student, StudentStatus

__all__ = [
    # Base
    "Base",
    "UUIDPrimaryKeyMixin",
    "TimestampMixin",
    "UTCDateTime",
    "utcnow",
    # Students
    "Student",
    "StudentStatus",
    # Check-ins
    "CheckInLog",
    # Interventions
    "InterventionTicket",
    "TicketStatus",
    "EscalationStatus",
    "OPEN_TICKET_STATUSES",
]
