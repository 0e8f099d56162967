"""
Intervention Models

One ticket per escalation-to-resolution cycle.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from .checkins import CheckInLog
    from .students import Student

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, UUIDPrimaryKeyMixin, utcnow


class TicketStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    COMPLETED = "completed"
    EXPIRED = "expired"

    @property
    def is_open(self) -> bool:
        return self in (TicketStatus.PENDING, TicketStatus.ASSIGNED)


class EscalationStatus(str, Enum):
    """Outcome of the last outbound call to the mentor dispatch workflow."""

    NOT_SENT = "not_sent"
    SENT = "sent"
    FAILED = "failed"


OPEN_TICKET_STATUSES = (TicketStatus.PENDING.value, TicketStatus.ASSIGNED.value)

_TICKET_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in TicketStatus)
_ESCALATION_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in EscalationStatus)
_OPEN_PREDICATE = text("status IN ('pending', 'assigned')")


class InterventionTicket(Base, UUIDPrimaryKeyMixin):
    """Tracks a single failed check-in through mentor assignment to resolution.

    A student never has more than one ticket in pending/assigned; the partial
    unique index below backs that up at the storage level.
    """

    __tablename__ = "intervention_tickets"
    __table_args__ = (
        CheckConstraint(f"status IN ({_TICKET_STATUS_VALUES})", name="check_ticket_status"),
        CheckConstraint(
            f"escalation_status IN ({_ESCALATION_STATUS_VALUES})",
            name="check_ticket_escalation_status",
        ),
        Index("idx_intervention_tickets_student", "student_id", "created_at"),
        Index("idx_intervention_tickets_status", "status", "expires_at"),
        Index(
            "uq_intervention_tickets_one_open_per_student",
            "student_id",
            unique=True,
            postgresql_where=_OPEN_PREDICATE,
            sqlite_where=_OPEN_PREDICATE,
        ),
    )

    student_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("students.student_id", ondelete="CASCADE"), nullable=False
    )
    trigger_log_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("check_in_logs.id"), nullable=True, comment="Check-in that opened this ticket"
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TicketStatus.PENDING.value
    )

    # Filled in by the mentor callback (or the system on auto-assignment)
    remedial_task: Mapped[str | None] = mapped_column(Text, nullable=True)
    mentor_contact: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Lifecycle timestamps
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    assigned_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    expired_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reminder_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)

    auto_assigned: Mapped[bool] = mapped_column(
        default=False, comment="Task was chosen by the system, not a mentor"
    )

    # Outbound escalation bookkeeping (never affects status)
    escalation_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EscalationStatus.NOT_SENT.value
    )
    escalation_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    escalation_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    student: Mapped[Student] = relationship(back_populates="intervention_tickets")
    trigger_log: Mapped[CheckInLog | None] = relationship()

    @property
    def current_status(self) -> TicketStatus:
        return TicketStatus(self.status)

    @property
    def is_open(self) -> bool:
        return self.current_status.is_open
