"""
Student Models

Student profiles and their current intervention state.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .checkins import CheckInLog
    from .interventions import InterventionTicket

from sqlalchemy import CheckConstraint, Index, String, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class StudentStatus(str, Enum):
    """Every status a student can be in. No other value is ever stored."""

    ACTIVE = "active"
    ON_TRACK = "on_track"
    NEEDS_INTERVENTION = "needs_intervention"
    REMEDIAL = "remedial"

    @property
    def is_locked(self) -> bool:
        """Locked students hold an open intervention and cannot check in."""
        return self in (StudentStatus.NEEDS_INTERVENTION, StudentStatus.REMEDIAL)


_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in StudentStatus)


class Student(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A learner taking daily check-ins.

    ``status`` is only ever written by the intervention state machine.
    """

    __tablename__ = "students"
    __table_args__ = (
        CheckConstraint(f"status IN ({_STATUS_VALUES})", name="check_student_status"),
        Index("idx_students_status", "status"),
    )

    student_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        comment="Stable external identifier supplied at provisioning",
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(
        String(255), nullable=True, comment="Contact forwarded to the mentor workflow"
    )

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=StudentStatus.ACTIVE.value,
        server_default=StudentStatus.ACTIVE.value,
    )
    requires_follow_up: Mapped[bool] = mapped_column(
        default=False,
        server_default=false(),
        comment="Set when an intervention expired unresolved; needs a follow-up meeting",
    )

    # Relationships
    check_in_logs: Mapped[list[CheckInLog]] = relationship(
        back_populates="student", order_by="CheckInLog.created_at"
    )
    intervention_tickets: Mapped[list[InterventionTicket]] = relationship(
        back_populates="student", order_by="InterventionTicket.created_at"
    )

    @property
    def current_status(self) -> StudentStatus:
        return StudentStatus(self.status)
