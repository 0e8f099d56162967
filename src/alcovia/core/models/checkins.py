"""
Check-in Models

Append-only audit trail of daily check-in submissions.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .students import Student

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, UUIDPrimaryKeyMixin, utcnow


class CheckInLog(Base, UUIDPrimaryKeyMixin):
    """One check-in and the verdict the gate produced for it.

    Rows are never updated or deleted once written.
    """

    __tablename__ = "check_in_logs"
    __table_args__ = (
        CheckConstraint("quiz_score >= 0 AND quiz_score <= 10", name="check_quiz_score_range"),
        CheckConstraint("focus_minutes >= 0", name="check_focus_minutes_non_negative"),
        CheckConstraint("distraction_count >= 0", name="check_distraction_count_non_negative"),
        Index("idx_check_in_logs_student", "student_id", "created_at"),
        Index("idx_check_in_logs_date", "session_date"),
    )

    student_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("students.student_id", ondelete="CASCADE"), nullable=False
    )

    quiz_score: Mapped[int] = mapped_column(Integer, nullable=False, comment="0-10")
    focus_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    distraction_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Tab switches / distractions during the session"
    )
    passed: Mapped[bool] = mapped_column(nullable=False)

    session_date: Mapped[date] = mapped_column(
        Date, nullable=False, default=lambda: utcnow().date(), server_default=func.current_date()
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False, comment="Submission time (UTC)"
    )

    # Relationships
    student: Mapped[Student] = relationship(back_populates="check_in_logs")
