"""Create students, check-in logs and intervention tickets

Revision ID: 3f2a9c1d7e44
Revises:
Create Date: 2026-10-19 09:00:12.481903+00:00

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f2a9c1d7e44"  # pragma: allowlist secret
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the three intervention relations.

    The partial unique index on intervention_tickets guarantees at most one
    pending/assigned ticket per student even if application locking fails.
    """
    op.create_table(
        "students",
        sa.Column("id", sa.Uuid(), nullable=False, comment="UUID primary key"),
        sa.Column(
            "student_id",
            sa.String(length=100),
            nullable=False,
            comment="Stable external identifier supplied at provisioning",
        ),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column(
            "email",
            sa.String(length=255),
            nullable=True,
            comment="Contact forwarded to the mentor workflow",
        ),
        sa.Column("status", sa.String(length=30), server_default="active", nullable=False),
        sa.Column(
            "requires_follow_up",
            sa.Boolean(),
            server_default=sa.false(),
            nullable=False,
            comment="Set when an intervention expired unresolved; needs a follow-up meeting",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
            comment="Creation timestamp (UTC)",
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
            comment="Last update timestamp (UTC)",
        ),
        sa.CheckConstraint(
            "status IN ('active', 'on_track', 'needs_intervention', 'remedial')",
            name="check_student_status",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("student_id"),
    )
    op.create_index("idx_students_status", "students", ["status"])

    op.create_table(
        "check_in_logs",
        sa.Column("id", sa.Uuid(), nullable=False, comment="UUID primary key"),
        sa.Column("student_id", sa.String(length=100), nullable=False),
        sa.Column("quiz_score", sa.Integer(), nullable=False, comment="0-10"),
        sa.Column("focus_minutes", sa.Integer(), nullable=False),
        sa.Column(
            "distraction_count",
            sa.Integer(),
            nullable=False,
            comment="Tab switches / distractions during the session",
        ),
        sa.Column("passed", sa.Boolean(), nullable=False),
        sa.Column("session_date", sa.Date(), server_default=sa.text("CURRENT_DATE"), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
            comment="Submission time (UTC)",
        ),
        sa.CheckConstraint("quiz_score >= 0 AND quiz_score <= 10", name="check_quiz_score_range"),
        sa.CheckConstraint("focus_minutes >= 0", name="check_focus_minutes_non_negative"),
        sa.CheckConstraint(
            "distraction_count >= 0", name="check_distraction_count_non_negative"
        ),
        sa.ForeignKeyConstraint(["student_id"], ["students.student_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_check_in_logs_student", "check_in_logs", ["student_id", "created_at"])
    op.create_index("idx_check_in_logs_date", "check_in_logs", ["session_date"])

    op.create_table(
        "intervention_tickets",
        sa.Column("id", sa.Uuid(), nullable=False, comment="UUID primary key"),
        sa.Column("student_id", sa.String(length=100), nullable=False),
        sa.Column(
            "trigger_log_id",
            sa.Uuid(),
            nullable=True,
            comment="Check-in that opened this ticket",
        ),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("remedial_task", sa.Text(), nullable=True),
        sa.Column("mentor_contact", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "auto_assigned",
            sa.Boolean(),
            nullable=False,
            comment="Task was chosen by the system, not a mentor",
        ),
        sa.Column("escalation_status", sa.String(length=20), nullable=False),
        sa.Column("escalation_attempts", sa.Integer(), nullable=False),
        sa.Column("escalation_error", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'assigned', 'completed', 'expired')",
            name="check_ticket_status",
        ),
        sa.CheckConstraint(
            "escalation_status IN ('not_sent', 'sent', 'failed')",
            name="check_ticket_escalation_status",
        ),
        sa.ForeignKeyConstraint(["student_id"], ["students.student_id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["trigger_log_id"], ["check_in_logs.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_intervention_tickets_student", "intervention_tickets", ["student_id", "created_at"]
    )
    op.create_index(
        "idx_intervention_tickets_status", "intervention_tickets", ["status", "expires_at"]
    )
    op.create_index(
        "uq_intervention_tickets_one_open_per_student",
        "intervention_tickets",
        ["student_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'assigned')"),
    )


def downgrade() -> None:
    """Drop the intervention relations."""
    op.drop_index("uq_intervention_tickets_one_open_per_student", table_name="intervention_tickets")
    op.drop_index("idx_intervention_tickets_status", table_name="intervention_tickets")
    op.drop_index("idx_intervention_tickets_student", table_name="intervention_tickets")
    op.drop_table("intervention_tickets")

    op.drop_index("idx_check_in_logs_date", table_name="check_in_logs")
    op.drop_index("idx_check_in_logs_student", table_name="check_in_logs")
    op.drop_table("check_in_logs")

    op.drop_index("idx_students_status", table_name="students")
    op.drop_table("students")
