"""
Record store queries.

Thin helpers over an ``AsyncSession`` for the three relations. Callers own
the transaction; nothing here commits.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import select

from alcovia.core.exceptions import NotFoundError
from alcovia.core.models import (
    OPEN_TICKET_STATUSES,
    CheckInLog,
    InterventionTicket,
    Student,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


async def find_student(
    db: AsyncSession, student_id: str, *, for_update: bool = False
) -> Student | None:
    stmt = select(Student).where(Student.student_id == student_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_student(db: AsyncSession, student_id: str, *, for_update: bool = False) -> Student:
    """Load a student by external id.

    Args:
        db: Database session
        student_id: External student identifier
        for_update: Lock the row until the transaction ends

    Raises:
        NotFoundError: If no such student exists
    """
    student = await find_student(db, student_id, for_update=for_update)
    if student is None:
        raise NotFoundError(f"Student not found: {student_id}")
    return student


async def get_ticket(
    db: AsyncSession, student_id: str, ticket_id: UUID, *, for_update: bool = False
) -> InterventionTicket:
    """Load a ticket that must belong to the given student.

    A ticket owned by another student is reported as not found rather than
    leaking its existence.
    """
    stmt = select(InterventionTicket).where(InterventionTicket.id == ticket_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    ticket = result.scalar_one_or_none()

    if ticket is None or ticket.student_id != student_id:
        raise NotFoundError(f"Intervention not found for student {student_id}: {ticket_id}")

    return ticket


async def get_open_ticket(db: AsyncSession, student_id: str) -> InterventionTicket | None:
    """The student's pending or assigned ticket, if any."""
    result = await db.execute(
        select(InterventionTicket)
        .where(InterventionTicket.student_id == student_id)
        .where(InterventionTicket.status.in_(OPEN_TICKET_STATUSES))
        .order_by(InterventionTicket.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_open_tickets(db: AsyncSession) -> Sequence[InterventionTicket]:
    """All pending/assigned tickets, oldest first."""
    result = await db.execute(
        select(InterventionTicket)
        .where(InterventionTicket.status.in_(OPEN_TICKET_STATUSES))
        .order_by(InterventionTicket.created_at)
    )
    return result.scalars().all()


async def recent_logs(db: AsyncSession, student_id: str, limit: int) -> Sequence[CheckInLog]:
    result = await db.execute(
        select(CheckInLog)
        .where(CheckInLog.student_id == student_id)
        .order_by(CheckInLog.created_at.desc())
        .limit(limit)
    )
    return result.scalars().all()


async def recent_tickets(
    db: AsyncSession, student_id: str, limit: int
) -> Sequence[InterventionTicket]:
    result = await db.execute(
        select(InterventionTicket)
        .where(InterventionTicket.student_id == student_id)
        .order_by(InterventionTicket.created_at.desc())
        .limit(limit)
    )
    return result.scalars().all()
