"""
Student API Endpoints

Provisioning plus the polling queries a client uses to rebuild its state.
"""
# ruff: noqa: B008 - FastAPI Depends in function defaults is standard pattern

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from alcovia.api.deps import get_controller
from alcovia.config import settings
from alcovia.core.database import get_db
from alcovia.core.models import Student, StudentStatus, utcnow
from alcovia.core.schemas import (
    CheckInLogSchema,
    InterventionSchema,
    StudentCreate,
    StudentHistoryResponse,
    StudentSchema,
    StudentStatusResponse,
)
from alcovia.intervention import store
from alcovia.intervention.state_machine import InterventionController

router = APIRouter()


@router.post("/", response_model=StudentSchema, status_code=status.HTTP_201_CREATED)
async def create_student(
    student_data: StudentCreate, db: AsyncSession = Depends(get_db)
) -> Student:
    """Provision a new student. Every student starts active."""
    existing = await store.find_student(db, student_data.student_id)

    if existing:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Student already exists: {student_data.student_id}",
        )

    student = Student(
        student_id=student_data.student_id,
        name=student_data.name,
        email=student_data.email,
        status=StudentStatus.ACTIVE.value,
        requires_follow_up=False,
    )

    db.add(student)
    try:
        await db.commit()
    except IntegrityError as e:
        # Lost a race with a concurrent provisioning request
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Student already exists: {student_data.student_id}",
        ) from e
    await db.refresh(student)

    return student


@router.get("/{student_id}", response_model=StudentStatusResponse)
async def get_student_status(
    student_id: str, controller: InterventionController = Depends(get_controller)
) -> StudentStatusResponse:
    """Current status and the open intervention, if any.

    Clients call this after (re)connecting the push channel, since pushed
    events carry no delivery guarantee.
    """
    snapshot = await controller.get_status(student_id)
    ticket = snapshot.active_ticket

    return StudentStatusResponse(
        student=StudentSchema.model_validate(snapshot.student),
        intervention=InterventionSchema.model_validate(ticket) if ticket else None,
        timestamp=utcnow(),
    )


@router.get("/{student_id}/history", response_model=StudentHistoryResponse)
async def get_student_history(
    student_id: str,
    log_limit: int = Query(default=settings.HISTORY_LOG_LIMIT, ge=1, le=100),
    ticket_limit: int = Query(default=settings.HISTORY_TICKET_LIMIT, ge=1, le=100),
    controller: InterventionController = Depends(get_controller),
) -> StudentHistoryResponse:
    """Past check-ins and interventions, most recent first."""
    history = await controller.get_history(
        student_id, log_limit=log_limit, ticket_limit=ticket_limit
    )

    return StudentHistoryResponse(
        student_id=student_id,
        logs=[CheckInLogSchema.model_validate(log) for log in history.logs],
        interventions=[InterventionSchema.model_validate(t) for t in history.tickets],
    )
