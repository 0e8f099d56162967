"""
Intervention API Endpoints

Student-side completion of remedial work and the expiry sweep trigger for
external schedulers. Mentor assignment arrives through the escalation
webhook instead.
"""
# ruff: noqa: B008 - FastAPI Depends in function defaults is standard pattern

from fastapi import APIRouter, Depends

from alcovia.api.deps import get_controller
from alcovia.core.schemas import (
    InterventionSchema,
    RemedialComplete,
    SweepResponse,
    TransitionResponse,
)
from alcovia.intervention.state_machine import InterventionController

router = APIRouter()


@router.post("/complete", response_model=TransitionResponse)
async def complete_remedial(
    body: RemedialComplete, controller: InterventionController = Depends(get_controller)
) -> TransitionResponse:
    """Student marks the assigned remedial task as done."""
    outcome = await controller.complete_remedial(body.student_id, body.intervention_id)

    return TransitionResponse(
        message="Remedial task completed. You can now proceed with daily check-ins.",
        student_id=body.student_id,
        status=outcome.status,
        intervention=InterventionSchema.model_validate(outcome.ticket),
    )


@router.post("/sweep", response_model=SweepResponse)
async def run_expiry_sweep(
    controller: InterventionController = Depends(get_controller),
) -> SweepResponse:
    """Resolve overdue interventions now (for cron-style external triggers)."""
    report = await controller.expire_overdue()

    return SweepResponse(
        examined=report.examined,
        reminded=report.reminded,
        auto_assigned=report.auto_assigned,
        expired=report.expired,
        failed=report.failed,
        intervention_ids=report.ticket_ids,
    )
