"""
Check-in API Endpoints

The daily logic gate. A failing check-in locks the student and escalates
to a mentor.
"""
# ruff: noqa: B008 - FastAPI Depends in function defaults is standard pattern

from fastapi import APIRouter, Depends

from alcovia.api.deps import get_controller
from alcovia.core.schemas import CheckInLogSchema, CheckInResponse, CheckInSubmit
from alcovia.intervention.state_machine import InterventionController

router = APIRouter()

PASSED_MESSAGE = "Great job! Keep up the good work."
FAILED_MESSAGE = "Your performance needs attention. A mentor will review soon."


@router.post("/", response_model=CheckInResponse)
async def submit_check_in(
    check_in: CheckInSubmit, controller: InterventionController = Depends(get_controller)
) -> CheckInResponse:
    """Submit a daily check-in.

    Pass criteria: quiz_score > 7 AND focus_minutes > 60 AND distraction_count < 3.

    Returns:
        The verdict, the stored log, the student's new status and, on
        failure, the id of the intervention that was opened
    """
    outcome = await controller.submit_check_in(
        check_in.student_id,
        check_in.quiz_score,
        check_in.focus_minutes,
        check_in.distraction_count,
    )

    return CheckInResponse(
        passed=outcome.passed,
        status=outcome.status,
        message=PASSED_MESSAGE if outcome.passed else FAILED_MESSAGE,
        log=CheckInLogSchema.model_validate(outcome.log),
        intervention_id=outcome.ticket.id if outcome.ticket else None,
        escalation_dispatched=outcome.escalation.succeeded if outcome.escalation else None,
    )
