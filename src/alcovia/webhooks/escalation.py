"""
Mentor Dispatch Workflow Webhook

Inbound half of the escalation loop: the external workflow posts the
mentor's decision here, which assigns the remedial task and unlocks the
student into remedial mode.

Callback delivery is at-least-once, so a repeated callback for a ticket
that is already assigned is answered with 409 and changes nothing.
"""
# ruff: noqa: B008 - FastAPI Depends in function defaults is standard pattern

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, status

from alcovia.api.deps import get_controller
from alcovia.config import settings
from alcovia.core.schemas import InterventionAssign, InterventionSchema, TransitionResponse
from alcovia.intervention.state_machine import InterventionController

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/escalation", tags=["webhooks"])


def verify_callback_token(
    x_callback_token: str | None = Header(default=None, alias="X-Callback-Token"),
) -> None:
    """Reject callbacks without the shared token, when one is configured.

    Raises:
        HTTPException: 403 if the token is missing or does not match
    """
    expected = settings.ESCALATION_CALLBACK_TOKEN
    if not expected:
        return

    if x_callback_token is None or not hmac.compare_digest(x_callback_token, expected):
        logger.warning("Escalation callback rejected: invalid callback token")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid callback token")


@router.post(
    "/assign",
    response_model=TransitionResponse,
    dependencies=[Depends(verify_callback_token)],
)
async def assign_intervention(
    body: InterventionAssign,
    controller: InterventionController = Depends(get_controller),
) -> TransitionResponse:
    """Record the mentor's remedial task for a pending intervention.

    Returns:
        The assigned intervention and the student's new status (remedial)

    Raises:
        404 if the student or intervention is unknown, 409 if the
        intervention is no longer pending
    """
    logger.info(
        f"Escalation callback received for intervention {body.intervention_id}",
        extra={"student_id": body.student_id},
    )

    outcome = await controller.assign_intervention(
        body.student_id,
        body.intervention_id,
        body.remedial_task,
        body.mentor_contact,
    )

    return TransitionResponse(
        message="Intervention assigned successfully",
        student_id=body.student_id,
        status=outcome.status,
        intervention=InterventionSchema.model_validate(outcome.ticket),
    )
