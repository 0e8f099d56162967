"""
Mentor Dispatch Workflow Client

Sends failed check-ins to the external escalation workflow (an automation
webhook) which routes them to a human mentor. The mentor's decision comes
back through ``alcovia.webhooks.escalation``.

The call is best effort: one attempt per trigger, bounded by a timeout.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

import httpx

from alcovia.config import settings
from alcovia.core.models import utcnow

logger = logging.getLogger(__name__)


class EscalationError(Exception):
    """Escalation workflow call failed (transport error, timeout or non-2xx)."""

    pass


@dataclass(frozen=True)
class EscalationRequest:
    """Snapshot of everything the mentor workflow needs to act on a ticket."""

    student_id: str
    student_name: str
    student_email: str | None
    quiz_score: int
    focus_minutes: int
    distraction_count: int
    intervention_id: UUID
    expires_at: datetime
    reminder: bool = False

    def to_payload(self, callback_url: str | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "student_id": self.student_id,
            "student_name": self.student_name,
            "student_email": self.student_email,
            "quiz_score": self.quiz_score,
            "focus_minutes": self.focus_minutes,
            "distraction_count": self.distraction_count,
            "intervention_id": str(self.intervention_id),
            "expires_at": self.expires_at.isoformat(),
            "reminder": self.reminder,
            "timestamp": utcnow().isoformat(),
        }

        if callback_url:
            payload["callback_url"] = callback_url

        return payload


@dataclass(frozen=True)
class EscalationResult:
    """What happened to one dispatch attempt."""

    attempted: bool
    succeeded: bool
    error: str | None = None


class EscalationGateway:
    """Client for the mentor dispatch webhook."""

    def __init__(
        self,
        *,
        webhook_url: str,
        timeout: float = 10.0,
        callback_url: str | None = None,
    ):
        """Initialize the gateway.

        Args:
            webhook_url: Workflow endpoint; empty string disables dispatch
            timeout: Upper bound in seconds for the whole request
            callback_url: Where the workflow should post the mentor's decision
        """
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.callback_url = callback_url

    @classmethod
    def from_settings(cls) -> EscalationGateway:
        """Create gateway from application settings."""
        return cls(
            webhook_url=settings.ESCALATION_WEBHOOK_URL,
            timeout=settings.ESCALATION_TIMEOUT_SECONDS,
            callback_url=settings.callback_url,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def dispatch(self, request: EscalationRequest) -> EscalationResult:
        """Send one escalation, never raising.

        Failures are logged and reported in the result so the caller can
        record them without aborting its own operation.
        """
        if not self.enabled:
            logger.warning(
                f"Escalation webhook not configured; intervention {request.intervention_id} "
                "was not dispatched",
                extra={"student_id": request.student_id},
            )
            return EscalationResult(attempted=False, succeeded=False)

        try:
            await self.send(request)
        except EscalationError as e:
            logger.error(
                f"Failed to dispatch intervention {request.intervention_id}: {e}",
                extra={"student_id": request.student_id, "reminder": request.reminder},
            )
            return EscalationResult(attempted=True, succeeded=False, error=str(e))

        return EscalationResult(attempted=True, succeeded=True)

    async def send(self, request: EscalationRequest) -> None:
        """POST the escalation to the workflow.

        Raises:
            EscalationError: If the request fails, times out, or gets a non-2xx response
        """
        payload = request.to_payload(self.callback_url)

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.webhook_url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                    timeout=self.timeout,
                )

                if not 200 <= response.status_code < 300:
                    logger.error(
                        f"Escalation workflow returned {response.status_code}",
                        extra={"intervention_id": payload["intervention_id"]},
                    )
                    raise EscalationError(
                        f"Escalation workflow returned HTTP {response.status_code}"
                    )

                logger.info(
                    f"Escalation dispatched for intervention {payload['intervention_id']}",
                    extra={"student_id": request.student_id, "reminder": request.reminder},
                )

        except httpx.TimeoutException as e:
            raise EscalationError(f"Timed out after {self.timeout}s: {e}") from e
        except httpx.HTTPError as e:
            raise EscalationError(f"HTTP error: {e}") from e
