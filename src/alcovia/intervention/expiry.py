"""
Intervention Expiry

Policies decide what the sweep does with each open ticket; the sweeper runs
the sweep periodically in the background.

Two policies ship:

- ``DefaultExpiryPolicy``: a ticket past ``expires_at`` is expired and the
  student released to active with a follow-up flag.
- ``TieredExpiryPolicy``: measured from ticket creation,
  0-6h await, 6-12h remind the mentor workflow once, 12-24h auto-assign a
  default task, 24h+ expire and release with a follow-up flag.

Either way a ticket always reaches a terminal state within a bounded time.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from alcovia.core.models import InterventionTicket, TicketStatus

if TYPE_CHECKING:
    from alcovia.config import Settings
    from alcovia.intervention.state_machine import InterventionController

logger = logging.getLogger(__name__)


class ExpiryAction(str, Enum):
    NONE = "none"
    REMIND = "remind"
    AUTO_ASSIGN = "auto_assign"
    EXPIRE = "expire"


class ExpiryPolicy(Protocol):
    """Hook consulted by the sweep for every open ticket."""

    def decide(self, ticket: InterventionTicket, now: datetime) -> ExpiryAction: ...

    def deadline_after_assign(self, ticket: InterventionTicket) -> datetime: ...


class DefaultExpiryPolicy:
    """Expire anything open past its deadline; nothing else."""

    def decide(self, ticket: InterventionTicket, now: datetime) -> ExpiryAction:
        if ticket.is_open and now >= ticket.expires_at:
            return ExpiryAction.EXPIRE
        return ExpiryAction.NONE

    def deadline_after_assign(self, ticket: InterventionTicket) -> datetime:
        return ticket.expires_at


class TieredExpiryPolicy:
    """Escalating response to a mentor who has not picked up a ticket.

    Only pending tickets are reminded or auto-assigned. Assignment, whether
    by a mentor or by the system, moves the deadline to the force release
    horizon; an assigned ticket expires once that stored deadline passes.
    """

    def __init__(
        self,
        *,
        remind_after: timedelta = timedelta(hours=6),
        auto_assign_after: timedelta = timedelta(hours=12),
        force_release_after: timedelta = timedelta(hours=24),
    ):
        if not remind_after < auto_assign_after < force_release_after:
            raise ValueError("Tier boundaries must be strictly increasing")

        self.remind_after = remind_after
        self.auto_assign_after = auto_assign_after
        self.force_release_after = force_release_after

    def decide(self, ticket: InterventionTicket, now: datetime) -> ExpiryAction:
        if not ticket.is_open:
            return ExpiryAction.NONE

        age = now - ticket.created_at

        if age >= self.force_release_after:
            return ExpiryAction.EXPIRE

        if ticket.current_status is TicketStatus.PENDING:
            if age >= self.auto_assign_after:
                return ExpiryAction.AUTO_ASSIGN
            if age >= self.remind_after and ticket.reminder_sent_at is None:
                return ExpiryAction.REMIND
        elif now >= ticket.expires_at:
            return ExpiryAction.EXPIRE

        return ExpiryAction.NONE

    def deadline_after_assign(self, ticket: InterventionTicket) -> datetime:
        return ticket.created_at + self.force_release_after


def build_policy(settings: Settings) -> ExpiryPolicy:
    """Policy selected by ``EXPIRY_POLICY``."""
    if settings.EXPIRY_POLICY == "tiered":
        return TieredExpiryPolicy(
            remind_after=timedelta(hours=settings.REMINDER_AFTER_HOURS),
            auto_assign_after=timedelta(hours=settings.AUTO_ASSIGN_AFTER_HOURS),
            force_release_after=timedelta(hours=settings.FORCE_RELEASE_AFTER_HOURS),
        )
    return DefaultExpiryPolicy()


class ExpirySweeper:
    """Background task that runs the expiry sweep every ``interval`` seconds."""

    def __init__(self, controller: InterventionController, interval: float):
        self.controller = controller
        self.interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.interval <= 0:
            logger.info("Expiry sweeper disabled (interval is 0)")
            return
        if self.running:
            return

        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Expiry sweeper started (every {self.interval:.0f}s)")

    async def stop(self) -> None:
        if self._task is None:
            return

        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Expiry sweeper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                report = await self.controller.expire_overdue()
            except Exception as e:
                # Keep sweeping; the next tick retries whatever failed
                logger.error(f"Expiry sweep failed: {e}", exc_info=True)
                continue

            if report.acted:
                logger.info(
                    f"Expiry sweep: {report.expired} expired, "
                    f"{report.auto_assigned} auto-assigned, {report.reminded} reminded",
                    extra={"examined": report.examined, "failed": report.failed},
                )
