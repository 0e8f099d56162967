"""
Intervention State Machine

Owns every student status transition:

    active / on_track --(check-in passes)--> on_track
    active / on_track --(check-in fails)---> needs_intervention  (+ pending ticket)
    needs_intervention --(mentor assigns)--> remedial            (ticket assigned)
    remedial ----------(student completes)-> active              (ticket completed)
    needs_intervention / remedial --(ticket expires)--> active   (follow-up required)

Each operation runs under the student's lock in a single transaction that
also locks the student row, so concurrent requests for one student are
serialized while different students proceed independently. Events are
published and the mentor workflow is called only after the transaction
commits.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from alcovia.core.exceptions import ConflictError, StorageError
from alcovia.core.models import (
    CheckInLog,
    EscalationStatus,
    InterventionTicket,
    Student,
    StudentStatus,
    TicketStatus,
    utcnow,
)
from alcovia.core.validation import (
    validate_check_in,
    validate_mentor_contact,
    validate_student_id,
    validate_task_text,
)
from alcovia.escalation.gateway import EscalationGateway, EscalationRequest, EscalationResult
from alcovia.intervention import store
from alcovia.intervention.expiry import DefaultExpiryPolicy, ExpiryAction, ExpiryPolicy
from alcovia.intervention.gate import evaluate_check_in
from alcovia.intervention.locks import StudentLockRegistry
from alcovia.notifications.events import InterventionAssigned, StatusChanged

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from alcovia.notifications.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass
class CheckInOutcome:
    """Result of a check-in submission."""

    log: CheckInLog
    status: StudentStatus
    ticket: InterventionTicket | None = None
    escalation: EscalationResult | None = None

    @property
    def passed(self) -> bool:
        return self.log.passed


@dataclass
class TransitionOutcome:
    """Result of an assign or complete operation."""

    ticket: InterventionTicket
    status: StudentStatus


@dataclass
class StudentSnapshot:
    student: Student
    active_ticket: InterventionTicket | None


@dataclass
class StudentHistory:
    logs: list[CheckInLog]
    tickets: list[InterventionTicket]


@dataclass
class SweepReport:
    """What one expiry sweep did."""

    examined: int = 0
    reminded: int = 0
    auto_assigned: int = 0
    expired: int = 0
    failed: int = 0
    ticket_ids: list[UUID] = field(default_factory=list)

    @property
    def acted(self) -> bool:
        return bool(self.reminded or self.auto_assigned or self.expired or self.failed)

    def record(self, ticket_id: UUID, action: ExpiryAction) -> None:
        if action is ExpiryAction.NONE:
            return
        if action is ExpiryAction.REMIND:
            self.reminded += 1
        elif action is ExpiryAction.AUTO_ASSIGN:
            self.auto_assigned += 1
        elif action is ExpiryAction.EXPIRE:
            self.expired += 1
        self.ticket_ids.append(ticket_id)


class InterventionController:
    """Validates transitions, mutates records and emits domain events."""

    # Hard cap on history page size
    MAX_HISTORY_LIMIT = 100

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: NotificationDispatcher,
        gateway: EscalationGateway,
        policy: ExpiryPolicy | None = None,
        locks: StudentLockRegistry | None = None,
        window: timedelta = timedelta(hours=12),
        default_task: str = "Review the material from your last session.",
        system_contact: str = "system",
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the controller.

        Args:
            session_factory: Creates one session per operation
            dispatcher: Push notification routing
            gateway: Outbound mentor workflow client
            policy: Expiry hook (defaults to plain deadline expiry)
            locks: Per-student lock registry (shared across controllers in a process)
            window: How long a new ticket stays open before it is overdue
            default_task: Task used when the policy auto-assigns
            system_contact: Mentor contact recorded on auto-assignment
            clock: Source of "now" (UTC, timezone-aware)
        """
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._gateway = gateway
        self._policy = policy or DefaultExpiryPolicy()
        self._locks = locks or StudentLockRegistry()
        self._window = window
        self._default_task = default_task
        self._system_contact = system_contact
        self._clock = clock

    @property
    def policy(self) -> ExpiryPolicy:
        return self._policy

    # ========================================================================
    # TRANSACTIONS
    # ========================================================================

    @asynccontextmanager
    async def _transaction(self, student_id: str) -> AsyncIterator[AsyncSession]:
        """Serialize on the student and run one all-or-nothing transaction."""
        async with self._locks.hold(student_id):
            async with self._session_factory() as db:
                try:
                    async with db.begin():
                        yield db
                except IntegrityError as e:
                    logger.warning(f"Integrity conflict for student {student_id}: {e.orig}")
                    raise ConflictError(
                        f"Concurrent change detected for student {student_id}; reload and retry"
                    ) from e
                except SQLAlchemyError as e:
                    logger.error(f"Storage failure for student {student_id}: {e}")
                    raise StorageError("Storage unavailable; no changes were made", e) from e

    @asynccontextmanager
    async def _read_session(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as db:
            try:
                yield db
            except SQLAlchemyError as e:
                raise StorageError("Storage unavailable", e) from e

    # ========================================================================
    # OPERATIONS
    # ========================================================================

    async def submit_check_in(
        self,
        student_id: str,
        quiz_score: int,
        focus_minutes: int,
        distraction_count: int = 0,
    ) -> CheckInOutcome:
        """Record a check-in and move the student to on_track or needs_intervention.

        Raises:
            ValidationError: Figures out of range
            NotFoundError: Unknown student
            ConflictError: Student already has an open intervention
            StorageError: Nothing was written
        """
        student_id = validate_student_id(student_id)
        quiz_score, focus_minutes, distraction_count = validate_check_in(
            quiz_score, focus_minutes, distraction_count
        )
        passed = evaluate_check_in(quiz_score, focus_minutes, distraction_count)
        now = self._clock()

        ticket: InterventionTicket | None = None

        async with self._transaction(student_id) as db:
            student = await store.get_student(db, student_id, for_update=True)

            if student.current_status.is_locked:
                raise ConflictError(
                    f"Student {student_id} is locked ({student.status}); "
                    "resolve the open intervention before checking in again"
                )

            log = CheckInLog(
                student_id=student_id,
                quiz_score=quiz_score,
                focus_minutes=focus_minutes,
                distraction_count=distraction_count,
                passed=passed,
                session_date=now.date(),
                created_at=now,
            )
            db.add(log)
            await db.flush()

            if passed:
                student.status = StudentStatus.ON_TRACK.value
            else:
                student.status = StudentStatus.NEEDS_INTERVENTION.value
                ticket = InterventionTicket(
                    student_id=student_id,
                    trigger_log_id=log.id,
                    status=TicketStatus.PENDING.value,
                    created_at=now,
                    expires_at=now + self._window,
                    auto_assigned=False,
                    escalation_status=EscalationStatus.NOT_SENT.value,
                    escalation_attempts=0,
                )
                db.add(ticket)
                await db.flush()

        status = StudentStatus(student.status)

        if ticket is None:
            logger.info(f"Student {student_id} passed daily check-in")
            outcome = CheckInOutcome(log=log, status=status)
        else:
            logger.info(
                f"Student {student_id} failed check-in; intervention {ticket.id} opened",
                extra={"quiz_score": quiz_score, "focus_minutes": focus_minutes},
            )
            escalation = await self._escalate(
                ticket, self._escalation_request(student, ticket, log)
            )
            outcome = CheckInOutcome(log=log, status=status, ticket=ticket, escalation=escalation)

        self._dispatcher.publish(student_id, StatusChanged(student_id=student_id, status=status))
        return outcome

    async def assign_intervention(
        self,
        student_id: str,
        ticket_id: UUID,
        task_text: str,
        mentor_contact: str,
    ) -> TransitionOutcome:
        """Apply the mentor's decision: ticket assigned, student remedial.

        Duplicate callbacks for an already-assigned ticket are rejected and
        leave the student untouched.

        Raises:
            ValidationError: Empty task or contact
            NotFoundError: Unknown student, or ticket not owned by the student
            ConflictError: Ticket is not pending, or its deadline has passed
        """
        student_id = validate_student_id(student_id)
        task_text = validate_task_text(task_text)
        mentor_contact = validate_mentor_contact(mentor_contact)
        now = self._clock()

        async with self._transaction(student_id) as db:
            student = await store.get_student(db, student_id, for_update=True)
            ticket = await store.get_ticket(db, student_id, ticket_id, for_update=True)

            if ticket.current_status is not TicketStatus.PENDING:
                raise ConflictError(
                    f"Intervention {ticket_id} is already {ticket.status}; assignment rejected"
                )
            if now >= ticket.expires_at:
                raise ConflictError(
                    f"Intervention {ticket_id} passed its deadline at "
                    f"{ticket.expires_at.isoformat()}; assignment rejected"
                )

            self._apply_assignment(student, ticket, task_text, mentor_contact, now)
            ticket.expires_at = self._policy.deadline_after_assign(ticket)

        logger.info(
            f"Remedial task assigned to student {student_id}",
            extra={"intervention_id": str(ticket_id), "mentor": mentor_contact},
        )
        self._publish_assignment(ticket, task_text, mentor_contact)
        return TransitionOutcome(ticket=ticket, status=StudentStatus.REMEDIAL)

    async def complete_remedial(self, student_id: str, ticket_id: UUID) -> TransitionOutcome:
        """Student confirms the remedial task: ticket completed, student active.

        Raises:
            NotFoundError: Unknown student, or ticket not owned by the student
            ConflictError: Ticket is not assigned
        """
        student_id = validate_student_id(student_id)
        now = self._clock()

        async with self._transaction(student_id) as db:
            student = await store.get_student(db, student_id, for_update=True)
            ticket = await store.get_ticket(db, student_id, ticket_id, for_update=True)

            if ticket.current_status is not TicketStatus.ASSIGNED:
                raise ConflictError(
                    f"Intervention {ticket_id} is {ticket.status}; only assigned "
                    "interventions can be completed"
                )

            ticket.status = TicketStatus.COMPLETED.value
            ticket.completed_at = now
            student.status = StudentStatus.ACTIVE.value
            student.requires_follow_up = False

        logger.info(f"Student {student_id} completed remedial task for {ticket_id}")
        self._dispatcher.publish(
            student_id, StatusChanged(student_id=student_id, status=StudentStatus.ACTIVE)
        )
        return TransitionOutcome(ticket=ticket, status=StudentStatus.ACTIVE)

    async def expire_overdue(self, now: datetime | None = None) -> SweepReport:
        """Run the expiry policy over every open ticket.

        Each ticket is re-checked under its student's lock before acting, so
        a sweep racing a mentor callback never double-applies. A failure on
        one ticket is logged and counted; the sweep continues.
        """
        now = now or self._clock()

        async with self._read_session() as db:
            tickets = await store.list_open_tickets(db)
            due = [
                (ticket.student_id, ticket.id)
                for ticket in tickets
                if self._policy.decide(ticket, now) is not ExpiryAction.NONE
            ]

        report = SweepReport(examined=len(tickets))

        for student_id, ticket_id in due:
            try:
                action = await self._resolve_due_ticket(student_id, ticket_id, now)
            except (ConflictError, StorageError) as e:
                logger.error(f"Expiry sweep could not resolve intervention {ticket_id}: {e}")
                report.failed += 1
                continue
            report.record(ticket_id, action)

        return report

    async def _resolve_due_ticket(
        self, student_id: str, ticket_id: UUID, now: datetime
    ) -> ExpiryAction:
        reminder: EscalationRequest | None = None

        async with self._transaction(student_id) as db:
            student = await store.get_student(db, student_id, for_update=True)
            ticket = await store.get_ticket(db, student_id, ticket_id, for_update=True)

            action = self._policy.decide(ticket, now)

            if action is ExpiryAction.EXPIRE:
                ticket.status = TicketStatus.EXPIRED.value
                ticket.expired_at = now
                student.status = StudentStatus.ACTIVE.value
                student.requires_follow_up = True

            elif action is ExpiryAction.AUTO_ASSIGN:
                self._apply_assignment(
                    student, ticket, self._default_task, self._system_contact, now, auto=True
                )
                ticket.expires_at = self._policy.deadline_after_assign(ticket)

            elif action is ExpiryAction.REMIND:
                ticket.reminder_sent_at = now
                log = None
                if ticket.trigger_log_id is not None:
                    log = await db.get(CheckInLog, ticket.trigger_log_id)
                reminder = self._escalation_request(student, ticket, log, reminder=True)

        if action is ExpiryAction.EXPIRE:
            logger.warning(
                f"Intervention {ticket_id} expired unresolved; student {student_id} released "
                "to active and flagged for follow-up"
            )
            self._dispatcher.publish(
                student_id,
                StatusChanged(
                    student_id=student_id, status=StudentStatus.ACTIVE, requires_follow_up=True
                ),
            )
        elif action is ExpiryAction.AUTO_ASSIGN:
            logger.info(f"Intervention {ticket_id} auto-assigned the default task")
            self._publish_assignment(ticket, self._default_task, self._system_contact)
        elif reminder is not None:
            logger.info(f"Re-sending escalation for intervention {ticket_id} as a reminder")
            await self._escalate(ticket, reminder)

        return action

    # ========================================================================
    # QUERIES
    # ========================================================================

    async def get_status(self, student_id: str) -> StudentSnapshot:
        """Current status and the open ticket, if any.

        Raises:
            ValidationError: Malformed student id
            NotFoundError: Unknown student
        """
        student_id = validate_student_id(student_id)

        async with self._read_session() as db:
            student = await store.get_student(db, student_id)
            ticket = None
            if student.current_status.is_locked:
                ticket = await store.get_open_ticket(db, student_id)
        return StudentSnapshot(student=student, active_ticket=ticket)

    async def get_history(
        self, student_id: str, *, log_limit: int = 30, ticket_limit: int = 10
    ) -> StudentHistory:
        """Past check-ins and tickets, most recent first.

        Raises:
            ValidationError: Malformed student id
            NotFoundError: Unknown student
        """
        student_id = validate_student_id(student_id)
        log_limit = max(1, min(log_limit, self.MAX_HISTORY_LIMIT))
        ticket_limit = max(1, min(ticket_limit, self.MAX_HISTORY_LIMIT))

        async with self._read_session() as db:
            await store.get_student(db, student_id)
            logs = await store.recent_logs(db, student_id, log_limit)
            tickets = await store.recent_tickets(db, student_id, ticket_limit)
        return StudentHistory(logs=list(logs), tickets=list(tickets))

    # ========================================================================
    # HELPERS
    # ========================================================================

    @staticmethod
    def _apply_assignment(
        student: Student,
        ticket: InterventionTicket,
        task_text: str,
        mentor_contact: str,
        now: datetime,
        *,
        auto: bool = False,
    ) -> None:
        ticket.status = TicketStatus.ASSIGNED.value
        ticket.remedial_task = task_text
        ticket.mentor_contact = mentor_contact
        ticket.assigned_at = now
        ticket.auto_assigned = auto
        student.status = StudentStatus.REMEDIAL.value

    def _publish_assignment(
        self, ticket: InterventionTicket, task_text: str, mentor_contact: str
    ) -> None:
        self._dispatcher.publish(
            ticket.student_id,
            InterventionAssigned(
                student_id=ticket.student_id,
                ticket_id=ticket.id,
                task_text=task_text,
                mentor_contact=mentor_contact,
            ),
        )

    @staticmethod
    def _escalation_request(
        student: Student,
        ticket: InterventionTicket,
        log: CheckInLog | None,
        *,
        reminder: bool = False,
    ) -> EscalationRequest:
        return EscalationRequest(
            student_id=student.student_id,
            student_name=student.name,
            student_email=student.email,
            quiz_score=log.quiz_score if log else 0,
            focus_minutes=log.focus_minutes if log else 0,
            distraction_count=log.distraction_count if log else 0,
            intervention_id=ticket.id,
            expires_at=ticket.expires_at,
            reminder=reminder,
        )

    async def _escalate(
        self, ticket: InterventionTicket, request: EscalationRequest
    ) -> EscalationResult:
        """Call the mentor workflow and record the outcome on the ticket.

        Never raises: the triggering operation has already committed and a
        failed call must not undo it.
        """
        result = await self._gateway.dispatch(request)

        if not result.attempted:
            escalation_status = EscalationStatus.NOT_SENT
        elif result.succeeded:
            escalation_status = EscalationStatus.SENT
        else:
            escalation_status = EscalationStatus.FAILED

        ticket.escalation_status = escalation_status.value
        ticket.escalation_error = result.error
        if result.attempted:
            ticket.escalation_attempts += 1

        try:
            async with self._session_factory() as db:
                async with db.begin():
                    await db.execute(
                        update(InterventionTicket)
                        .where(InterventionTicket.id == ticket.id)
                        .values(
                            escalation_status=escalation_status.value,
                            escalation_error=result.error,
                            escalation_attempts=InterventionTicket.escalation_attempts
                            + (1 if result.attempted else 0),
                        )
                    )
        except SQLAlchemyError as e:
            logger.error(
                f"Could not record escalation outcome for intervention {ticket.id}: {e}",
                extra={"escalation_status": escalation_status.value},
            )

        return result
