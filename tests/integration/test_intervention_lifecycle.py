"""
Integration Tests for the Intervention State Machine

Drives the controller against a real database: the daily gate, mentor
assignment, remedial completion, expiry, and the guarantees that hold under
concurrency and storage failure.
"""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from alcovia.core.exceptions import ConflictError, NotFoundError, StorageError
from alcovia.core.models import (
    CheckInLog,
    EscalationStatus,
    InterventionTicket,
    Student,
    StudentStatus,
)
from alcovia.core.validation import ValidationError
from alcovia.escalation.gateway import EscalationResult
from alcovia.intervention.expiry import TieredExpiryPolicy
from alcovia.intervention.state_machine import InterventionController


async def count_rows(session_factory, model, student_id: str = "123") -> int:
    async with session_factory() as db:
        result = await db.execute(
            select(func.count()).select_from(model).where(model.student_id == student_id)
        )
        return result.scalar_one()


async def open_ticket_count(session_factory, student_id: str = "123") -> int:
    async with session_factory() as db:
        result = await db.execute(
            select(func.count())
            .select_from(InterventionTicket)
            .where(InterventionTicket.student_id == student_id)
            .where(InterventionTicket.status.in_(["pending", "assigned"]))
        )
        return result.scalar_one()


@pytest.fixture
def push(dispatcher, recording_session):
    """Live push session for student '123'."""
    session = recording_session()
    dispatcher.register("123", session)
    return session


class TestDailyGate:
    async def test_passing_check_in(self, controller, test_student, push, dispatcher):
        outcome = await controller.submit_check_in("123", 8, 61, 2)

        assert outcome.passed is True
        assert outcome.status is StudentStatus.ON_TRACK
        assert outcome.ticket is None
        assert outcome.log.passed is True

        snapshot = await controller.get_status("123")
        assert snapshot.student.status == "on_track"
        assert snapshot.active_ticket is None

        await dispatcher.drain()
        assert [m["event"] for m in push.messages] == ["status_changed"]
        assert push.messages[0]["status"] == "on_track"

    async def test_failing_check_in_opens_ticket(
        self, controller, test_student, gateway, push, dispatcher
    ):
        outcome = await controller.submit_check_in("123", 7, 60, 3)

        assert outcome.passed is False
        assert outcome.status is StudentStatus.NEEDS_INTERVENTION
        ticket = outcome.ticket
        assert ticket is not None
        assert ticket.status == "pending"
        assert ticket.trigger_log_id == outcome.log.id
        assert ticket.expires_at - ticket.created_at == timedelta(hours=12)

        # Escalated with the failing figures
        assert len(gateway.requests) == 1
        request = gateway.requests[0]
        assert request.intervention_id == ticket.id
        assert (request.quiz_score, request.focus_minutes, request.distraction_count) == (7, 60, 3)
        assert request.student_email == "student@test.com"
        assert request.reminder is False
        assert outcome.escalation.succeeded is True
        assert ticket.escalation_status == EscalationStatus.SENT.value
        assert ticket.escalation_attempts == 1

        snapshot = await controller.get_status("123")
        assert snapshot.student.status == "needs_intervention"
        assert snapshot.active_ticket.id == ticket.id
        assert snapshot.active_ticket.escalation_status == "sent"

        await dispatcher.drain()
        assert push.messages[-1]["status"] == "needs_intervention"

    async def test_passing_after_passing_stays_on_track(self, controller, test_student):
        await controller.submit_check_in("123", 9, 90, 0)
        outcome = await controller.submit_check_in("123", 10, 120, 1)

        assert outcome.status is StudentStatus.ON_TRACK

    async def test_on_track_student_can_fail(self, controller, test_student):
        await controller.submit_check_in("123", 9, 90, 0)
        outcome = await controller.submit_check_in("123", 2, 10, 9)

        assert outcome.status is StudentStatus.NEEDS_INTERVENTION

    async def test_locked_student_cannot_check_in(self, controller, test_student, session_factory):
        await controller.submit_check_in("123", 3, 20, 5)

        with pytest.raises(ConflictError, match="locked"):
            await controller.submit_check_in("123", 10, 120, 0)

        # Rejected submission leaves no trace
        assert await count_rows(session_factory, CheckInLog) == 1
        assert await open_ticket_count(session_factory) == 1

    async def test_invalid_figures_rejected_before_any_write(
        self, controller, test_student, session_factory
    ):
        with pytest.raises(ValidationError):
            await controller.submit_check_in("123", 11, 90, 0)
        with pytest.raises(ValidationError):
            await controller.submit_check_in("123", 9, -1, 0)

        assert await count_rows(session_factory, CheckInLog) == 0
        snapshot = await controller.get_status("123")
        assert snapshot.student.status == "active"

    async def test_unknown_student(self, controller):
        with pytest.raises(NotFoundError):
            await controller.submit_check_in("ghost", 9, 90, 0)


class TestMentorAssignment:
    async def test_assign_moves_student_to_remedial(
        self, controller, test_student, push, dispatcher
    ):
        failed = await controller.submit_check_in("123", 4, 30, 5)

        outcome = await controller.assign_intervention(
            "123", failed.ticket.id, "Read Chapter 4", "mentor@alcovia.com"
        )

        assert outcome.status is StudentStatus.REMEDIAL
        assert outcome.ticket.status == "assigned"
        assert outcome.ticket.remedial_task == "Read Chapter 4"
        assert outcome.ticket.mentor_contact == "mentor@alcovia.com"
        assert outcome.ticket.assigned_at is not None
        assert outcome.ticket.auto_assigned is False

        snapshot = await controller.get_status("123")
        assert snapshot.student.status == "remedial"
        assert snapshot.active_ticket.remedial_task == "Read Chapter 4"

        await dispatcher.drain()
        assigned = push.messages[-1]
        assert assigned["event"] == "intervention_assigned"
        assert assigned["task_text"] == "Read Chapter 4"
        assert assigned["ticket_id"] == str(failed.ticket.id)

    async def test_duplicate_assignment_rejected(self, controller, test_student):
        failed = await controller.submit_check_in("123", 4, 30, 5)
        await controller.assign_intervention("123", failed.ticket.id, "Read Chapter 4", "m@a.com")

        with pytest.raises(ConflictError, match="already assigned"):
            await controller.assign_intervention(
                "123", failed.ticket.id, "Something else", "other@a.com"
            )

        snapshot = await controller.get_status("123")
        assert snapshot.active_ticket.remedial_task == "Read Chapter 4"
        assert snapshot.active_ticket.mentor_contact == "m@a.com"

    async def test_assignment_after_deadline_rejected(self, controller, test_student, clock):
        failed = await controller.submit_check_in("123", 4, 30, 5)
        clock.advance(hours=13)

        with pytest.raises(ConflictError, match="deadline"):
            await controller.assign_intervention("123", failed.ticket.id, "Late task", "m@a.com")

        snapshot = await controller.get_status("123")
        assert snapshot.student.status == "needs_intervention"

    async def test_unknown_ticket(self, controller, test_student):
        await controller.submit_check_in("123", 4, 30, 5)

        with pytest.raises(NotFoundError):
            await controller.assign_intervention("123", uuid4(), "Task", "m@a.com")

    async def test_ticket_of_another_student_is_not_found(
        self, controller, test_student, db_session
    ):
        db_session.add(Student(student_id="456", name="Other Student"))
        await db_session.commit()
        theirs = await controller.submit_check_in("456", 1, 1, 9)

        with pytest.raises(NotFoundError):
            await controller.assign_intervention("123", theirs.ticket.id, "Task", "m@a.com")

    async def test_empty_task_rejected(self, controller, test_student):
        failed = await controller.submit_check_in("123", 4, 30, 5)

        with pytest.raises(ValidationError):
            await controller.assign_intervention("123", failed.ticket.id, "   ", "m@a.com")


class TestRemedialCompletion:
    async def test_complete_returns_student_to_active(
        self, controller, test_student, push, dispatcher
    ):
        failed = await controller.submit_check_in("123", 4, 30, 5)
        await controller.assign_intervention("123", failed.ticket.id, "Read Chapter 4", "m@a.com")

        outcome = await controller.complete_remedial("123", failed.ticket.id)

        assert outcome.status is StudentStatus.ACTIVE
        assert outcome.ticket.status == "completed"
        assert outcome.ticket.completed_at is not None

        snapshot = await controller.get_status("123")
        assert snapshot.student.status == "active"
        assert snapshot.student.requires_follow_up is False
        assert snapshot.active_ticket is None

        await dispatcher.drain()
        assert push.messages[-1]["event"] == "status_changed"
        assert push.messages[-1]["status"] == "active"

        # Unlocked: the next check-in is accepted
        again = await controller.submit_check_in("123", 9, 90, 0)
        assert again.status is StudentStatus.ON_TRACK

    async def test_complete_pending_ticket_rejected(self, controller, test_student):
        failed = await controller.submit_check_in("123", 4, 30, 5)

        with pytest.raises(ConflictError, match="only assigned"):
            await controller.complete_remedial("123", failed.ticket.id)

    async def test_complete_twice_rejected(self, controller, test_student):
        failed = await controller.submit_check_in("123", 4, 30, 5)
        await controller.assign_intervention("123", failed.ticket.id, "Task", "m@a.com")
        await controller.complete_remedial("123", failed.ticket.id)

        with pytest.raises(ConflictError):
            await controller.complete_remedial("123", failed.ticket.id)


class TestSingleOpenTicket:
    async def test_concurrent_failing_check_ins_open_one_ticket(
        self, controller, test_student, session_factory, gateway
    ):
        results = await asyncio.gather(
            *(controller.submit_check_in("123", 1, 5, 8) for _ in range(5)),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(successes) == 1
        assert len(conflicts) == 4

        assert await open_ticket_count(session_factory) == 1
        assert await count_rows(session_factory, CheckInLog) == 1
        assert len(gateway.requests) == 1

    async def test_concurrent_assignments_are_serialized(self, controller, test_student):
        failed = await controller.submit_check_in("123", 1, 5, 8)

        results = await asyncio.gather(
            controller.assign_intervention("123", failed.ticket.id, "Task A", "a@alcovia.com"),
            controller.assign_intervention("123", failed.ticket.id, "Task B", "b@alcovia.com"),
            return_exceptions=True,
        )

        assert sum(isinstance(r, ConflictError) for r in results) == 1
        snapshot = await controller.get_status("123")
        assert snapshot.student.status == "remedial"

    async def test_storage_rejects_second_open_ticket(self, test_student, db_session, clock):
        now = clock()
        db_session.add_all(
            [
                InterventionTicket(
                    student_id="123", status="pending", created_at=now, expires_at=now
                ),
                InterventionTicket(
                    student_id="123", status="assigned", created_at=now, expires_at=now
                ),
            ]
        )

        with pytest.raises(Exception, match="(?i)unique"):
            await db_session.commit()
        await db_session.rollback()

    async def test_integrity_conflict_rolls_back_check_in(
        self, controller, test_student, session_factory, clock
    ):
        """A stray open ticket makes the new one collide; the log is not kept either."""
        now = clock()
        async with session_factory() as db:
            db.add(
                InterventionTicket(
                    student_id="123", status="pending", created_at=now, expires_at=now
                )
            )
            await db.commit()

        with pytest.raises(ConflictError, match="Concurrent change"):
            await controller.submit_check_in("123", 1, 5, 8)

        assert await count_rows(session_factory, CheckInLog) == 0
        snapshot = await controller.get_status("123")
        assert snapshot.student.status == "active"


class TestStorageFailure:
    async def test_failure_mid_transaction_writes_nothing(
        self, controller, test_student, session_factory, gateway, monkeypatch
    ):
        original_flush = AsyncSession.flush
        calls = 0

        async def flaky_flush(self, objects=None):
            nonlocal calls
            calls += 1
            if calls == 2:
                raise OperationalError(
                    "INSERT INTO intervention_tickets", {}, Exception("connection lost")
                )
            await original_flush(self, objects)

        monkeypatch.setattr(AsyncSession, "flush", flaky_flush)

        with pytest.raises(StorageError):
            await controller.submit_check_in("123", 1, 5, 8)

        monkeypatch.undo()

        assert await count_rows(session_factory, CheckInLog) == 0
        assert await count_rows(session_factory, InterventionTicket) == 0
        snapshot = await controller.get_status("123")
        assert snapshot.student.status == "active"
        assert gateway.requests == []


class TestEscalationFailure:
    async def test_failed_escalation_is_recorded_not_fatal(
        self, controller, test_student, gateway, session_factory
    ):
        gateway.result = EscalationResult(attempted=True, succeeded=False, error="HTTP 502")

        outcome = await controller.submit_check_in("123", 1, 5, 8)

        assert outcome.status is StudentStatus.NEEDS_INTERVENTION
        assert outcome.escalation.succeeded is False

        async with session_factory() as db:
            ticket = await db.get(InterventionTicket, outcome.ticket.id)
            assert ticket.status == "pending"
            assert ticket.escalation_status == "failed"
            assert ticket.escalation_error == "HTTP 502"
            assert ticket.escalation_attempts == 1

    async def test_unconfigured_gateway_records_not_sent(
        self, controller, test_student, gateway, session_factory
    ):
        gateway.result = EscalationResult(attempted=False, succeeded=False)

        outcome = await controller.submit_check_in("123", 1, 5, 8)

        async with session_factory() as db:
            ticket = await db.get(InterventionTicket, outcome.ticket.id)
            assert ticket.escalation_status == "not_sent"
            assert ticket.escalation_attempts == 0


class TestExpiry:
    async def test_overdue_ticket_expires_and_releases_student(
        self, controller, test_student, push, dispatcher
    ):
        failed = await controller.submit_check_in("123", 4, 30, 5)
        deadline = failed.ticket.expires_at

        early = await controller.expire_overdue(now=deadline - timedelta(seconds=1))
        assert early.expired == 0
        assert early.examined == 1

        report = await controller.expire_overdue(now=deadline)
        assert report.expired == 1
        assert report.ticket_ids == [failed.ticket.id]

        snapshot = await controller.get_status("123")
        assert snapshot.student.status == "active"
        assert snapshot.student.requires_follow_up is True
        assert snapshot.active_ticket is None

        history = await controller.get_history("123")
        assert history.tickets[0].status == "expired"
        assert history.tickets[0].expired_at == deadline

        await dispatcher.drain()
        assert push.messages[-1]["status"] == "active"
        assert push.messages[-1]["requires_follow_up"] is True

    async def test_assigned_ticket_also_expires(self, controller, test_student):
        failed = await controller.submit_check_in("123", 4, 30, 5)
        await controller.assign_intervention("123", failed.ticket.id, "Task", "m@a.com")

        report = await controller.expire_overdue(now=failed.ticket.expires_at)

        assert report.expired == 1
        snapshot = await controller.get_status("123")
        assert snapshot.student.status == "active"

    async def test_expired_student_can_check_in_again(self, controller, test_student, clock):
        failed = await controller.submit_check_in("123", 4, 30, 5)
        await controller.expire_overdue(now=failed.ticket.expires_at)
        clock.advance(hours=13)

        outcome = await controller.submit_check_in("123", 9, 90, 0)

        assert outcome.status is StudentStatus.ON_TRACK

    async def test_sweep_without_open_tickets(self, controller, test_student):
        report = await controller.expire_overdue()

        assert report.examined == 0
        assert report.acted is False

    async def test_completed_ticket_never_expires(self, controller, test_student):
        failed = await controller.submit_check_in("123", 4, 30, 5)
        await controller.assign_intervention("123", failed.ticket.id, "Task", "m@a.com")
        await controller.complete_remedial("123", failed.ticket.id)

        report = await controller.expire_overdue(now=failed.ticket.expires_at + timedelta(days=1))

        assert report.examined == 0
        history = await controller.get_history("123")
        assert history.tickets[0].status == "completed"


class TestTieredExpiry:
    @pytest.fixture
    def controller(self, session_factory, dispatcher, gateway, clock):
        return InterventionController(
            session_factory=session_factory,
            dispatcher=dispatcher,
            gateway=gateway,
            policy=TieredExpiryPolicy(),
            window=timedelta(hours=24),
            default_task="Redo the practice quiz.",
            system_contact="mentors@alcovia.test",
            clock=clock,
        )

    async def test_remind_then_auto_assign_then_release(
        self, controller, test_student, gateway, push, dispatcher
    ):
        failed = await controller.submit_check_in("123", 4, 30, 5)
        created = failed.ticket.created_at

        report = await controller.expire_overdue(now=created + timedelta(hours=5))
        assert report.acted is False

        # 6h: the mentor workflow is reminded once
        report = await controller.expire_overdue(now=created + timedelta(hours=6))
        assert report.reminded == 1
        assert len(gateway.requests) == 2
        assert gateway.requests[-1].reminder is True
        assert gateway.requests[-1].quiz_score == 4

        report = await controller.expire_overdue(now=created + timedelta(hours=7))
        assert report.reminded == 0
        assert len(gateway.requests) == 2

        # 12h: the system assigns the default task
        report = await controller.expire_overdue(now=created + timedelta(hours=12))
        assert report.auto_assigned == 1

        snapshot = await controller.get_status("123")
        assert snapshot.student.status == "remedial"
        ticket = snapshot.active_ticket
        assert ticket.auto_assigned is True
        assert ticket.remedial_task == "Redo the practice quiz."
        assert ticket.mentor_contact == "mentors@alcovia.test"
        assert ticket.expires_at == created + timedelta(hours=24)
        assert ticket.escalation_attempts == 2

        await dispatcher.drain()
        assert push.messages[-1]["event"] == "intervention_assigned"

        # 24h: released with a follow-up flag
        report = await controller.expire_overdue(now=created + timedelta(hours=24))
        assert report.expired == 1

        snapshot = await controller.get_status("123")
        assert snapshot.student.status == "active"
        assert snapshot.student.requires_follow_up is True

    async def test_auto_assigned_task_can_be_completed(self, controller, test_student):
        failed = await controller.submit_check_in("123", 4, 30, 5)
        await controller.expire_overdue(now=failed.ticket.created_at + timedelta(hours=12))

        outcome = await controller.complete_remedial("123", failed.ticket.id)

        assert outcome.status is StudentStatus.ACTIVE

    async def test_mentor_assignment_stops_reminders(self, controller, test_student, gateway):
        failed = await controller.submit_check_in("123", 4, 30, 5)
        await controller.assign_intervention("123", failed.ticket.id, "Task", "m@a.com")

        report = await controller.expire_overdue(now=failed.ticket.created_at + timedelta(hours=13))

        assert report.acted is False
        assert len(gateway.requests) == 1


class TestTieredExpiryWithDefaultWindow:
    @pytest.fixture
    def controller(self, session_factory, dispatcher, gateway, clock):
        return InterventionController(
            session_factory=session_factory,
            dispatcher=dispatcher,
            gateway=gateway,
            policy=TieredExpiryPolicy(),
            window=timedelta(hours=12),
            default_task="Redo the practice quiz.",
            system_contact="mentors@alcovia.test",
            clock=clock,
        )

    async def test_mentor_assignment_extends_deadline_to_release(
        self, controller, test_student, clock
    ):
        failed = await controller.submit_check_in("123", 4, 30, 5)
        created = failed.ticket.created_at
        assert failed.ticket.expires_at == created + timedelta(hours=12)

        clock.advance(hours=1)
        assigned = await controller.assign_intervention(
            "123", failed.ticket.id, "Read Chapter 4", "mentor@alcovia.com"
        )
        assert assigned.ticket.expires_at == created + timedelta(hours=24)

        # Past the original window the ticket is open and its deadline is ahead
        now = created + timedelta(hours=13)
        report = await controller.expire_overdue(now=now)
        assert report.acted is False

        snapshot = await controller.get_status("123")
        assert snapshot.student.status == "remedial"
        assert snapshot.active_ticket.status == "assigned"
        assert snapshot.active_ticket.expires_at > now

        report = await controller.expire_overdue(now=created + timedelta(hours=24))
        assert report.expired == 1

        snapshot = await controller.get_status("123")
        assert snapshot.student.status == "active"
        assert snapshot.student.requires_follow_up is True
        assert snapshot.active_ticket is None


class TestHistory:
    async def test_history_most_recent_first(self, controller, test_student):
        await controller.submit_check_in("123", 9, 90, 0)
        await controller.submit_check_in("123", 10, 100, 1)
        failed = await controller.submit_check_in("123", 2, 20, 6)

        history = await controller.get_history("123")

        assert [log.quiz_score for log in history.logs] == [2, 10, 9]
        assert [t.id for t in history.tickets] == [failed.ticket.id]

    async def test_history_limits(self, controller, test_student):
        for _ in range(3):
            await controller.submit_check_in("123", 9, 90, 0)

        history = await controller.get_history("123", log_limit=2)
        assert len(history.logs) == 2

        # Limits are clamped, never zero
        history = await controller.get_history("123", log_limit=0)
        assert len(history.logs) == 1

    async def test_history_unknown_student(self, controller):
        with pytest.raises(NotFoundError):
            await controller.get_history("ghost")

    @pytest.mark.parametrize("student_id", ["", "bad id", "x" * 101])
    async def test_reads_reject_malformed_student_id(self, controller, student_id):
        with pytest.raises(ValidationError):
            await controller.get_history(student_id)
        with pytest.raises(ValidationError):
            await controller.get_status(student_id)


class TestEndToEndScenarios:
    async def test_fail_assign_complete(
        self, controller, test_student, gateway, push, dispatcher
    ):
        # 1. Failing check-in escalates
        failed = await controller.submit_check_in("123", 5, 30, 1)
        assert failed.status is StudentStatus.NEEDS_INTERVENTION
        assert failed.ticket.status == "pending"
        assert len(gateway.requests) == 1

        # 2. Mentor assigns; the connected student is told
        assigned = await controller.assign_intervention(
            "123", failed.ticket.id, "Read Ch.4", "m@x.com"
        )
        assert assigned.status is StudentStatus.REMEDIAL
        assert assigned.ticket.status == "assigned"
        await dispatcher.drain()
        assert push.messages[-1]["event"] == "intervention_assigned"
        assert push.messages[-1]["mentor_contact"] == "m@x.com"

        # 3. Student completes the task
        completed = await controller.complete_remedial("123", failed.ticket.id)
        assert completed.status is StudentStatus.ACTIVE
        assert completed.ticket.status == "completed"

    async def test_pass_without_escalation(self, controller, test_student, gateway):
        outcome = await controller.submit_check_in("123", 9, 90, 0)

        assert outcome.status is StudentStatus.ON_TRACK
        assert outcome.ticket is None
        assert outcome.escalation is None
        assert gateway.requests == []
