from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from bizflow.db.models import WorkflowTriggerModel
from bizflow.services.workflow.errors import TriggerOutcome, TriggerSchedulingError
from bizflow.services.workflow.reactor import StateChangeReactor, compute_fire_time
from bizflow.services.workflow.scheduler import JobScheduler

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)
SESSION_AT = datetime(2026, 3, 12, 15, 0, tzinfo=UTC)


def _utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=UTC)


@pytest_asyncio.fixture
async def session_workflow(db_session, organization):
    return await db_session.create_workflow_with_definition(
        organization_id=organization.id,
        name="Sessões",
        entity_type="session",
        is_default=True,
        states=[
            {"name": "pending", "display_name": "Pendente", "state_type": "initial"},
            {"name": "confirmed", "display_name": "Confirmada", "position": 1},
            {"name": "cancelled", "display_name": "Cancelada", "state_type": "final", "position": 2},
        ],
        transitions=[
            {"from": "pending", "to": "confirmed", "name": "Confirmar"},
            {"from": "confirmed", "to": "cancelled", "name": "Cancelar"},
        ],
        triggers=[
            {"state": "confirmed", "trigger_type": "on_enter"},
            {"state": "confirmed", "trigger_type": "time_before", "time_offset_minutes": 60},
            {"state": "confirmed", "trigger_type": "time_after", "time_offset_minutes": 1440},
            {"state": "confirmed", "trigger_type": "on_exit"},
            {"state": "confirmed", "trigger_type": "on_enter", "is_active": False},
        ],
    )


@pytest.fixture
def reactor():
    return StateChangeReactor(JobScheduler())


class TestComputeFireTime:
    def test_on_enter_fires_now(self):
        trigger = WorkflowTriggerModel(trigger_type="on_enter", time_offset_minutes=30)
        assert compute_fire_time(trigger, SESSION_AT, NOW) == (NOW, None)

    def test_time_before(self):
        trigger = WorkflowTriggerModel(trigger_type="time_before", time_offset_minutes=1440)
        assert compute_fire_time(trigger, SESSION_AT, NOW) == (
            SESSION_AT - timedelta(days=1),
            None,
        )

    def test_time_before_in_the_past_is_skipped(self):
        trigger = WorkflowTriggerModel(trigger_type="time_before", time_offset_minutes=60)
        fire_at, reason = compute_fire_time(trigger, NOW + timedelta(minutes=30), NOW)
        assert fire_at is None
        assert reason == "fire time already passed"

    def test_time_before_exactly_now_is_skipped(self):
        trigger = WorkflowTriggerModel(trigger_type="time_before", time_offset_minutes=60)
        fire_at, _ = compute_fire_time(trigger, NOW + timedelta(minutes=60), NOW)
        assert fire_at is None

    def test_time_before_needs_reference_and_offset(self):
        trigger = WorkflowTriggerModel(trigger_type="time_before", time_offset_minutes=60)
        assert compute_fire_time(trigger, None, NOW) == (None, "no reference time")

        trigger = WorkflowTriggerModel(trigger_type="time_before")
        assert compute_fire_time(trigger, SESSION_AT, NOW) == (None, "no time offset")

    def test_time_before_with_zero_offset(self):
        trigger = WorkflowTriggerModel(trigger_type="time_before", time_offset_minutes=0)
        assert compute_fire_time(trigger, SESSION_AT, NOW) == (SESSION_AT, None)

    def test_time_after_uses_reference_or_now(self):
        trigger = WorkflowTriggerModel(trigger_type="time_after", time_offset_minutes=90)
        assert compute_fire_time(trigger, SESSION_AT, NOW)[0] == SESSION_AT + timedelta(
            minutes=90
        )
        assert compute_fire_time(trigger, None, NOW)[0] == NOW + timedelta(minutes=90)

    def test_time_after_without_offset(self):
        trigger = WorkflowTriggerModel(trigger_type="time_after")
        assert compute_fire_time(trigger, None, NOW) == (NOW, None)

    @pytest.mark.parametrize("trigger_type", ["on_exit", "recurring"])
    def test_not_scheduled_on_entry(self, trigger_type):
        trigger = WorkflowTriggerModel(trigger_type=trigger_type, recurring_cron="0 8 * * *")
        fire_at, reason = compute_fire_time(trigger, SESSION_AT, NOW)
        assert fire_at is None
        assert trigger_type in reason


class TestStateChangeReactor:
    @pytest.mark.asyncio
    async def test_schedules_state_triggers(
        self, db_session, organization, session_workflow, reactor
    ):
        result = await reactor.on_entity_state_change(
            organization_id=organization.id,
            entity_type="session",
            entity_id=42,
            from_status="pending",
            to_status="confirmed",
            reference_time=SESSION_AT,
            now=NOW,
        )

        assert result.matched is True
        assert result.workflow_id == session_workflow.id
        assert result.cancelled_jobs == 0
        assert sorted(_utc(job.scheduled_for) for job in result.scheduled_jobs) == [
            NOW,
            SESSION_AT - timedelta(minutes=60),
            SESSION_AT + timedelta(minutes=1440),
        ]
        assert all(job.entity_id == "42" for job in result.scheduled_jobs)
        assert all(job.status == "pending" for job in result.scheduled_jobs)

        # Inactive triggers are not even considered
        assert len(result.decisions) == 4
        outcomes = {d["trigger_type"]: d["outcome"] for d in result.decisions}
        assert outcomes["on_exit"] == TriggerOutcome.skipped
        assert outcomes["time_before"] == TriggerOutcome.scheduled

    @pytest.mark.asyncio
    async def test_naive_reference_time_is_utc(
        self, db_session, organization, session_workflow, reactor
    ):
        result = await reactor.on_entity_state_change(
            organization.id,
            "session",
            "42",
            "pending",
            "confirmed",
            reference_time=SESSION_AT.replace(tzinfo=None),
            now=NOW,
        )
        scheduled = sorted(_utc(job.scheduled_for) for job in result.scheduled_jobs)
        assert scheduled[1] == SESSION_AT - timedelta(minutes=60)

    @pytest.mark.asyncio
    async def test_reminder_in_the_past_is_skipped(
        self, db_session, organization, session_workflow, reactor
    ):
        result = await reactor.on_entity_state_change(
            organization.id,
            "session",
            "42",
            "pending",
            "confirmed",
            reference_time=NOW + timedelta(minutes=30),
            now=NOW,
        )

        assert len(result.scheduled_jobs) == 2
        time_before = next(d for d in result.decisions if d["trigger_type"] == "time_before")
        assert time_before["outcome"] == TriggerOutcome.skipped
        assert time_before["reason"] == "fire time already passed"

    @pytest.mark.asyncio
    async def test_new_state_cancels_pending_jobs(
        self, db_session, organization, session_workflow, reactor
    ):
        first = await reactor.on_entity_state_change(
            organization.id, "session", "42", "pending", "confirmed", SESSION_AT, now=NOW
        )
        # Another session's jobs are left alone
        await reactor.on_entity_state_change(
            organization.id, "session", "43", "pending", "confirmed", SESSION_AT, now=NOW
        )

        second = await reactor.on_entity_state_change(
            organization.id, "session", "42", "confirmed", "cancelled", now=NOW
        )

        assert second.cancelled_jobs == len(first.scheduled_jobs) == 3
        assert second.scheduled_jobs == []
        jobs, total = await db_session.get_scheduled_jobs(
            organization.id, status="pending"
        )
        assert total == 3
        assert {job.entity_id for job in jobs} == {"43"}

    @pytest.mark.asyncio
    async def test_repeated_state_change_replaces_jobs(
        self, db_session, organization, session_workflow, reactor
    ):
        await reactor.on_entity_state_change(
            organization.id, "session", "42", "pending", "confirmed", SESSION_AT, now=NOW
        )
        again = await reactor.on_entity_state_change(
            organization.id, "session", "42", "confirmed", "confirmed", SESSION_AT, now=NOW
        )

        assert again.cancelled_jobs == 3
        _, total = await db_session.get_scheduled_jobs(organization.id, status="pending")
        assert total == 3

    @pytest.mark.asyncio
    async def test_new_entity_does_not_cancel(
        self, db_session, organization, session_workflow
    ):
        scheduler = AsyncMock(spec=JobScheduler)
        reactor = StateChangeReactor(scheduler)

        await reactor.on_entity_state_change(
            organization.id, "session", "42", None, "confirmed", SESSION_AT, now=NOW
        )

        scheduler.cancel_pending_jobs_for_entity.assert_not_awaited()
        assert scheduler.schedule_job.await_count == 3

    @pytest.mark.asyncio
    async def test_state_change_is_logged(
        self, db_session, organization, session_workflow, reactor
    ):
        result = await reactor.on_entity_state_change(
            organization.id, "session", "42", "pending", "confirmed", SESSION_AT, now=NOW
        )

        logs = await db_session.get_entity_execution_logs(organization.id, "session", "42")
        assert len(logs) == 1
        log = logs[0]
        assert log.event_type == "state_change"
        assert log.workflow_id == session_workflow.id
        assert (log.from_state, log.to_state) == ("pending", "confirmed")
        assert log.details["state_id"] == result.state_id
        assert len(log.details["fired_triggers"]) == 3
        assert {d["outcome"] for d in log.details["decisions"]} == {"scheduled", "skipped"}

    @pytest.mark.asyncio
    async def test_unknown_entity_type_is_a_no_op(self, db_session, organization, reactor):
        result = await reactor.on_entity_state_change(
            organization.id, "invoice", "1", "open", "paid", now=NOW
        )
        assert result.matched is False
        assert result.workflow_id is None

    @pytest.mark.asyncio
    async def test_without_default_workflow_nothing_happens(
        self, db_session, organization, reactor
    ):
        await db_session.create_workflow(organization.id, "Orçamentos", "budget")

        result = await reactor.on_entity_state_change(
            organization.id, "budget", "7", "draft", "sent", now=NOW
        )

        assert result.matched is False
        assert result.workflow_id is None
        logs, total = await db_session.get_execution_logs(organization.id)
        assert total == 0

    @pytest.mark.asyncio
    async def test_status_without_state_nothing_happens(
        self, db_session, organization, session_workflow, reactor
    ):
        # Status strings are matched verbatim
        result = await reactor.on_entity_state_change(
            organization.id, "session", "42", "pending", "Confirmed", SESSION_AT, now=NOW
        )

        assert result.workflow_id == session_workflow.id
        assert result.matched is False
        assert result.scheduled_jobs == []

    @pytest.mark.asyncio
    async def test_other_organization_default_is_not_used(
        self, db_session, other_organization, session_workflow, reactor
    ):
        result = await reactor.on_entity_state_change(
            other_organization.id, "session", "42", "pending", "confirmed", SESSION_AT, now=NOW
        )
        assert result.workflow_id is None

    @pytest.mark.asyncio
    async def test_every_trigger_is_attempted_before_failing(
        self, db_session, organization, session_workflow
    ):
        scheduler = AsyncMock(spec=JobScheduler)
        scheduler.cancel_pending_jobs_for_entity.return_value = 0
        scheduler.schedule_job.side_effect = [
            RuntimeError("database unavailable"),
            AsyncMock(),
            RuntimeError("still unavailable"),
        ]
        reactor = StateChangeReactor(scheduler)

        with pytest.raises(TriggerSchedulingError) as exc_info:
            await reactor.on_entity_state_change(
                organization.id, "session", "42", "pending", "confirmed", SESSION_AT, now=NOW
            )

        assert scheduler.schedule_job.await_count == 3
        assert [str(e) for e in exc_info.value.errors] == [
            "database unavailable",
            "still unavailable",
        ]
        assert str(exc_info.value) == "database unavailable"

        logs = await db_session.get_entity_execution_logs(organization.id, "session", "42")
        outcomes = [d["outcome"] for d in logs[0].details["decisions"]]
        assert outcomes.count("failed") == 2

    @pytest.mark.asyncio
    async def test_cancel_failure_still_schedules(
        self, db_session, organization, session_workflow
    ):
        scheduler = AsyncMock(spec=JobScheduler)
        scheduler.cancel_pending_jobs_for_entity.side_effect = RuntimeError("lock timeout")
        reactor = StateChangeReactor(scheduler)

        with pytest.raises(TriggerSchedulingError):
            await reactor.on_entity_state_change(
                organization.id, "session", "42", "pending", "confirmed", SESSION_AT, now=NOW
            )
        assert scheduler.schedule_job.await_count == 3
