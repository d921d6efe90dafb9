"""
State-change reactor.

Entity services call ``on_entity_state_change`` after committing a status
change. The reactor finds the organization's default workflow for the entity
type, matches the new status against the workflow's state names, cancels the
entity's stale pending jobs and schedules jobs for the state's triggers.

State names are matched verbatim against the entity's own status strings.
Nothing enforces that the two vocabularies agree: a status without a matching
state simply fires nothing.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Optional

from loguru import logger

from bizflow.db import db_client
from bizflow.db.models import ScheduledJobModel, WorkflowTriggerModel
from bizflow.enums import ExecutionEventType, TriggerType, WorkflowEntityType
from bizflow.logging_config import workflow_ctx_var
from bizflow.services.workflow.errors import (
    TriggerDecision,
    TriggerOutcome,
    TriggerSchedulingError,
)
from bizflow.services.workflow.scheduler import JobScheduler, job_scheduler


@dataclass
class StateChangeResult:
    workflow_id: Optional[int] = None
    state_id: Optional[int] = None
    cancelled_jobs: int = 0
    scheduled_jobs: list[ScheduledJobModel] = field(default_factory=list)
    decisions: list[TriggerDecision] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.state_id is not None


def _as_utc(value: datetime) -> datetime:
    # Naive datetimes from entity services are taken to be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def compute_fire_time(
    trigger: WorkflowTriggerModel,
    reference_time: datetime | None,
    now: datetime,
) -> tuple[Optional[datetime], Optional[str]]:
    """Decide when a state-bound trigger fires.

    Returns (fire time, None), or (None, reason) when the trigger is skipped.
    """
    offset = timedelta(minutes=trigger.time_offset_minutes or 0)

    if trigger.trigger_type == TriggerType.ON_ENTER.value:
        return now, None

    if trigger.trigger_type == TriggerType.TIME_BEFORE.value:
        if reference_time is None:
            return None, "no reference time"
        if trigger.time_offset_minutes is None:
            return None, "no time offset"
        fire_at = reference_time - offset
        # Reminders that are already due are dropped, never back-filled
        if fire_at <= now:
            return None, "fire time already passed"
        return fire_at, None

    if trigger.trigger_type == TriggerType.TIME_AFTER.value:
        return (reference_time or now) + offset, None

    # on_exit is covered by the cancellation step, recurring triggers belong
    # to the periodic evaluator
    return None, f"{trigger.trigger_type} triggers are not scheduled on state entry"


class StateChangeReactor:
    def __init__(self, scheduler: JobScheduler = job_scheduler):
        self.scheduler = scheduler

    async def _log_state_change(
        self,
        organization_id: int,
        workflow_id: int,
        entity_type: str,
        entity_id: str,
        from_status: str | None,
        to_status: str,
        result: StateChangeResult,
    ) -> None:
        """Append the audit row. A failure here must not fail the state change."""
        try:
            await db_client.create_execution_log(
                organization_id=organization_id,
                workflow_id=workflow_id,
                entity_type=entity_type,
                entity_id=entity_id,
                event_type=ExecutionEventType.STATE_CHANGE.value,
                from_state=from_status or None,
                to_state=to_status,
                details={
                    "state_id": result.state_id,
                    "cancelled_jobs": result.cancelled_jobs,
                    "fired_triggers": [
                        decision["trigger_id"]
                        for decision in result.decisions
                        if decision["outcome"] == TriggerOutcome.scheduled
                    ],
                    "decisions": [
                        {**decision, "outcome": decision["outcome"].value}
                        for decision in result.decisions
                    ],
                },
            )
        except Exception as e:
            logger.warning(f"Failed to write state change log: {e}")

    async def on_entity_state_change(
        self,
        organization_id: int,
        entity_type: str,
        entity_id: str,
        from_status: str | None,
        to_status: str,
        reference_time: datetime | None = None,
        now: datetime | None = None,
    ) -> StateChangeResult:
        """
        React to a committed status change of an entity.

        Args:
            organization_id: Organization owning the entity
            entity_type: session, budget or project
            entity_id: Entity identifier in its own service
            from_status: Previous status, empty for a freshly created entity
            to_status: New status, matched against the workflow's state names
            reference_time: Time the time_before/time_after offsets apply to,
                e.g. the session's scheduled start
            now: Current time, mostly for tests

        Returns:
            StateChangeResult describing what was cancelled and scheduled

        Raises:
            TriggerSchedulingError: If cancelling or any trigger failed, raised
                only after every trigger was attempted
        """
        entity_id = str(entity_id)
        ctx_token = workflow_ctx_var.set(f"{entity_type}:{entity_id}")
        try:
            return await self._handle_state_change(
                organization_id,
                entity_type,
                entity_id,
                from_status,
                to_status,
                reference_time,
                now,
            )
        finally:
            workflow_ctx_var.reset(ctx_token)

    async def _handle_state_change(
        self,
        organization_id: int,
        entity_type: str,
        entity_id: str,
        from_status: str | None,
        to_status: str,
        reference_time: datetime | None,
        now: datetime | None,
    ) -> StateChangeResult:
        now = _as_utc(now) if now else datetime.now(UTC)
        if reference_time is not None:
            reference_time = _as_utc(reference_time)
        result = StateChangeResult()

        if entity_type not in {member.value for member in WorkflowEntityType}:
            logger.debug(f"No workflows exist for entity type {entity_type}")
            return result

        workflow = await db_client.get_default_workflow(organization_id, entity_type)
        if not workflow:
            logger.debug(
                f"Organization {organization_id} has no default {entity_type} workflow"
            )
            return result
        result.workflow_id = workflow.id

        state = await db_client.get_workflow_state_by_name(workflow.id, to_status)
        if not state:
            logger.debug(
                f"Workflow {workflow.id} has no state named {to_status!r}, nothing to do"
            )
            return result
        result.state_id = state.id

        errors: list[Exception] = []

        # Cancel before scheduling so jobs created below are never cancelled
        # by the same call
        if from_status:
            try:
                result.cancelled_jobs = await self.scheduler.cancel_pending_jobs_for_entity(
                    entity_type, entity_id, organization_id=organization_id
                )
            except Exception as e:
                logger.error(f"Failed to cancel pending jobs: {e}")
                errors.append(e)

        triggers = sorted(
            (trigger for trigger in state.triggers if trigger.is_active),
            key=lambda trigger: trigger.id,
        )
        for trigger in triggers:
            fire_at, reason = compute_fire_time(trigger, reference_time, now)
            decision = TriggerDecision(
                trigger_id=trigger.id,
                trigger_type=trigger.trigger_type,
                outcome=TriggerOutcome.skipped,
                scheduled_for=None,
                reason=reason,
            )
            if fire_at is not None:
                try:
                    job = await self.scheduler.schedule_job(
                        organization_id, trigger.id, entity_type, entity_id, fire_at
                    )
                    result.scheduled_jobs.append(job)
                    decision["outcome"] = TriggerOutcome.scheduled
                    decision["scheduled_for"] = fire_at.isoformat()
                except Exception as e:
                    logger.error(f"Failed to schedule trigger {trigger.id}: {e}")
                    decision["outcome"] = TriggerOutcome.failed
                    decision["reason"] = str(e)
                    errors.append(e)
            result.decisions.append(decision)

        logger.info(
            f"{entity_type} {entity_id} {from_status or '-'} -> {to_status}: "
            f"cancelled {result.cancelled_jobs}, scheduled {len(result.scheduled_jobs)} "
            f"of {len(triggers)} triggers"
        )
        await self._log_state_change(
            organization_id,
            workflow.id,
            entity_type,
            entity_id,
            from_status,
            to_status,
            result,
        )

        if errors:
            raise TriggerSchedulingError(errors)
        return result


state_change_reactor = StateChangeReactor()
