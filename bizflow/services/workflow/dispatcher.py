import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Dict, Optional

from loguru import logger

from bizflow.constants import (
    WORKFLOW_DELIVERY_TIMEOUT_SECONDS,
    WORKFLOW_DISPATCH_BATCH_SIZE,
    WORKFLOW_JOB_MAX_ATTEMPTS,
    WORKFLOW_JOB_RETENTION_DAYS,
    WORKFLOW_JOB_STALE_SECONDS,
)
from bizflow.db import db_client
from bizflow.db.models import (
    ScheduledJobModel,
    WorkflowActionModel,
    WorkflowTriggerModel,
)
from bizflow.enums import ActionType, ExecutionEventType, ScheduledJobStatus
from bizflow.logging_config import workflow_ctx_var
from bizflow.services.delivery.base import DeliveryProvider, DeliveryRequest
from bizflow.services.delivery.factory import get_delivery_provider
from bizflow.services.workflow.action_resolver import (
    is_message_action,
    resolve_field_update,
    resolve_message,
    resolve_task,
)
from bizflow.services.workflow.collaborators import (
    CollaboratorRegistry,
    collaborators,
)
from bizflow.services.workflow.errors import DeliveryError, InvalidActionConfigError


@dataclass
class DispatchSummary:
    claimed: int = 0
    completed: int = 0
    failed: int = 0
    requeued: int = 0
    cancelled: int = 0


class JobDispatcher:
    """Executes due scheduled jobs.

    Each sweep claims its jobs before running any side effect, so concurrent
    sweeps never pick up the same job. Sends are at-least-once: a requeued job
    runs all of its actions again, with a new idempotency key per attempt.
    """

    def __init__(
        self,
        registry: CollaboratorRegistry = collaborators,
        provider_factory: Callable[[str], DeliveryProvider] = get_delivery_provider,
        delivery_timeout: float = WORKFLOW_DELIVERY_TIMEOUT_SECONDS,
        max_attempts: int = WORKFLOW_JOB_MAX_ATTEMPTS,
    ):
        self.registry = registry
        self.provider_factory = provider_factory
        self.delivery_timeout = delivery_timeout
        self.max_attempts = max_attempts

    async def _log_event(
        self,
        job: ScheduledJobModel,
        event_type: ExecutionEventType,
        workflow_id: Optional[int] = None,
        action_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            await db_client.create_execution_log(
                organization_id=job.organization_id,
                workflow_id=workflow_id,
                entity_type=job.entity_type,
                entity_id=job.entity_id,
                trigger_id=job.trigger_id,
                action_id=action_id,
                event_type=event_type.value,
                details={"job_id": job.id, "attempt": job.attempts, **(details or {})},
            )
        except Exception as e:
            logger.warning(f"Failed to write {event_type.value} log for job {job.id}: {e}")

    async def process_due_jobs(
        self,
        status: str = ScheduledJobStatus.PENDING.value,
        limit: int = WORKFLOW_DISPATCH_BATCH_SIZE,
        now: datetime | None = None,
        organization_id: int | None = None,
    ) -> DispatchSummary:
        """
        Run one dispatch sweep.

        Args:
            status: Status of the jobs to pick up
            limit: Maximum number of jobs claimed by this sweep
            now: Jobs scheduled at or before this instant are due
            organization_id: Only claim this organization's jobs, all when None

        Returns:
            DispatchSummary with the final status counts of the claimed jobs
        """
        now = now or datetime.now(UTC)
        jobs = await db_client.claim_due_jobs(
            now=now, limit=limit, status=status, organization_id=organization_id
        )
        summary = DispatchSummary(claimed=len(jobs))
        if not jobs:
            return summary

        logger.info(f"Claimed {len(jobs)} due workflow jobs")
        for job in jobs:
            try:
                outcome = await self.process_job(job)
            except Exception as e:
                # Storage failed mid-job; the stale sweep releases the claim later
                logger.exception(f"Unexpected error dispatching job {job.id}: {e}")
                continue

            if outcome == ScheduledJobStatus.COMPLETED.value:
                summary.completed += 1
            elif outcome == ScheduledJobStatus.FAILED.value:
                summary.failed += 1
            elif outcome == ScheduledJobStatus.PENDING.value:
                summary.requeued += 1
            elif outcome == ScheduledJobStatus.CANCELLED.value:
                summary.cancelled += 1
        return summary

    async def process_job(self, job: ScheduledJobModel) -> str:
        """Run the actions of one claimed job and record the outcome.

        Returns the status the job was moved to.
        """
        ctx_token = workflow_ctx_var.set(f"job:{job.id}")
        try:
            return await self._process_job(job)
        finally:
            workflow_ctx_var.reset(ctx_token)

    async def _process_job(self, job: ScheduledJobModel) -> str:
        trigger = await db_client.get_workflow_trigger(
            job.trigger_id, job.organization_id
        )
        if not trigger:
            await db_client.fail_scheduled_job(
                job.id, "Trigger not found", datetime.now(UTC)
            )
            return ScheduledJobStatus.FAILED.value

        if not trigger.is_active or not trigger.workflow.is_active:
            logger.info(f"Trigger {trigger.id} was deactivated, dropping job {job.id}")
            await db_client.cancel_processing_job(
                job.id, "Trigger is inactive", datetime.now(UTC)
            )
            return ScheduledJobStatus.CANCELLED.value

        try:
            data = await self.registry.data_provider(job.entity_type).get_entity_data(
                job.organization_id, job.entity_type, job.entity_id
            )
        except Exception as e:
            logger.error(
                f"Failed to load data of {job.entity_type} {job.entity_id}: {e}"
            )
            await db_client.fail_scheduled_job(
                job.id, f"Failed to load entity data: {e}", datetime.now(UTC)
            )
            return ScheduledJobStatus.FAILED.value

        await self._log_event(
            job,
            ExecutionEventType.TRIGGER_FIRED,
            workflow_id=trigger.workflow_id,
            details={"trigger_type": trigger.trigger_type},
        )

        errors: list[Exception] = []
        timed_out = False
        for action in trigger.actions:
            if not action.is_active:
                continue
            try:
                details = await self._execute_action(job, trigger, action, data)
            except asyncio.TimeoutError:
                timed_out = True
                message = f"Action {action.id} timed out after {self.delivery_timeout}s"
                logger.warning(message)
                await self._log_event(
                    job,
                    ExecutionEventType.ACTION_FAILED,
                    workflow_id=trigger.workflow_id,
                    action_id=action.id,
                    details={"action_type": action.action_type, "error": message},
                )
                continue
            except Exception as e:
                errors.append(e)
                logger.error(f"Action {action.id} ({action.action_type}) failed: {e}")
                await self._log_event(
                    job,
                    ExecutionEventType.ACTION_FAILED,
                    workflow_id=trigger.workflow_id,
                    action_id=action.id,
                    details={"action_type": action.action_type, "error": str(e)},
                )
                continue

            await self._log_event(
                job,
                ExecutionEventType.ACTION_EXECUTED,
                workflow_id=trigger.workflow_id,
                action_id=action.id,
                details={"action_type": action.action_type, **details},
            )

        finished_at = datetime.now(UTC)
        if errors:
            await db_client.fail_scheduled_job(job.id, str(errors[0]), finished_at)
            return ScheduledJobStatus.FAILED.value

        if timed_out:
            error = "Delivery timed out"
            if job.attempts >= self.max_attempts:
                await db_client.fail_scheduled_job(
                    job.id, f"{error} after {job.attempts} attempts", finished_at
                )
                return ScheduledJobStatus.FAILED.value
            await db_client.requeue_scheduled_job(job.id, error)
            return ScheduledJobStatus.PENDING.value

        await db_client.complete_scheduled_job(job.id, finished_at)
        return ScheduledJobStatus.COMPLETED.value

    async def _execute_action(
        self,
        job: ScheduledJobModel,
        trigger: WorkflowTriggerModel,
        action: WorkflowActionModel,
        data: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Run one action and return the details recorded in the execution log."""
        if is_message_action(action.action_type):
            message = resolve_message(action, data)
            if not message.recipient:
                raise DeliveryError(
                    f"No recipient: field {message.recipient_field} is empty"
                )
            request = DeliveryRequest(
                channel=message.channel,
                recipient=message.recipient,
                subject=message.subject,
                body=message.body,
                job_id=job.id,
                action_id=action.id,
                organization_id=job.organization_id,
                attempt=job.attempts,
            )
            provider = self.provider_factory(message.channel)
            result = await asyncio.wait_for(
                provider.send(request), timeout=self.delivery_timeout
            )
            return {
                "channel": message.channel,
                "recipient": message.recipient,
                "template_id": message.template_id,
                "provider": result.provider,
                "message_id": result.message_id,
                "idempotency_key": request.idempotency_key,
            }

        if action.action_type == ActionType.UPDATE_FIELD.value:
            field, value = resolve_field_update(action, data)
            updater = self.registry.field_updater(job.entity_type)
            await asyncio.wait_for(
                updater.update_field(
                    job.organization_id, job.entity_type, job.entity_id, field, value
                ),
                timeout=self.delivery_timeout,
            )
            return {"field": field, "value": value}

        if action.action_type == ActionType.CREATE_TASK.value:
            task = resolve_task(action, data, job.entity_type, job.entity_id)
            await asyncio.wait_for(
                self.registry.task_creator().create_task(
                    job.organization_id, job.entity_type, job.entity_id, task
                ),
                timeout=self.delivery_timeout,
            )
            return {"title": task.title}

        raise InvalidActionConfigError(action.action_type, "unknown action type")

    async def requeue_stale_jobs(self, now: datetime | None = None) -> tuple[int, int]:
        """Release jobs stuck in processing after their worker died."""
        now = now or datetime.now(UTC)
        requeued, failed = await db_client.requeue_stale_jobs(
            claimed_before=now - timedelta(seconds=WORKFLOW_JOB_STALE_SECONDS),
            max_attempts=self.max_attempts,
        )
        if requeued or failed:
            logger.warning(f"Released stale jobs: {requeued} requeued, {failed} failed")
        return requeued, failed

    async def cleanup_finished_jobs(self, now: datetime | None = None) -> int:
        now = now or datetime.now(UTC)
        deleted = await db_client.delete_finished_jobs(
            created_before=now - timedelta(days=WORKFLOW_JOB_RETENTION_DAYS)
        )
        logger.info(f"Deleted {deleted} finished workflow jobs")
        return deleted


# Global instance
job_dispatcher = JobDispatcher()
