from datetime import datetime

from loguru import logger

from bizflow.db import db_client
from bizflow.db.models import ScheduledJobModel


class JobScheduler:
    """Writes and cancels queue rows. Both operations are safe to repeat."""

    async def schedule_job(
        self,
        organization_id: int,
        trigger_id: int,
        entity_type: str,
        entity_id: str,
        when: datetime,
    ) -> ScheduledJobModel:
        job = await db_client.create_scheduled_job(
            organization_id=organization_id,
            trigger_id=trigger_id,
            entity_type=entity_type,
            entity_id=entity_id,
            scheduled_for=when,
        )
        logger.debug(
            f"Scheduled job {job.id} for trigger {trigger_id} on "
            f"{entity_type} {entity_id} at {when.isoformat()}"
        )
        return job

    async def cancel_pending_jobs_for_entity(
        self, entity_type: str, entity_id: str, organization_id: int | None = None
    ) -> int:
        cancelled = await db_client.cancel_pending_jobs_for_entity(
            entity_type, entity_id, organization_id=organization_id
        )
        if cancelled:
            logger.info(f"Cancelled {cancelled} pending jobs for {entity_type} {entity_id}")
        return cancelled


job_scheduler = JobScheduler()
