from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, update
from sqlalchemy.future import select

from bizflow.db.base_client import BaseDBClient
from bizflow.db.filters import apply_scheduled_job_filters
from bizflow.db.models import ScheduledJobModel
from bizflow.enums import ScheduledJobStatus
from bizflow.services.workflow.errors import NotFoundError

FINISHED_JOB_STATUSES = (
    ScheduledJobStatus.COMPLETED.value,
    ScheduledJobStatus.CANCELLED.value,
    ScheduledJobStatus.FAILED.value,
)


class ScheduledJobClient(BaseDBClient):
    async def create_scheduled_job(
        self,
        organization_id: int,
        trigger_id: int,
        entity_type: str,
        entity_id: str,
        scheduled_for: datetime,
    ) -> ScheduledJobModel:
        """Insert a pending job. There is no deduplication against existing jobs."""
        async with self.async_session() as session:
            job = ScheduledJobModel(
                organization_id=organization_id,
                trigger_id=trigger_id,
                entity_type=entity_type,
                entity_id=entity_id,
                scheduled_for=scheduled_for,
                status=ScheduledJobStatus.PENDING.value,
            )
            session.add(job)
            try:
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
            await session.refresh(job)
            return job

    async def cancel_pending_jobs_for_entity(
        self,
        entity_type: str,
        entity_id: str,
        organization_id: int | None = None,
    ) -> int:
        """Cancel every pending job of an entity and return how many were cancelled.

        Idempotent: a second call finds nothing pending and cancels nothing.
        """
        async with self.async_session() as session:
            query = update(ScheduledJobModel).where(
                ScheduledJobModel.entity_type == entity_type,
                ScheduledJobModel.entity_id == entity_id,
                ScheduledJobModel.status == ScheduledJobStatus.PENDING.value,
            )
            if organization_id is not None:
                query = query.where(ScheduledJobModel.organization_id == organization_id)
            try:
                result = await session.execute(
                    query.values(status=ScheduledJobStatus.CANCELLED.value)
                )
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
            return result.rowcount

    async def cancel_scheduled_job(self, job_id: int, organization_id: int) -> bool:
        """Cancel one job. Returns False when the job is no longer pending."""
        async with self.async_session() as session:
            job = await session.get(ScheduledJobModel, job_id)
            if not job or job.organization_id != organization_id:
                raise NotFoundError("Scheduled job", job_id)
            try:
                result = await session.execute(
                    update(ScheduledJobModel)
                    .where(
                        ScheduledJobModel.id == job_id,
                        ScheduledJobModel.status == ScheduledJobStatus.PENDING.value,
                    )
                    .values(status=ScheduledJobStatus.CANCELLED.value)
                )
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
            return result.rowcount == 1

    async def claim_due_jobs(
        self,
        now: datetime,
        limit: int,
        status: str = ScheduledJobStatus.PENDING.value,
        organization_id: int | None = None,
    ) -> list[ScheduledJobModel]:
        """Atomically claim due jobs for one dispatcher worker.

        Rows locked by another worker are skipped, and every claimed row moves to
        ``processing`` with its attempt counter bumped before any side effect runs.
        If the claim transaction fails the jobs stay in their original status.
        With ``organization_id`` only that organization's jobs are claimed.
        """
        async with self.async_session() as session:
            try:
                query = select(ScheduledJobModel).where(
                    ScheduledJobModel.status == status,
                    ScheduledJobModel.scheduled_for <= now,
                )
                if organization_id is not None:
                    query = query.where(
                        ScheduledJobModel.organization_id == organization_id
                    )
                result = await session.execute(
                    query.order_by(ScheduledJobModel.scheduled_for, ScheduledJobModel.id)
                    .limit(limit)
                    .with_for_update(skip_locked=True)
                )
                jobs = list(result.scalars().all())
                job_ids = [job.id for job in jobs]
                for job in jobs:
                    job.status = ScheduledJobStatus.PROCESSING.value
                    job.attempts = (job.attempts or 0) + 1
                    job.claimed_at = now
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e

            if not job_ids:
                return []
            result = await session.execute(
                select(ScheduledJobModel)
                .where(ScheduledJobModel.id.in_(job_ids))
                .order_by(ScheduledJobModel.scheduled_for, ScheduledJobModel.id)
            )
            return list(result.scalars().all())

    async def _finish_processing_job(self, job_id: int, **values) -> None:
        async with self.async_session() as session:
            try:
                await session.execute(
                    update(ScheduledJobModel)
                    .where(
                        ScheduledJobModel.id == job_id,
                        ScheduledJobModel.status
                        == ScheduledJobStatus.PROCESSING.value,
                    )
                    .values(**values)
                )
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e

    async def complete_scheduled_job(self, job_id: int, processed_at: datetime) -> None:
        await self._finish_processing_job(
            job_id,
            status=ScheduledJobStatus.COMPLETED.value,
            processed_at=processed_at,
            last_error=None,
        )

    async def fail_scheduled_job(
        self, job_id: int, error: str, processed_at: datetime
    ) -> None:
        await self._finish_processing_job(
            job_id,
            status=ScheduledJobStatus.FAILED.value,
            processed_at=processed_at,
            last_error=error,
        )

    async def cancel_processing_job(
        self, job_id: int, reason: str, processed_at: datetime
    ) -> None:
        await self._finish_processing_job(
            job_id,
            status=ScheduledJobStatus.CANCELLED.value,
            processed_at=processed_at,
            last_error=reason,
        )

    async def requeue_scheduled_job(self, job_id: int, error: str) -> None:
        """Hand a claimed job back to the queue, keeping its attempt count"""
        await self._finish_processing_job(
            job_id,
            status=ScheduledJobStatus.PENDING.value,
            claimed_at=None,
            last_error=error,
        )

    async def requeue_stale_jobs(
        self, claimed_before: datetime, max_attempts: int
    ) -> tuple[int, int]:
        """Release jobs whose worker died mid-dispatch.

        Returns (requeued, failed): jobs at the attempt cap are failed instead.
        """
        stale_filter = (
            ScheduledJobModel.status == ScheduledJobStatus.PROCESSING.value,
            ScheduledJobModel.claimed_at < claimed_before,
        )
        async with self.async_session() as session:
            try:
                failed = await session.execute(
                    update(ScheduledJobModel)
                    .where(*stale_filter, ScheduledJobModel.attempts >= max_attempts)
                    .values(
                        status=ScheduledJobStatus.FAILED.value,
                        last_error="Abandoned while processing",
                    )
                )
                requeued = await session.execute(
                    update(ScheduledJobModel)
                    .where(*stale_filter, ScheduledJobModel.attempts < max_attempts)
                    .values(
                        status=ScheduledJobStatus.PENDING.value,
                        claimed_at=None,
                        last_error="Abandoned while processing",
                    )
                )
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
            return requeued.rowcount, failed.rowcount

    async def get_scheduled_job(
        self, job_id: int, organization_id: int
    ) -> Optional[ScheduledJobModel]:
        async with self.async_session() as session:
            result = await session.execute(
                select(ScheduledJobModel).where(
                    ScheduledJobModel.id == job_id,
                    ScheduledJobModel.organization_id == organization_id,
                )
            )
            return result.scalars().first()

    async def get_scheduled_jobs(
        self,
        organization_id: int,
        status: str | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ScheduledJobModel], int]:
        """Get a page of jobs ordered by execution time, plus the unpaged total"""
        async with self.async_session() as session:
            base_query = apply_scheduled_job_filters(
                select(ScheduledJobModel).where(
                    ScheduledJobModel.organization_id == organization_id
                ),
                status=status,
                entity_type=entity_type,
                entity_id=entity_id,
            )
            count_result = await session.execute(
                select(func.count()).select_from(base_query.subquery())
            )
            total = count_result.scalar() or 0

            result = await session.execute(
                base_query.order_by(
                    ScheduledJobModel.scheduled_for, ScheduledJobModel.id
                )
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all()), total

    async def get_scheduled_job_stats(self, organization_id: int) -> dict[str, int]:
        """Count jobs per status, every status present with zero as default"""
        async with self.async_session() as session:
            result = await session.execute(
                select(ScheduledJobModel.status, func.count(ScheduledJobModel.id))
                .where(ScheduledJobModel.organization_id == organization_id)
                .group_by(ScheduledJobModel.status)
            )
            stats = {status.value: 0 for status in ScheduledJobStatus}
            for status, count in result.all():
                stats[status] = count
            return stats

    async def delete_finished_jobs(self, created_before: datetime) -> int:
        async with self.async_session() as session:
            try:
                result = await session.execute(
                    delete(ScheduledJobModel).where(
                        ScheduledJobModel.status.in_(FINISHED_JOB_STATUSES),
                        ScheduledJobModel.created_at < created_before,
                    )
                )
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
            return result.rowcount
