from sqlalchemy import func
from sqlalchemy.future import select

from bizflow.db.base_client import BaseDBClient
from bizflow.db.filters import apply_execution_log_filters
from bizflow.db.models import WorkflowExecutionLogModel


class ExecutionLogClient(BaseDBClient):
    async def create_execution_log(
        self,
        organization_id: int,
        entity_type: str,
        entity_id: str,
        event_type: str,
        workflow_id: int | None = None,
        trigger_id: int | None = None,
        action_id: int | None = None,
        from_state: str | None = None,
        to_state: str | None = None,
        details: dict | None = None,
    ) -> WorkflowExecutionLogModel:
        """Append an audit row. Rows are never updated afterwards."""
        async with self.async_session() as session:
            log = WorkflowExecutionLogModel(
                organization_id=organization_id,
                workflow_id=workflow_id,
                entity_type=entity_type,
                entity_id=entity_id,
                trigger_id=trigger_id,
                action_id=action_id,
                event_type=event_type,
                from_state=from_state,
                to_state=to_state,
                details=details or {},
            )
            session.add(log)
            try:
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
            await session.refresh(log)
            return log

    async def get_execution_logs(
        self,
        organization_id: int,
        workflow_id: int | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        event_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[WorkflowExecutionLogModel], int]:
        """Get a page of logs, newest first, plus the unpaged total"""
        async with self.async_session() as session:
            base_query = apply_execution_log_filters(
                select(WorkflowExecutionLogModel).where(
                    WorkflowExecutionLogModel.organization_id == organization_id
                ),
                workflow_id=workflow_id,
                entity_type=entity_type,
                entity_id=entity_id,
                event_type=event_type,
            )
            count_result = await session.execute(
                select(func.count()).select_from(base_query.subquery())
            )
            total = count_result.scalar() or 0

            result = await session.execute(
                base_query.order_by(
                    WorkflowExecutionLogModel.created_at.desc(),
                    WorkflowExecutionLogModel.id.desc(),
                )
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all()), total

    async def get_entity_execution_logs(
        self,
        organization_id: int,
        entity_type: str,
        entity_id: str,
        limit: int = 20,
    ) -> list[WorkflowExecutionLogModel]:
        logs, _ = await self.get_execution_logs(
            organization_id,
            entity_type=entity_type,
            entity_id=entity_id,
            limit=limit,
        )
        return logs
