from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger

from bizflow.db import db_client
from bizflow.db.models import OrganizationModel
from bizflow.enums import (
    ExecutionEventType,
    ScheduledJobStatus,
    WorkflowEntityType,
)
from bizflow.routes.errors import http_error
from bizflow.schemas.workflow import (
    DispatchSummaryResponse,
    ExecutionLogListResponse,
    ExecutionLogResponse,
    ScheduledJobListResponse,
    ScheduledJobResponse,
    StateChangeRequest,
    StateChangeResponse,
)
from bizflow.services.auth.depends import get_organization
from bizflow.services.workflow.dispatcher import job_dispatcher
from bizflow.services.workflow.errors import TriggerSchedulingError
from bizflow.services.workflow.reactor import state_change_reactor
from bizflow.tasks.arq import enqueue_job
from bizflow.tasks.function_names import FunctionNames

router = APIRouter(prefix="/workflow-executions", tags=["workflow-executions"])


@router.get("/logs")
async def get_execution_logs(
    workflow_id: Optional[int] = None,
    entity_type: Optional[WorkflowEntityType] = None,
    entity_id: Optional[str] = None,
    event_type: Optional[ExecutionEventType] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    organization: OrganizationModel = Depends(get_organization),
) -> ExecutionLogListResponse:
    """Get the organization's execution log, newest first"""
    logs, total = await db_client.get_execution_logs(
        organization.id,
        workflow_id=workflow_id,
        entity_type=entity_type.value if entity_type else None,
        entity_id=entity_id,
        event_type=event_type.value if event_type else None,
        limit=limit,
        offset=offset,
    )
    return ExecutionLogListResponse(
        logs=[ExecutionLogResponse.model_validate(log) for log in logs],
        total=total,
    )


@router.get("/entity/{entity_type}/{entity_id}/logs")
async def get_entity_execution_logs(
    entity_type: WorkflowEntityType,
    entity_id: str,
    limit: int = Query(20, ge=1, le=200),
    organization: OrganizationModel = Depends(get_organization),
) -> list[ExecutionLogResponse]:
    """Get the workflow history of one entity, e.g. for its detail page"""
    logs = await db_client.get_entity_execution_logs(
        organization.id, entity_type.value, entity_id, limit=limit
    )
    return [ExecutionLogResponse.model_validate(log) for log in logs]


@router.get("/jobs")
async def get_scheduled_jobs(
    status: Optional[ScheduledJobStatus] = ScheduledJobStatus.PENDING,
    entity_type: Optional[WorkflowEntityType] = None,
    entity_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    organization: OrganizationModel = Depends(get_organization),
) -> ScheduledJobListResponse:
    jobs, total = await db_client.get_scheduled_jobs(
        organization.id,
        status=status.value if status else None,
        entity_type=entity_type.value if entity_type else None,
        entity_id=entity_id,
        limit=limit,
        offset=offset,
    )
    return ScheduledJobListResponse(
        jobs=[ScheduledJobResponse.model_validate(job) for job in jobs],
        total=total,
    )


@router.get("/jobs/stats")
async def get_scheduled_job_stats(
    organization: OrganizationModel = Depends(get_organization),
) -> dict[str, int]:
    """Count the organization's jobs per status"""
    return await db_client.get_scheduled_job_stats(organization.id)


@router.post("/jobs/process")
async def process_scheduled_jobs(
    limit: Optional[int] = Query(None, ge=1, le=1000),
    background: bool = False,
    organization: OrganizationModel = Depends(get_organization),
) -> DispatchSummaryResponse | dict:
    """
    Run one dispatch sweep now instead of waiting for the worker's cron.

    Only the calling organization's due jobs are claimed. With ``background``
    the sweep is handed to the worker and the request returns immediately.
    """
    if background:
        await enqueue_job(FunctionNames.DISPATCH_WORKFLOW_JOBS, limit, organization.id)
        return {"message": "Dispatch sweep enqueued"}

    if limit is None:
        summary = await job_dispatcher.process_due_jobs(organization_id=organization.id)
    else:
        summary = await job_dispatcher.process_due_jobs(
            limit=limit, organization_id=organization.id
        )
    logger.info(
        f"Manual dispatch sweep by organization {organization.id}: "
        f"{summary.claimed} claimed, {summary.completed} completed, "
        f"{summary.failed} failed, {summary.requeued} requeued"
    )
    return DispatchSummaryResponse.model_validate(summary)


@router.post("/jobs/{job_id}/cancel")
async def cancel_scheduled_job(
    job_id: int,
    organization: OrganizationModel = Depends(get_organization),
) -> ScheduledJobResponse:
    try:
        cancelled = await db_client.cancel_scheduled_job(job_id, organization.id)
    except ValueError as e:
        raise http_error(e)

    if not cancelled:
        raise HTTPException(
            status_code=409, detail=f"Scheduled job {job_id} is no longer pending"
        )
    job = await db_client.get_scheduled_job(job_id, organization.id)
    return ScheduledJobResponse.model_validate(job)


@router.post("/state-change")
async def report_state_change(
    request: StateChangeRequest,
    organization: OrganizationModel = Depends(get_organization),
) -> StateChangeResponse:
    """
    Hook for entity services, called after a status change was committed.

    Cancels the entity's pending jobs and schedules the triggers of the state
    named after the new status in the organization's default workflow.

    Raises:
        HTTPException: 500 when cancelling or scheduling failed for any trigger.
            Every trigger is attempted before the error is returned.
    """
    try:
        result = await state_change_reactor.on_entity_state_change(
            organization_id=organization.id,
            entity_type=request.entity_type.value,
            entity_id=str(request.entity_id),
            from_status=request.from_status,
            to_status=request.to_status,
            reference_time=request.reference_time,
        )
    except TriggerSchedulingError as e:
        raise HTTPException(
            status_code=500,
            detail={
                "message": "Failed to schedule workflow triggers",
                "errors": [str(error) for error in e.errors],
            },
        )

    return StateChangeResponse(
        workflow_id=result.workflow_id,
        state_id=result.state_id,
        matched=result.matched,
        cancelled_jobs=result.cancelled_jobs,
        scheduled_jobs=[
            ScheduledJobResponse.model_validate(job) for job in result.scheduled_jobs
        ],
        decisions=[
            {**decision, "outcome": decision["outcome"].value}
            for decision in result.decisions
        ],
    )
