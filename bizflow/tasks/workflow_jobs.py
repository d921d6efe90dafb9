from loguru import logger

from bizflow.services.workflow.dispatcher import job_dispatcher


async def dispatch_workflow_jobs(
    ctx, limit: int | None = None, organization_id: int | None = None
):
    """Run one dispatch sweep over the due scheduled jobs, optionally for one organization"""
    if limit is None:
        summary = await job_dispatcher.process_due_jobs(organization_id=organization_id)
    else:
        summary = await job_dispatcher.process_due_jobs(
            limit=limit, organization_id=organization_id
        )
    if summary.claimed:
        logger.info(
            f"Dispatch sweep: {summary.claimed} claimed, {summary.completed} completed, "
            f"{summary.failed} failed, {summary.requeued} requeued, "
            f"{summary.cancelled} cancelled"
        )
    return {
        "claimed": summary.claimed,
        "completed": summary.completed,
        "failed": summary.failed,
        "requeued": summary.requeued,
        "cancelled": summary.cancelled,
    }


async def requeue_stale_workflow_jobs(ctx):
    """Release jobs whose worker died between claiming and finishing them"""
    requeued, failed = await job_dispatcher.requeue_stale_jobs()
    if requeued or failed:
        logger.warning(
            f"Released stale workflow jobs: {requeued} requeued, {failed} failed"
        )
    return {"requeued": requeued, "failed": failed}


async def cleanup_workflow_jobs(ctx):
    deleted = await job_dispatcher.cleanup_finished_jobs()
    logger.info(f"Deleted {deleted} finished workflow jobs past retention")
    return {"deleted": deleted}
