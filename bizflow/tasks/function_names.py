from enum import Enum


class FunctionNames(str, Enum):
    DISPATCH_WORKFLOW_JOBS = "dispatch_workflow_jobs"
    REQUEUE_STALE_WORKFLOW_JOBS = "requeue_stale_workflow_jobs"
    CLEANUP_WORKFLOW_JOBS = "cleanup_workflow_jobs"
