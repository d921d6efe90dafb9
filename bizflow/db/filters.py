"""Common filter utilities for scheduled job and execution log listings."""

from datetime import datetime
from typing import Optional

from bizflow.db.models import ScheduledJobModel, WorkflowExecutionLogModel


def apply_scheduled_job_filters(
    base_query,
    status: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    trigger_id: Optional[int] = None,
):
    """
    Apply listing filters to a scheduled job query.

    Every filter is an exact match and is skipped when not provided.
    """
    filter_conditions = []
    if status:
        filter_conditions.append(ScheduledJobModel.status == status)
    if entity_type:
        filter_conditions.append(ScheduledJobModel.entity_type == entity_type)
    if entity_id:
        filter_conditions.append(ScheduledJobModel.entity_id == entity_id)
    if trigger_id:
        filter_conditions.append(ScheduledJobModel.trigger_id == trigger_id)

    if filter_conditions:
        return base_query.where(*filter_conditions)
    return base_query


def apply_execution_log_filters(
    base_query,
    workflow_id: Optional[int] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    event_type: Optional[str] = None,
    created_from: Optional[datetime] = None,
    created_to: Optional[datetime] = None,
):
    """
    Apply listing filters to an execution log query.

    Supports filtering by:
    - workflow_id: exact match
    - entity_type / entity_id: exact match, usually combined
    - event_type: one of the ExecutionEventType values
    - created_from / created_to: inclusive range on created_at
    """
    filter_conditions = []
    if workflow_id:
        filter_conditions.append(WorkflowExecutionLogModel.workflow_id == workflow_id)
    if entity_type:
        filter_conditions.append(WorkflowExecutionLogModel.entity_type == entity_type)
    if entity_id:
        filter_conditions.append(WorkflowExecutionLogModel.entity_id == entity_id)
    if event_type:
        filter_conditions.append(WorkflowExecutionLogModel.event_type == event_type)
    if created_from:
        filter_conditions.append(WorkflowExecutionLogModel.created_at >= created_from)
    if created_to:
        filter_conditions.append(WorkflowExecutionLogModel.created_at <= created_to)

    if filter_conditions:
        return base_query.where(*filter_conditions)
    return base_query
