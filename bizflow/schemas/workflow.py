from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from bizflow.enums import (
    ActionType,
    MessageChannel,
    StateType,
    TriggerType,
    WorkflowEntityType,
)


# Workflows


class CreateWorkflowRequest(BaseModel):
    name: str = Field(..., min_length=1)
    entity_type: WorkflowEntityType
    description: Optional[str] = None
    is_active: bool = True
    is_default: bool = False


class UpdateWorkflowRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    is_active: Optional[bool] = None
    is_default: Optional[bool] = None


class DuplicateWorkflowRequest(BaseModel):
    new_name: Optional[str] = None


class WorkflowSummaryResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    module: str
    entity_type: str
    is_active: bool
    is_default: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# States and transitions


class CreateWorkflowStateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    display_name: str = Field(..., min_length=1)
    description: Optional[str] = None
    state_type: StateType = StateType.INTERMEDIATE
    color: Optional[str] = None
    icon: Optional[str] = None
    position: int = 0
    is_active: bool = True


class UpdateWorkflowStateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    display_name: Optional[str] = None
    description: Optional[str] = None
    state_type: Optional[StateType] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    position: Optional[int] = None
    is_active: Optional[bool] = None


class ReorderWorkflowStatesRequest(BaseModel):
    state_ids: List[int] = Field(..., min_length=1)


class WorkflowStateResponse(BaseModel):
    id: int
    workflow_id: int
    name: str
    display_name: str
    description: Optional[str] = None
    state_type: str
    color: str
    icon: Optional[str] = None
    position: int
    is_active: bool

    class Config:
        from_attributes = True


class CreateWorkflowTransitionRequest(BaseModel):
    from_state_id: int
    to_state_id: int
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    requires_confirmation: bool = False
    is_active: bool = True


class UpdateWorkflowTransitionRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    requires_confirmation: Optional[bool] = None
    is_active: Optional[bool] = None


class WorkflowTransitionResponse(BaseModel):
    id: int
    workflow_id: int
    from_state_id: int
    to_state_id: int
    name: str
    description: Optional[str] = None
    requires_confirmation: bool
    is_active: bool

    class Config:
        from_attributes = True


# Triggers and actions


class CreateWorkflowActionRequest(BaseModel):
    action_type: ActionType
    action_config: Dict[str, Any] = Field(default_factory=dict)
    template_id: Optional[int] = None
    action_order: Optional[int] = None
    is_active: bool = True


class UpdateWorkflowActionRequest(BaseModel):
    """Partial action update. An explicit ``"template_id": null`` unlinks the template."""

    action_type: Optional[ActionType] = None
    action_config: Optional[Dict[str, Any]] = None
    template_id: Optional[int] = None
    action_order: Optional[int] = None
    is_active: Optional[bool] = None


class WorkflowActionResponse(BaseModel):
    id: int
    trigger_id: int
    action_type: str
    action_config: Dict[str, Any]
    template_id: Optional[int] = None
    action_order: int
    is_active: bool

    class Config:
        from_attributes = True


class CreateWorkflowTriggerRequest(BaseModel):
    trigger_type: TriggerType
    state_id: Optional[int] = None
    transition_id: Optional[int] = None
    time_offset_minutes: Optional[int] = None
    time_field: Optional[str] = None
    recurring_cron: Optional[str] = None
    conditions: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    actions: List[CreateWorkflowActionRequest] = Field(default_factory=list)


class UpdateWorkflowTriggerRequest(BaseModel):
    trigger_type: Optional[TriggerType] = None
    time_offset_minutes: Optional[int] = None
    time_field: Optional[str] = None
    recurring_cron: Optional[str] = None
    conditions: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


class WorkflowTriggerResponse(BaseModel):
    id: int
    workflow_id: int
    state_id: Optional[int] = None
    transition_id: Optional[int] = None
    trigger_type: str
    time_offset_minutes: Optional[int] = None
    time_field: Optional[str] = None
    recurring_cron: Optional[str] = None
    conditions: Dict[str, Any]
    is_active: bool
    actions: List[WorkflowActionResponse] = []

    class Config:
        from_attributes = True


class WorkflowDetailResponse(WorkflowSummaryResponse):
    states: List[WorkflowStateResponse] = []
    transitions: List[WorkflowTransitionResponse] = []
    triggers: List[WorkflowTriggerResponse] = []


# Simulation, bootstrap and variables


class ActionPreviewResponse(BaseModel):
    action_id: int
    action_type: str
    action_order: int
    channel: Optional[str] = None
    template_id: Optional[int] = None
    recipient: Optional[str] = None
    rendered_subject: Optional[str] = None
    rendered_body: Optional[str] = None
    error: Optional[str] = None

    class Config:
        from_attributes = True


class TriggerPreviewResponse(BaseModel):
    workflow_id: int
    trigger_id: int
    trigger_type: str
    entity_type: str
    state_id: Optional[int] = None
    transition_id: Optional[int] = None
    sample_data: Dict[str, Any]
    actions: List[ActionPreviewResponse]

    class Config:
        from_attributes = True


class InitDefaultsResponse(BaseModel):
    workflows: List[WorkflowSummaryResponse]
    templates_created: int


class VariableResponse(BaseModel):
    name: str
    description: str
    sample_value: str


# Message templates


class TemplateVariable(BaseModel):
    name: str
    description: str = ""


class CreateMessageTemplateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    channel: MessageChannel
    body: str = Field(..., min_length=1)
    subject: Optional[str] = None
    description: Optional[str] = None
    # Extracted from subject and body when omitted
    variables: Optional[List[TemplateVariable]] = None
    is_active: bool = True


class UpdateMessageTemplateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    channel: Optional[MessageChannel] = None
    body: Optional[str] = Field(default=None, min_length=1)
    subject: Optional[str] = None
    description: Optional[str] = None
    variables: Optional[List[TemplateVariable]] = None
    is_active: Optional[bool] = None


class MessageTemplateResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    channel: str
    subject: Optional[str] = None
    body: str
    variables: List[TemplateVariable]
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Execution: jobs, logs and the state-change hook


class ScheduledJobResponse(BaseModel):
    id: int
    trigger_id: Optional[int] = None
    entity_type: str
    entity_id: str
    scheduled_for: datetime
    status: str
    attempts: int
    last_error: Optional[str] = None
    claimed_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ScheduledJobListResponse(BaseModel):
    jobs: List[ScheduledJobResponse]
    total: int


class ExecutionLogResponse(BaseModel):
    id: int
    workflow_id: Optional[int] = None
    entity_type: str
    entity_id: str
    trigger_id: Optional[int] = None
    action_id: Optional[int] = None
    event_type: str
    from_state: Optional[str] = None
    to_state: Optional[str] = None
    details: Dict[str, Any]
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ExecutionLogListResponse(BaseModel):
    logs: List[ExecutionLogResponse]
    total: int


class DispatchSummaryResponse(BaseModel):
    claimed: int
    completed: int
    failed: int
    requeued: int
    cancelled: int

    class Config:
        from_attributes = True


class StateChangeRequest(BaseModel):
    entity_type: WorkflowEntityType
    entity_id: Union[int, str]
    from_status: Optional[str] = None
    to_status: str = Field(..., min_length=1)
    # Base instant for time_before/time_after offsets, e.g. a session's start
    reference_time: Optional[datetime] = None


class StateChangeResponse(BaseModel):
    workflow_id: Optional[int] = None
    state_id: Optional[int] = None
    matched: bool
    cancelled_jobs: int
    scheduled_jobs: List[ScheduledJobResponse]
    decisions: List[Dict[str, Any]]
