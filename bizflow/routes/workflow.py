from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger
from sqlalchemy.exc import IntegrityError

from bizflow.db import db_client
from bizflow.db.models import OrganizationModel
from bizflow.enums import WorkflowEntityType, WorkflowModule
from bizflow.routes.errors import http_error
from bizflow.schemas.action_config import decode_action_config
from bizflow.schemas.workflow import (
    CreateWorkflowActionRequest,
    CreateWorkflowRequest,
    CreateWorkflowStateRequest,
    CreateWorkflowTransitionRequest,
    CreateWorkflowTriggerRequest,
    DuplicateWorkflowRequest,
    InitDefaultsResponse,
    ReorderWorkflowStatesRequest,
    TriggerPreviewResponse,
    UpdateWorkflowActionRequest,
    UpdateWorkflowRequest,
    UpdateWorkflowStateRequest,
    UpdateWorkflowTransitionRequest,
    UpdateWorkflowTriggerRequest,
    VariableResponse,
    WorkflowActionResponse,
    WorkflowDetailResponse,
    WorkflowStateResponse,
    WorkflowSummaryResponse,
    WorkflowTransitionResponse,
    WorkflowTriggerResponse,
)
from bizflow.services.auth.depends import get_organization
from bizflow.services.workflow.bootstrap import workflow_bootstrapper
from bizflow.services.workflow.sample_data import get_available_variables
from bizflow.services.workflow.simulator import trigger_simulator

router = APIRouter(prefix="/workflows", tags=["workflows"])


def _validate_action(action_type: str, action_config: dict | None) -> None:
    # Raises InvalidActionConfigError, mapped to 422
    decode_action_config(action_type, action_config)


# ---------------------------------------------------------------------------
# Catalogue and bootstrap. Declared before /{workflow_id} so the literal
# paths are not parsed as ids.
# ---------------------------------------------------------------------------


@router.get("/variables")
async def get_workflow_variables(
    entity_type: WorkflowEntityType = Query(WorkflowEntityType.SESSION),
    organization: OrganizationModel = Depends(get_organization),
) -> List[VariableResponse]:
    """List the placeholders available to templates of an entity type, with sample values"""
    return get_available_variables(entity_type.value)


@router.post("/init-defaults")
async def init_default_workflows(
    module: Optional[str] = Query(
        None,
        description=f"One of {[m.value for m in WorkflowModule]}, empty seeds every module",
    ),
    organization: OrganizationModel = Depends(get_organization),
) -> InitDefaultsResponse:
    """
    Seed the default workflows and message templates of a business module.

    Existing default workflows and same-named templates are kept as they are.

    Args:
        module: construction, appointments, or empty for both
        organization: The calling organization
    """
    try:
        result = await workflow_bootstrapper.init_defaults(organization.id, module)
    except (ValueError, IntegrityError) as e:
        raise http_error(e)

    return InitDefaultsResponse(
        workflows=[
            WorkflowSummaryResponse.model_validate(workflow)
            for workflow in result.workflows
        ],
        templates_created=result.templates_created,
    )


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------


@router.get("")
async def get_workflows(
    module: Optional[WorkflowModule] = None,
    entity_type: Optional[WorkflowEntityType] = None,
    is_active: Optional[bool] = None,
    organization: OrganizationModel = Depends(get_organization),
) -> List[WorkflowSummaryResponse]:
    """Get the workflows of the organization"""
    workflows = await db_client.get_workflows(
        organization.id,
        module=module.value if module else None,
        entity_type=entity_type.value if entity_type else None,
        is_active=is_active,
    )
    return [WorkflowSummaryResponse.model_validate(workflow) for workflow in workflows]


@router.post("")
async def create_workflow(
    request: CreateWorkflowRequest,
    organization: OrganizationModel = Depends(get_organization),
) -> WorkflowSummaryResponse:
    try:
        workflow = await db_client.create_workflow(
            organization_id=organization.id,
            name=request.name,
            entity_type=request.entity_type.value,
            description=request.description,
            is_active=request.is_active,
            is_default=request.is_default,
        )
    except (ValueError, IntegrityError) as e:
        raise http_error(e)

    logger.info(f"Created workflow {workflow.id} for organization {organization.id}")
    return WorkflowSummaryResponse.model_validate(workflow)


@router.get("/{workflow_id}")
async def get_workflow(
    workflow_id: int,
    organization: OrganizationModel = Depends(get_organization),
) -> WorkflowDetailResponse:
    """Get a workflow with its states, transitions, triggers and actions"""
    workflow = await db_client.get_workflow(workflow_id, organization.id)
    if workflow is None:
        raise HTTPException(
            status_code=404, detail=f"Workflow with id {workflow_id} not found"
        )
    return WorkflowDetailResponse.model_validate(workflow)


@router.put("/{workflow_id}")
async def update_workflow(
    workflow_id: int,
    request: UpdateWorkflowRequest,
    organization: OrganizationModel = Depends(get_organization),
) -> WorkflowSummaryResponse:
    try:
        workflow = await db_client.update_workflow(
            workflow_id,
            organization.id,
            name=request.name,
            description=request.description,
            is_active=request.is_active,
            is_default=request.is_default,
        )
    except (ValueError, IntegrityError) as e:
        raise http_error(e)
    return WorkflowSummaryResponse.model_validate(workflow)


@router.delete("/{workflow_id}")
async def delete_workflow(
    workflow_id: int,
    organization: OrganizationModel = Depends(get_organization),
) -> dict:
    try:
        await db_client.delete_workflow(workflow_id, organization.id)
    except ValueError as e:
        raise http_error(e)

    logger.info(f"Deleted workflow {workflow_id} of organization {organization.id}")
    return {"message": "Workflow deleted"}


@router.post("/{workflow_id}/duplicate")
async def duplicate_workflow(
    workflow_id: int,
    request: Optional[DuplicateWorkflowRequest] = None,
    organization: OrganizationModel = Depends(get_organization),
) -> WorkflowDetailResponse:
    """Copy a workflow with its whole definition. The copy starts inactive."""
    try:
        workflow = await db_client.duplicate_workflow(
            workflow_id,
            organization.id,
            new_name=request.new_name if request else None,
        )
    except (ValueError, IntegrityError) as e:
        raise http_error(e)
    return WorkflowDetailResponse.model_validate(workflow)


@router.post("/{workflow_id}/set-default")
async def set_default_workflow(
    workflow_id: int,
    organization: OrganizationModel = Depends(get_organization),
) -> WorkflowSummaryResponse:
    try:
        workflow = await db_client.set_default_workflow(workflow_id, organization.id)
    except (ValueError, IntegrityError) as e:
        raise http_error(e)

    logger.info(
        f"Workflow {workflow_id} is now the default {workflow.entity_type} workflow "
        f"of organization {organization.id}"
    )
    return WorkflowSummaryResponse.model_validate(workflow)


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------


@router.get("/{workflow_id}/states")
async def get_workflow_states(
    workflow_id: int,
    organization: OrganizationModel = Depends(get_organization),
) -> List[WorkflowStateResponse]:
    try:
        states = await db_client.get_workflow_states(workflow_id, organization.id)
    except ValueError as e:
        raise http_error(e)
    return [WorkflowStateResponse.model_validate(state) for state in states]


@router.post("/{workflow_id}/states")
async def create_workflow_state(
    workflow_id: int,
    request: CreateWorkflowStateRequest,
    organization: OrganizationModel = Depends(get_organization),
) -> WorkflowStateResponse:
    try:
        state = await db_client.create_workflow_state(
            workflow_id,
            organization.id,
            name=request.name,
            display_name=request.display_name,
            description=request.description,
            state_type=request.state_type.value,
            color=request.color,
            icon=request.icon,
            position=request.position,
            is_active=request.is_active,
        )
    except (ValueError, IntegrityError) as e:
        raise http_error(e)
    return WorkflowStateResponse.model_validate(state)


@router.put("/{workflow_id}/states/reorder")
async def reorder_workflow_states(
    workflow_id: int,
    request: ReorderWorkflowStatesRequest,
    organization: OrganizationModel = Depends(get_organization),
) -> List[WorkflowStateResponse]:
    """Set state positions from the order of `state_ids`"""
    try:
        states = await db_client.reorder_workflow_states(
            workflow_id, organization.id, request.state_ids
        )
    except ValueError as e:
        raise http_error(e)
    return [WorkflowStateResponse.model_validate(state) for state in states]


@router.put("/states/{state_id}")
async def update_workflow_state(
    state_id: int,
    request: UpdateWorkflowStateRequest,
    organization: OrganizationModel = Depends(get_organization),
) -> WorkflowStateResponse:
    try:
        state = await db_client.update_workflow_state(
            state_id,
            organization.id,
            **request.model_dump(mode="json", exclude_unset=True),
        )
    except (ValueError, IntegrityError) as e:
        raise http_error(e)
    return WorkflowStateResponse.model_validate(state)


@router.delete("/states/{state_id}")
async def delete_workflow_state(
    state_id: int,
    organization: OrganizationModel = Depends(get_organization),
) -> dict:
    """Delete a state together with the transitions and triggers bound to it"""
    try:
        await db_client.delete_workflow_state(state_id, organization.id)
    except ValueError as e:
        raise http_error(e)
    return {"message": "State deleted"}


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


@router.get("/{workflow_id}/transitions")
async def get_workflow_transitions(
    workflow_id: int,
    organization: OrganizationModel = Depends(get_organization),
) -> List[WorkflowTransitionResponse]:
    try:
        transitions = await db_client.get_workflow_transitions(
            workflow_id, organization.id
        )
    except ValueError as e:
        raise http_error(e)
    return [
        WorkflowTransitionResponse.model_validate(transition)
        for transition in transitions
    ]


@router.post("/{workflow_id}/transitions")
async def create_workflow_transition(
    workflow_id: int,
    request: CreateWorkflowTransitionRequest,
    organization: OrganizationModel = Depends(get_organization),
) -> WorkflowTransitionResponse:
    try:
        transition = await db_client.create_workflow_transition(
            workflow_id,
            organization.id,
            from_state_id=request.from_state_id,
            to_state_id=request.to_state_id,
            name=request.name,
            description=request.description,
            requires_confirmation=request.requires_confirmation,
            is_active=request.is_active,
        )
    except (ValueError, IntegrityError) as e:
        raise http_error(e)
    return WorkflowTransitionResponse.model_validate(transition)


@router.put("/transitions/{transition_id}")
async def update_workflow_transition(
    transition_id: int,
    request: UpdateWorkflowTransitionRequest,
    organization: OrganizationModel = Depends(get_organization),
) -> WorkflowTransitionResponse:
    try:
        transition = await db_client.update_workflow_transition(
            transition_id,
            organization.id,
            **request.model_dump(exclude_unset=True),
        )
    except (ValueError, IntegrityError) as e:
        raise http_error(e)
    return WorkflowTransitionResponse.model_validate(transition)


@router.delete("/transitions/{transition_id}")
async def delete_workflow_transition(
    transition_id: int,
    organization: OrganizationModel = Depends(get_organization),
) -> dict:
    try:
        await db_client.delete_workflow_transition(transition_id, organization.id)
    except ValueError as e:
        raise http_error(e)
    return {"message": "Transition deleted"}


# ---------------------------------------------------------------------------
# Triggers and actions
# ---------------------------------------------------------------------------


@router.get("/{workflow_id}/triggers")
async def get_workflow_triggers(
    workflow_id: int,
    organization: OrganizationModel = Depends(get_organization),
) -> List[WorkflowTriggerResponse]:
    try:
        triggers = await db_client.get_workflow_triggers(workflow_id, organization.id)
    except ValueError as e:
        raise http_error(e)
    return [WorkflowTriggerResponse.model_validate(trigger) for trigger in triggers]


@router.post("/{workflow_id}/triggers")
async def create_workflow_trigger(
    workflow_id: int,
    request: CreateWorkflowTriggerRequest,
    organization: OrganizationModel = Depends(get_organization),
) -> WorkflowTriggerResponse:
    """
    Create a trigger bound to a state or a transition, with its actions.

    Each action config is validated against its action type before anything
    is stored.
    """
    actions = []
    try:
        for index, action in enumerate(request.actions):
            _validate_action(action.action_type.value, action.action_config)
            payload = action.model_dump(mode="json")
            if payload["action_order"] is None:
                payload["action_order"] = index
            actions.append(payload)

        trigger = await db_client.create_workflow_trigger(
            workflow_id,
            organization.id,
            trigger_type=request.trigger_type.value,
            state_id=request.state_id,
            transition_id=request.transition_id,
            time_offset_minutes=request.time_offset_minutes,
            time_field=request.time_field,
            recurring_cron=request.recurring_cron,
            conditions=request.conditions,
            is_active=request.is_active,
            actions=actions,
        )
    except (ValueError, IntegrityError) as e:
        raise http_error(e)
    return WorkflowTriggerResponse.model_validate(trigger)


@router.get("/triggers/{trigger_id}")
async def get_workflow_trigger(
    trigger_id: int,
    organization: OrganizationModel = Depends(get_organization),
) -> WorkflowTriggerResponse:
    trigger = await db_client.get_workflow_trigger(trigger_id, organization.id)
    if trigger is None:
        raise HTTPException(
            status_code=404, detail=f"Trigger with id {trigger_id} not found"
        )
    return WorkflowTriggerResponse.model_validate(trigger)


@router.put("/triggers/{trigger_id}")
async def update_workflow_trigger(
    trigger_id: int,
    request: UpdateWorkflowTriggerRequest,
    organization: OrganizationModel = Depends(get_organization),
) -> WorkflowTriggerResponse:
    try:
        trigger = await db_client.update_workflow_trigger(
            trigger_id,
            organization.id,
            **request.model_dump(mode="json", exclude_unset=True),
        )
    except (ValueError, IntegrityError) as e:
        raise http_error(e)
    return WorkflowTriggerResponse.model_validate(trigger)


@router.delete("/triggers/{trigger_id}")
async def delete_workflow_trigger(
    trigger_id: int,
    organization: OrganizationModel = Depends(get_organization),
) -> dict:
    """Delete a trigger, its actions and its scheduled jobs"""
    try:
        await db_client.delete_workflow_trigger(trigger_id, organization.id)
    except ValueError as e:
        raise http_error(e)
    return {"message": "Trigger deleted"}


@router.post("/triggers/{trigger_id}/actions")
async def create_workflow_action(
    trigger_id: int,
    request: CreateWorkflowActionRequest,
    organization: OrganizationModel = Depends(get_organization),
) -> WorkflowActionResponse:
    try:
        _validate_action(request.action_type.value, request.action_config)
        action = await db_client.create_workflow_action(
            trigger_id,
            organization.id,
            action_type=request.action_type.value,
            action_config=request.action_config,
            template_id=request.template_id,
            action_order=request.action_order or 0,
            is_active=request.is_active,
        )
    except (ValueError, IntegrityError) as e:
        raise http_error(e)
    return WorkflowActionResponse.model_validate(action)


@router.put("/actions/{action_id}")
async def update_workflow_action(
    action_id: int,
    request: UpdateWorkflowActionRequest,
    organization: OrganizationModel = Depends(get_organization),
) -> WorkflowActionResponse:
    fields = request.model_dump(mode="json", exclude_unset=True)
    template_id = fields.pop("template_id", None)
    clear_template = "template_id" in request.model_fields_set and template_id is None

    try:
        if "action_type" in fields or "action_config" in fields:
            current = await db_client.get_workflow_action(action_id, organization.id)
            if current is None:
                raise HTTPException(
                    status_code=404, detail=f"Action with id {action_id} not found"
                )
            _validate_action(
                fields.get("action_type") or current.action_type,
                fields.get("action_config", current.action_config),
            )

        action = await db_client.update_workflow_action(
            action_id,
            organization.id,
            clear_template=clear_template,
            template_id=template_id,
            **fields,
        )
    except (ValueError, IntegrityError) as e:
        raise http_error(e)
    return WorkflowActionResponse.model_validate(action)


@router.delete("/actions/{action_id}")
async def delete_workflow_action(
    action_id: int,
    organization: OrganizationModel = Depends(get_organization),
) -> dict:
    try:
        await db_client.delete_workflow_action(action_id, organization.id)
    except ValueError as e:
        raise http_error(e)
    return {"message": "Action deleted"}


@router.post("/{workflow_id}/triggers/{trigger_id}/test")
async def test_workflow_trigger(
    workflow_id: int,
    trigger_id: int,
    organization: OrganizationModel = Depends(get_organization),
) -> TriggerPreviewResponse:
    """
    Dry-run a trigger against sample data of the workflow's entity type.

    Renders every action the way the dispatcher would, without scheduling,
    sending or logging anything. Per-action problems are reported on the
    action instead of failing the request.
    """
    try:
        preview = await trigger_simulator.test_trigger(
            organization.id, workflow_id, trigger_id
        )
    except ValueError as e:
        raise http_error(e)
    return TriggerPreviewResponse.model_validate(preview)
