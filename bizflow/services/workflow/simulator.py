from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from bizflow.db import db_client
from bizflow.enums import ActionType
from bizflow.services.workflow.action_resolver import (
    is_message_action,
    resolve_field_update,
    resolve_message,
    resolve_task,
)
from bizflow.services.workflow.errors import NotFoundError
from bizflow.services.workflow.sample_data import get_sample_data

SAMPLE_ENTITY_ID = "sample"


@dataclass
class ActionPreview:
    action_id: int
    action_type: str
    action_order: int
    channel: Optional[str] = None
    template_id: Optional[int] = None
    recipient: Optional[str] = None
    rendered_subject: Optional[str] = None
    rendered_body: Optional[str] = None
    error: Optional[str] = None


@dataclass
class TriggerPreview:
    workflow_id: int
    trigger_id: int
    trigger_type: str
    entity_type: str
    state_id: Optional[int]
    transition_id: Optional[int]
    sample_data: Dict[str, Any]
    actions: list[ActionPreview] = field(default_factory=list)


class TriggerSimulator:
    """Dry-runs a trigger against sample data.

    Rendering and recipient resolution go through the same functions the
    dispatcher uses, and inactive actions are left out as the dispatcher
    skips them. Nothing is scheduled, sent or logged.
    """

    async def test_trigger(
        self, organization_id: int, workflow_id: int, trigger_id: int
    ) -> TriggerPreview:
        trigger = await db_client.get_workflow_trigger(trigger_id, organization_id)
        if not trigger or trigger.workflow_id != workflow_id:
            raise NotFoundError("Trigger", trigger_id)

        entity_type = trigger.workflow.entity_type
        sample_data = get_sample_data(entity_type)
        preview = TriggerPreview(
            workflow_id=workflow_id,
            trigger_id=trigger.id,
            trigger_type=trigger.trigger_type,
            entity_type=entity_type,
            state_id=trigger.state_id,
            transition_id=trigger.transition_id,
            sample_data=sample_data,
        )

        for action in trigger.actions:
            if not action.is_active:
                continue
            action_preview = ActionPreview(
                action_id=action.id,
                action_type=action.action_type,
                action_order=action.action_order,
            )
            try:
                self._preview_action(action, action_preview, sample_data, entity_type)
            except ValueError as e:
                action_preview.error = str(e)
            preview.actions.append(action_preview)
        return preview

    def _preview_action(self, action, action_preview, sample_data, entity_type):
        if is_message_action(action.action_type):
            message = resolve_message(action, sample_data)
            action_preview.channel = message.channel
            action_preview.template_id = message.template_id
            action_preview.rendered_subject = message.subject
            action_preview.rendered_body = message.body
            action_preview.recipient = (
                message.recipient
                or f"{message.recipient_field} (campo não encontrado)"
            )
        elif action.action_type == ActionType.UPDATE_FIELD.value:
            field_name, value = resolve_field_update(action, sample_data)
            action_preview.rendered_body = (
                f"Campo '{field_name}' será atualizado para '{value}'"
            )
        elif action.action_type == ActionType.CREATE_TASK.value:
            task = resolve_task(action, sample_data, entity_type, SAMPLE_ENTITY_ID)
            action_preview.rendered_body = task.title


trigger_simulator = TriggerSimulator()
