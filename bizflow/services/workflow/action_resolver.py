"""
Turns a workflow action plus entity data into the concrete side effect to run.

The dispatcher and the trigger simulator both go through these functions, so a
preview always shows exactly what a live dispatch would send.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from bizflow.db.models import WorkflowActionModel
from bizflow.enums import ActionType, MessageChannel
from bizflow.schemas.action_config import (
    CreateTaskConfig,
    SendEmailConfig,
    UpdateFieldConfig,
    decode_action_config,
)
from bizflow.services.workflow.collaborators import TaskRequest
from bizflow.services.workflow.errors import InvalidActionConfigError
from bizflow.utils.template_renderer import render_string

MESSAGE_ACTION_CHANNELS = {
    ActionType.SEND_WHATSAPP.value: MessageChannel.WHATSAPP.value,
    ActionType.SEND_EMAIL.value: MessageChannel.EMAIL.value,
}

# Entity fields tried in order when the action config names no recipient field
RECIPIENT_FALLBACK_FIELDS = {
    MessageChannel.WHATSAPP.value: ("patient_phone", "client_phone"),
    MessageChannel.EMAIL.value: ("patient_email", "client_email"),
}

DEFAULT_EMAIL_SUBJECT = "Notificação"
DEFAULT_INLINE_EMAIL_SUBJECT = "Notificação - {{client_name}}"
DEFAULT_INLINE_EMAIL_BODY = (
    "Olá {{client_name}},\n\nTem uma nova notificação.\n\nCumprimentos"
)


@dataclass
class ResolvedMessage:
    channel: str
    body: str
    subject: Optional[str]
    # None when none of the candidate fields holds a value
    recipient: Optional[str]
    recipient_field: Optional[str]
    template_id: Optional[int] = None


def is_message_action(action_type: str) -> bool:
    return action_type in MESSAGE_ACTION_CHANNELS


def resolve_recipient(
    channel: str, to_field: str | None, data: Dict[str, Any]
) -> tuple[Optional[str], Optional[str]]:
    """Return (recipient, field it came from).

    An explicit ``to_field`` is the only candidate when set, otherwise the
    channel's fallback fields are tried in order.
    """
    candidates = (to_field,) if to_field else RECIPIENT_FALLBACK_FIELDS[channel]
    for field in candidates:
        value = data.get(field)
        if value:
            return str(value), field
    return None, to_field or (candidates[0] if candidates else None)


def resolve_message(action: WorkflowActionModel, data: Dict[str, Any]) -> ResolvedMessage:
    """Render the message of a send_whatsapp/send_email action.

    ``action.template`` must be loaded. A template wins over inline content and
    its channel must match the action's channel.

    Raises:
        InvalidActionConfigError: For malformed configs, channel mismatches and
            WhatsApp actions without a template
    """
    channel = MESSAGE_ACTION_CHANNELS.get(action.action_type)
    if channel is None:
        raise InvalidActionConfigError(action.action_type, "not a message action")
    config = decode_action_config(action.action_type, action.action_config)
    template = action.template

    if template is not None:
        if template.channel != channel:
            raise InvalidActionConfigError(
                action.action_type,
                f"template {template.id} is a {template.channel} template",
            )
        subject = template.subject
        if channel == MessageChannel.EMAIL.value and not subject:
            subject = DEFAULT_EMAIL_SUBJECT
        body = template.body
    elif isinstance(config, SendEmailConfig):
        subject = config.subject or DEFAULT_INLINE_EMAIL_SUBJECT
        body = config.body or DEFAULT_INLINE_EMAIL_BODY
    else:
        raise InvalidActionConfigError(action.action_type, "a whatsapp template is required")

    recipient, recipient_field = resolve_recipient(channel, config.to_field, data)
    return ResolvedMessage(
        channel=channel,
        body=render_string(body, data),
        subject=render_string(subject, data),
        recipient=recipient,
        recipient_field=recipient_field,
        template_id=template.id if template is not None else None,
    )


def resolve_field_update(
    action: WorkflowActionModel, data: Dict[str, Any]
) -> tuple[str, Any]:
    """Return (field, value) of an update_field action, string values rendered."""
    config = decode_action_config(action.action_type, action.action_config)
    if not isinstance(config, UpdateFieldConfig):
        raise InvalidActionConfigError(action.action_type, "not an update_field action")
    value = config.value
    if isinstance(value, str):
        value = render_string(value, data)
    return config.field, value


def resolve_task(
    action: WorkflowActionModel,
    data: Dict[str, Any],
    entity_type: str,
    entity_id: str,
) -> TaskRequest:
    config = decode_action_config(action.action_type, action.action_config)
    if not isinstance(config, CreateTaskConfig):
        raise InvalidActionConfigError(action.action_type, "not a create_task action")
    title = config.title or f"Task for {entity_type} {entity_id}"
    return TaskRequest(
        title=render_string(title, data),
        description=render_string(config.description, data),
        assignee_id=config.assignee_id,
    )
