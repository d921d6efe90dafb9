"""Typed views over the opaque ``action_config`` blob of a workflow action.

Storage keeps ``action_config`` as free-form JSON. It is decoded into one of the
variants below only when an action is dispatched, simulated or saved, so a
malformed payload fails at that boundary with InvalidActionConfigError.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from bizflow.enums import ActionType
from bizflow.services.workflow.errors import InvalidActionConfigError


class SendWhatsAppConfig(BaseModel):
    action_type: Literal["send_whatsapp"] = ActionType.SEND_WHATSAPP.value
    # Entity field holding the recipient phone, e.g. patient_phone
    to_field: Optional[str] = None


class SendEmailConfig(BaseModel):
    action_type: Literal["send_email"] = ActionType.SEND_EMAIL.value
    # Entity field holding the recipient address, e.g. client_email
    to_field: Optional[str] = None
    # Inline content, used when the action has no template
    subject: Optional[str] = None
    body: Optional[str] = None


class UpdateFieldConfig(BaseModel):
    action_type: Literal["update_field"] = ActionType.UPDATE_FIELD.value
    field: str = Field(..., min_length=1)
    value: Any = None


class CreateTaskConfig(BaseModel):
    action_type: Literal["create_task"] = ActionType.CREATE_TASK.value
    title: Optional[str] = None
    description: Optional[str] = None
    assignee_id: Optional[Union[int, str]] = None


ActionConfig = Annotated[
    Union[SendWhatsAppConfig, SendEmailConfig, UpdateFieldConfig, CreateTaskConfig],
    Field(discriminator="action_type"),
]

_action_config_adapter = TypeAdapter(ActionConfig)


def decode_action_config(action_type: str, action_config: dict | None) -> ActionConfig:
    """Decode a stored config into the variant selected by ``action_type``."""
    if action_config is not None and not isinstance(action_config, dict):
        raise InvalidActionConfigError(action_type, "config must be an object")
    payload = dict(action_config or {})
    payload["action_type"] = action_type
    try:
        return _action_config_adapter.validate_python(payload)
    except ValidationError as e:
        messages = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        )
        raise InvalidActionConfigError(action_type, messages) from e
