import pytest

from bizflow.schemas.action_config import (
    CreateTaskConfig,
    SendEmailConfig,
    SendWhatsAppConfig,
    UpdateFieldConfig,
    decode_action_config,
)
from bizflow.services.workflow.errors import InvalidActionConfigError


def test_decode_selects_variant_by_action_type():
    assert isinstance(decode_action_config("send_whatsapp", {}), SendWhatsAppConfig)
    assert isinstance(decode_action_config("send_email", None), SendEmailConfig)
    assert isinstance(
        decode_action_config("update_field", {"field": "status"}), UpdateFieldConfig
    )
    assert isinstance(decode_action_config("create_task", {}), CreateTaskConfig)


def test_decode_email_inline_content():
    config = decode_action_config(
        "send_email",
        {"to_field": "client_email", "subject": "Olá", "body": "Corpo"},
    )
    assert config.to_field == "client_email"
    assert config.subject == "Olá"
    assert config.body == "Corpo"


def test_decode_stored_action_type_is_overridden():
    """The action's own type wins over whatever the blob claims."""
    config = decode_action_config(
        "create_task", {"action_type": "send_email", "title": "Ligar ao cliente"}
    )
    assert isinstance(config, CreateTaskConfig)
    assert config.title == "Ligar ao cliente"


def test_decode_update_field_requires_field():
    with pytest.raises(InvalidActionConfigError) as exc_info:
        decode_action_config("update_field", {"value": "done"})
    assert "update_field" in str(exc_info.value)


def test_decode_rejects_unknown_action_type():
    with pytest.raises(InvalidActionConfigError):
        decode_action_config("send_fax", {})


def test_decode_rejects_non_object_config():
    with pytest.raises(InvalidActionConfigError):
        decode_action_config("send_email", ["not", "an", "object"])


def test_decode_rejects_wrongly_typed_values():
    with pytest.raises(InvalidActionConfigError):
        decode_action_config("create_task", {"assignee_id": {"id": 1}})
