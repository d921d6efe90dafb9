from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import IntegrityError

from bizflow.db import db_client
from bizflow.db.models import OrganizationModel
from bizflow.enums import MessageChannel
from bizflow.routes.errors import http_error
from bizflow.schemas.workflow import (
    CreateMessageTemplateRequest,
    MessageTemplateResponse,
    UpdateMessageTemplateRequest,
)
from bizflow.services.auth.depends import get_organization
from bizflow.services.workflow.sample_data import describe_template_variables

router = APIRouter(prefix="/message-templates", tags=["message-templates"])


@router.get("")
async def get_message_templates(
    channel: Optional[MessageChannel] = None,
    organization: OrganizationModel = Depends(get_organization),
) -> List[MessageTemplateResponse]:
    templates = await db_client.get_message_templates(
        organization.id, channel=channel.value if channel else None
    )
    return [MessageTemplateResponse.model_validate(template) for template in templates]


@router.post("")
async def create_message_template(
    request: CreateMessageTemplateRequest,
    organization: OrganizationModel = Depends(get_organization),
) -> MessageTemplateResponse:
    """
    Create a message template.

    When ``variables`` is omitted, the placeholders of the subject and body are
    listed with their catalogue descriptions.
    """
    if request.variables is None:
        variables = describe_template_variables(request.subject, request.body)
    else:
        variables = [variable.model_dump() for variable in request.variables]

    try:
        template = await db_client.create_message_template(
            organization_id=organization.id,
            name=request.name,
            channel=request.channel.value,
            body=request.body,
            subject=request.subject,
            description=request.description,
            variables=variables,
            is_active=request.is_active,
        )
    except (ValueError, IntegrityError) as e:
        raise http_error(e)
    return MessageTemplateResponse.model_validate(template)


@router.get("/{template_id}")
async def get_message_template(
    template_id: int,
    organization: OrganizationModel = Depends(get_organization),
) -> MessageTemplateResponse:
    template = await db_client.get_message_template(template_id, organization.id)
    if template is None:
        raise HTTPException(
            status_code=404, detail=f"Template with id {template_id} not found"
        )
    return MessageTemplateResponse.model_validate(template)


@router.put("/{template_id}")
async def update_message_template(
    template_id: int,
    request: UpdateMessageTemplateRequest,
    organization: OrganizationModel = Depends(get_organization),
) -> MessageTemplateResponse:
    fields = request.model_dump(mode="json", exclude_unset=True)
    if request.variables is None and ("body" in fields or "subject" in fields):
        current = await db_client.get_message_template(template_id, organization.id)
        if current is None:
            raise HTTPException(
                status_code=404, detail=f"Template with id {template_id} not found"
            )
        fields["variables"] = describe_template_variables(
            fields.get("subject", current.subject), fields.get("body", current.body)
        )

    try:
        template = await db_client.update_message_template(
            template_id, organization.id, **fields
        )
    except (ValueError, IntegrityError) as e:
        raise http_error(e)
    return MessageTemplateResponse.model_validate(template)


@router.delete("/{template_id}")
async def delete_message_template(
    template_id: int,
    organization: OrganizationModel = Depends(get_organization),
) -> dict:
    """Delete a template. Actions that used it fall back to their inline content."""
    try:
        await db_client.delete_message_template(template_id, organization.id)
    except ValueError as e:
        raise http_error(e)
    return {"message": "Template deleted"}
