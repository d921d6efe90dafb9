from typing import Optional

from sqlalchemy.future import select

from bizflow.db.base_client import BaseDBClient
from bizflow.db.models import MessageTemplateModel
from bizflow.services.workflow.errors import NotFoundError

TEMPLATE_FIELDS = (
    "name",
    "description",
    "channel",
    "subject",
    "body",
    "variables",
    "is_active",
)


class MessageTemplateClient(BaseDBClient):
    async def _get_scoped_template(
        self, session, template_id: int, organization_id: int
    ) -> MessageTemplateModel:
        result = await session.execute(
            select(MessageTemplateModel).where(
                MessageTemplateModel.id == template_id,
                MessageTemplateModel.organization_id == organization_id,
            )
        )
        template = result.scalars().first()
        if not template:
            raise NotFoundError("Template", template_id)
        return template

    async def create_message_template(
        self,
        organization_id: int,
        name: str,
        channel: str,
        body: str,
        subject: str | None = None,
        description: str | None = None,
        variables: list[dict] | None = None,
        is_active: bool = True,
    ) -> MessageTemplateModel:
        async with self.async_session() as session:
            template = MessageTemplateModel(
                organization_id=organization_id,
                name=name,
                description=description,
                channel=channel,
                subject=subject,
                body=body,
                variables=variables or [],
                is_active=is_active,
            )
            session.add(template)
            try:
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
            await session.refresh(template)
            return template

    async def get_message_template(
        self, template_id: int, organization_id: int
    ) -> Optional[MessageTemplateModel]:
        async with self.async_session() as session:
            result = await session.execute(
                select(MessageTemplateModel).where(
                    MessageTemplateModel.id == template_id,
                    MessageTemplateModel.organization_id == organization_id,
                )
            )
            return result.scalars().first()

    async def get_message_template_by_name(
        self, organization_id: int, name: str, channel: str
    ) -> Optional[MessageTemplateModel]:
        async with self.async_session() as session:
            result = await session.execute(
                select(MessageTemplateModel).where(
                    MessageTemplateModel.organization_id == organization_id,
                    MessageTemplateModel.name == name,
                    MessageTemplateModel.channel == channel,
                )
            )
            return result.scalars().first()

    async def get_message_templates(
        self, organization_id: int, channel: str | None = None
    ) -> list[MessageTemplateModel]:
        async with self.async_session() as session:
            query = select(MessageTemplateModel).where(
                MessageTemplateModel.organization_id == organization_id
            )
            if channel:
                query = query.where(MessageTemplateModel.channel == channel)
            result = await session.execute(query.order_by(MessageTemplateModel.name))
            return list(result.scalars().all())

    async def update_message_template(
        self, template_id: int, organization_id: int, **fields
    ) -> MessageTemplateModel:
        async with self.async_session() as session:
            try:
                template = await self._get_scoped_template(
                    session, template_id, organization_id
                )
                for field, value in fields.items():
                    if field in TEMPLATE_FIELDS and value is not None:
                        setattr(template, field, value)
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
            await session.refresh(template)
        return template

    async def delete_message_template(
        self, template_id: int, organization_id: int
    ) -> None:
        """Delete a template. Actions referencing it fall back to their inline config."""
        async with self.async_session() as session:
            try:
                template = await self._get_scoped_template(
                    session, template_id, organization_id
                )
                await session.delete(template)
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
