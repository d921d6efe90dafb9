from typing import Optional

from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from bizflow.db.base_client import BaseDBClient
from bizflow.db.models import (
    MessageTemplateModel,
    WorkflowActionModel,
    WorkflowModel,
    WorkflowStateModel,
    WorkflowTransitionModel,
    WorkflowTriggerModel,
)
from bizflow.services.workflow.errors import NotFoundError

TRIGGER_FIELDS = (
    "trigger_type",
    "time_offset_minutes",
    "time_field",
    "recurring_cron",
    "conditions",
    "is_active",
)

ACTION_FIELDS = ("action_type", "action_config", "action_order", "is_active")


class WorkflowTriggerClient(BaseDBClient):
    async def _check_trigger_binding(
        self,
        session,
        workflow_id: int,
        state_id: int | None,
        transition_id: int | None,
    ) -> None:
        if state_id is None and transition_id is None:
            raise ValueError("A trigger must be bound to a state or a transition")
        if state_id is not None:
            state = await session.get(WorkflowStateModel, state_id)
            if not state or state.workflow_id != workflow_id:
                raise NotFoundError("State", state_id)
        if transition_id is not None:
            transition = await session.get(WorkflowTransitionModel, transition_id)
            if not transition or transition.workflow_id != workflow_id:
                raise NotFoundError("Transition", transition_id)

    async def _check_template(
        self, session, template_id: int | None, organization_id: int
    ) -> None:
        if template_id is None:
            return
        template = await session.get(MessageTemplateModel, template_id)
        if not template or template.organization_id != organization_id:
            raise NotFoundError("Template", template_id)

    async def _get_scoped_trigger(
        self, session, trigger_id: int, organization_id: int
    ) -> WorkflowTriggerModel:
        result = await session.execute(
            select(WorkflowTriggerModel)
            .join(WorkflowModel, WorkflowTriggerModel.workflow_id == WorkflowModel.id)
            .where(
                WorkflowTriggerModel.id == trigger_id,
                WorkflowModel.organization_id == organization_id,
            )
        )
        trigger = result.scalars().first()
        if not trigger:
            raise NotFoundError("Trigger", trigger_id)
        return trigger

    async def create_workflow_trigger(
        self,
        workflow_id: int,
        organization_id: int,
        trigger_type: str,
        state_id: int | None = None,
        transition_id: int | None = None,
        time_offset_minutes: int | None = None,
        time_field: str | None = None,
        recurring_cron: str | None = None,
        conditions: dict | None = None,
        is_active: bool = True,
        actions: list[dict] | None = None,
    ) -> WorkflowTriggerModel:
        """Create a trigger together with its actions.

        ``actions`` items carry the WorkflowActionModel fields; without an explicit
        ``action_order`` they run in list order.
        """
        async with self.async_session() as session:
            try:
                await self._get_scoped_workflow(session, workflow_id, organization_id)
                await self._check_trigger_binding(
                    session, workflow_id, state_id, transition_id
                )
                action_models = []
                for index, action in enumerate(actions or []):
                    await self._check_template(
                        session, action.get("template_id"), organization_id
                    )
                    action_models.append(
                        WorkflowActionModel(
                            action_type=action["action_type"],
                            action_config=action.get("action_config") or {},
                            template_id=action.get("template_id"),
                            action_order=action.get("action_order", index),
                            is_active=action.get("is_active", True),
                        )
                    )

                trigger = WorkflowTriggerModel(
                    workflow_id=workflow_id,
                    state_id=state_id,
                    transition_id=transition_id,
                    trigger_type=trigger_type,
                    time_offset_minutes=time_offset_minutes,
                    time_field=time_field,
                    recurring_cron=recurring_cron,
                    conditions=conditions or {},
                    is_active=is_active,
                    actions=action_models,
                )
                session.add(trigger)
                await session.flush()
                trigger_id = trigger.id
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
        return await self.get_workflow_trigger(trigger_id, organization_id)

    async def get_workflow_trigger(
        self, trigger_id: int, organization_id: int
    ) -> Optional[WorkflowTriggerModel]:
        """Get a trigger with its workflow, ordered actions and their templates loaded"""
        async with self.async_session() as session:
            result = await session.execute(
                select(WorkflowTriggerModel)
                .join(
                    WorkflowModel, WorkflowTriggerModel.workflow_id == WorkflowModel.id
                )
                .where(
                    WorkflowTriggerModel.id == trigger_id,
                    WorkflowModel.organization_id == organization_id,
                )
                .options(
                    selectinload(WorkflowTriggerModel.workflow),
                    selectinload(WorkflowTriggerModel.actions).selectinload(
                        WorkflowActionModel.template
                    ),
                )
            )
            return result.scalars().first()

    async def get_workflow_triggers(
        self, workflow_id: int, organization_id: int
    ) -> list[WorkflowTriggerModel]:
        async with self.async_session() as session:
            await self._get_scoped_workflow(session, workflow_id, organization_id)
            result = await session.execute(
                select(WorkflowTriggerModel)
                .where(WorkflowTriggerModel.workflow_id == workflow_id)
                .options(selectinload(WorkflowTriggerModel.actions))
                .order_by(WorkflowTriggerModel.id)
            )
            return list(result.scalars().all())

    async def update_workflow_trigger(
        self, trigger_id: int, organization_id: int, **fields
    ) -> WorkflowTriggerModel:
        async with self.async_session() as session:
            try:
                trigger = await self._get_scoped_trigger(
                    session, trigger_id, organization_id
                )
                for field, value in fields.items():
                    if field in TRIGGER_FIELDS and value is not None:
                        setattr(trigger, field, value)
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
        return await self.get_workflow_trigger(trigger_id, organization_id)

    async def delete_workflow_trigger(
        self, trigger_id: int, organization_id: int
    ) -> None:
        async with self.async_session() as session:
            try:
                trigger = await self._get_scoped_trigger(
                    session, trigger_id, organization_id
                )
                await session.delete(trigger)
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e

    async def _get_scoped_action(
        self, session, action_id: int, organization_id: int
    ) -> WorkflowActionModel:
        result = await session.execute(
            select(WorkflowActionModel)
            .join(
                WorkflowTriggerModel,
                WorkflowActionModel.trigger_id == WorkflowTriggerModel.id,
            )
            .join(WorkflowModel, WorkflowTriggerModel.workflow_id == WorkflowModel.id)
            .where(
                WorkflowActionModel.id == action_id,
                WorkflowModel.organization_id == organization_id,
            )
        )
        action = result.scalars().first()
        if not action:
            raise NotFoundError("Action", action_id)
        return action

    async def get_workflow_action(
        self, action_id: int, organization_id: int
    ) -> Optional[WorkflowActionModel]:
        async with self.async_session() as session:
            try:
                return await self._get_scoped_action(session, action_id, organization_id)
            except NotFoundError:
                return None

    async def create_workflow_action(
        self,
        trigger_id: int,
        organization_id: int,
        action_type: str,
        action_config: dict | None = None,
        template_id: int | None = None,
        action_order: int = 0,
        is_active: bool = True,
    ) -> WorkflowActionModel:
        async with self.async_session() as session:
            try:
                await self._get_scoped_trigger(session, trigger_id, organization_id)
                await self._check_template(session, template_id, organization_id)
                action = WorkflowActionModel(
                    trigger_id=trigger_id,
                    action_type=action_type,
                    action_config=action_config or {},
                    template_id=template_id,
                    action_order=action_order,
                    is_active=is_active,
                )
                session.add(action)
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
            await session.refresh(action)
        return action

    async def update_workflow_action(
        self,
        action_id: int,
        organization_id: int,
        clear_template: bool = False,
        template_id: int | None = None,
        **fields,
    ) -> WorkflowActionModel:
        async with self.async_session() as session:
            try:
                action = await self._get_scoped_action(
                    session, action_id, organization_id
                )
                if template_id is not None:
                    await self._check_template(session, template_id, organization_id)
                    action.template_id = template_id
                elif clear_template:
                    action.template_id = None
                for field, value in fields.items():
                    if field in ACTION_FIELDS and value is not None:
                        setattr(action, field, value)
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
            await session.refresh(action)
        return action

    async def delete_workflow_action(self, action_id: int, organization_id: int) -> None:
        async with self.async_session() as session:
            try:
                action = await self._get_scoped_action(
                    session, action_id, organization_id
                )
                await session.delete(action)
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
