from typing import Optional

from sqlalchemy import update
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from bizflow.db.base_client import BaseDBClient
from bizflow.db.models import (
    WorkflowActionModel,
    WorkflowModel,
    WorkflowStateModel,
    WorkflowTransitionModel,
    WorkflowTriggerModel,
)
from bizflow.enums import WorkflowEntityType
from bizflow.services.workflow.errors import NotFoundError


def _full_definition_options():
    return (
        selectinload(WorkflowModel.states),
        selectinload(WorkflowModel.transitions),
        selectinload(WorkflowModel.triggers).selectinload(
            WorkflowTriggerModel.actions
        ),
    )


class WorkflowClient(BaseDBClient):
    async def _clear_default_workflows(
        self,
        session,
        organization_id: int,
        module: str,
        entity_type: str,
        exclude_workflow_id: int | None = None,
    ) -> None:
        """Clear ``is_default`` on every workflow sharing the (org, module, entity_type) key.

        The rows are locked first, in id order, so concurrent default changes for
        the same key serialize on the row locks instead of racing on the flag.
        """
        key_filter = (
            WorkflowModel.organization_id == organization_id,
            WorkflowModel.module == module,
            WorkflowModel.entity_type == entity_type,
        )
        await session.execute(
            select(WorkflowModel.id)
            .where(*key_filter)
            .order_by(WorkflowModel.id)
            .with_for_update()
        )

        query = update(WorkflowModel).where(
            *key_filter, WorkflowModel.is_default.is_(True)
        )
        if exclude_workflow_id is not None:
            query = query.where(WorkflowModel.id != exclude_workflow_id)
        await session.execute(query.values(is_default=False))

    async def create_workflow(
        self,
        organization_id: int,
        name: str,
        entity_type: str,
        description: str | None = None,
        is_active: bool = True,
        is_default: bool = False,
    ) -> WorkflowModel:
        module = WorkflowEntityType(entity_type).module.value
        async with self.async_session() as session:
            try:
                if is_default:
                    await self._clear_default_workflows(
                        session, organization_id, module, entity_type
                    )
                workflow = WorkflowModel(
                    organization_id=organization_id,
                    name=name,
                    description=description,
                    module=module,
                    entity_type=entity_type,
                    is_active=is_active,
                    is_default=is_default,
                )
                session.add(workflow)
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
            await session.refresh(workflow)
        return workflow

    async def get_workflow(
        self, workflow_id: int, organization_id: int, with_definition: bool = True
    ) -> Optional[WorkflowModel]:
        """Get a workflow of the organization, with states, transitions and triggers loaded"""
        async with self.async_session() as session:
            query = select(WorkflowModel).where(
                WorkflowModel.id == workflow_id,
                WorkflowModel.organization_id == organization_id,
            )
            if with_definition:
                query = query.options(*_full_definition_options())
            result = await session.execute(query)
            return result.scalars().first()

    async def get_workflow_by_name(
        self, organization_id: int, name: str
    ) -> Optional[WorkflowModel]:
        async with self.async_session() as session:
            result = await session.execute(
                select(WorkflowModel).where(
                    WorkflowModel.organization_id == organization_id,
                    WorkflowModel.name == name,
                )
            )
            return result.scalars().first()

    async def get_workflows(
        self,
        organization_id: int,
        module: str | None = None,
        entity_type: str | None = None,
        is_active: bool | None = None,
    ) -> list[WorkflowModel]:
        async with self.async_session() as session:
            query = select(WorkflowModel).where(
                WorkflowModel.organization_id == organization_id
            )
            if module:
                query = query.where(WorkflowModel.module == module)
            if entity_type:
                query = query.where(WorkflowModel.entity_type == entity_type)
            if is_active is not None:
                query = query.where(WorkflowModel.is_active.is_(is_active))

            result = await session.execute(
                query.order_by(WorkflowModel.entity_type, WorkflowModel.name)
            )
            return list(result.scalars().all())

    async def get_default_workflow(
        self, organization_id: int, entity_type: str
    ) -> Optional[WorkflowModel]:
        """Get the workflow the reactor consults for an entity type.

        Only a workflow that is both default and active qualifies.
        """
        module = WorkflowEntityType(entity_type).module.value
        async with self.async_session() as session:
            result = await session.execute(
                select(WorkflowModel).where(
                    WorkflowModel.organization_id == organization_id,
                    WorkflowModel.module == module,
                    WorkflowModel.entity_type == entity_type,
                    WorkflowModel.is_default.is_(True),
                    WorkflowModel.is_active.is_(True),
                )
            )
            return result.scalars().first()

    async def update_workflow(
        self,
        workflow_id: int,
        organization_id: int,
        name: str | None = None,
        description: str | None = None,
        is_active: bool | None = None,
        is_default: bool | None = None,
    ) -> WorkflowModel:
        async with self.async_session() as session:
            try:
                workflow = await self._get_scoped_workflow(
                    session, workflow_id, organization_id, for_update=True
                )
                if name is not None:
                    workflow.name = name
                if description is not None:
                    workflow.description = description
                if is_active is not None:
                    workflow.is_active = is_active
                if is_default is not None:
                    if is_default:
                        await self._clear_default_workflows(
                            session,
                            workflow.organization_id,
                            workflow.module,
                            workflow.entity_type,
                            exclude_workflow_id=workflow.id,
                        )
                    workflow.is_default = is_default
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
            await session.refresh(workflow)
        return workflow

    async def set_default_workflow(
        self, workflow_id: int, organization_id: int
    ) -> WorkflowModel:
        """Make a workflow the single default for its (org, module, entity_type) key.

        Clearing the previous default and setting the new one happen in one
        transaction, so readers never observe two defaults or a half-applied switch.
        """
        async with self.async_session() as session:
            try:
                workflow = await self._get_scoped_workflow(
                    session, workflow_id, organization_id
                )
                await self._clear_default_workflows(
                    session,
                    workflow.organization_id,
                    workflow.module,
                    workflow.entity_type,
                    exclude_workflow_id=workflow.id,
                )
                await session.execute(
                    update(WorkflowModel)
                    .where(WorkflowModel.id == workflow.id)
                    .values(is_default=True)
                )
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
            await session.refresh(workflow)
        return workflow

    async def delete_workflow(self, workflow_id: int, organization_id: int) -> None:
        """Delete a workflow. States, transitions, triggers and actions cascade."""
        async with self.async_session() as session:
            try:
                workflow = await self._get_scoped_workflow(
                    session, workflow_id, organization_id
                )
                await session.delete(workflow)
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e

    async def duplicate_workflow(
        self, workflow_id: int, organization_id: int, new_name: str | None = None
    ) -> WorkflowModel:
        """Deep-copy a workflow definition.

        States are copied first to build the old -> new id map that transitions and
        triggers are rewritten through. The copy starts inactive and non-default.
        """
        async with self.async_session() as session:
            try:
                result = await session.execute(
                    select(WorkflowModel)
                    .where(
                        WorkflowModel.id == workflow_id,
                        WorkflowModel.organization_id == organization_id,
                    )
                    .options(*_full_definition_options())
                )
                source = result.scalars().first()
                if not source:
                    raise NotFoundError("Workflow", workflow_id)

                copy = WorkflowModel(
                    organization_id=source.organization_id,
                    name=new_name or f"{source.name} (cópia)",
                    description=source.description,
                    module=source.module,
                    entity_type=source.entity_type,
                    is_active=False,
                    is_default=False,
                )
                session.add(copy)
                await session.flush()
                copy_id = copy.id

                state_copies = {}
                for state in source.states:
                    state_copies[state.id] = WorkflowStateModel(
                        workflow_id=copy_id,
                        name=state.name,
                        display_name=state.display_name,
                        description=state.description,
                        state_type=state.state_type,
                        color=state.color,
                        icon=state.icon,
                        position=state.position,
                        is_active=state.is_active,
                    )
                session.add_all(state_copies.values())
                await session.flush()
                state_map = {old_id: new.id for old_id, new in state_copies.items()}

                transition_copies = {}
                for transition in source.transitions:
                    transition_copies[transition.id] = WorkflowTransitionModel(
                        workflow_id=copy_id,
                        from_state_id=state_map[transition.from_state_id],
                        to_state_id=state_map[transition.to_state_id],
                        name=transition.name,
                        description=transition.description,
                        requires_confirmation=transition.requires_confirmation,
                        is_active=transition.is_active,
                    )
                session.add_all(transition_copies.values())
                await session.flush()
                transition_map = {
                    old_id: new.id for old_id, new in transition_copies.items()
                }

                for trigger in source.triggers:
                    session.add(
                        WorkflowTriggerModel(
                            workflow_id=copy_id,
                            state_id=state_map.get(trigger.state_id),
                            transition_id=transition_map.get(trigger.transition_id),
                            trigger_type=trigger.trigger_type,
                            time_offset_minutes=trigger.time_offset_minutes,
                            time_field=trigger.time_field,
                            recurring_cron=trigger.recurring_cron,
                            conditions=dict(trigger.conditions or {}),
                            is_active=trigger.is_active,
                            actions=[
                                WorkflowActionModel(
                                    action_type=action.action_type,
                                    action_config=dict(action.action_config or {}),
                                    template_id=action.template_id,
                                    action_order=action.action_order,
                                    is_active=action.is_active,
                                )
                                for action in trigger.actions
                            ],
                        )
                    )
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e

        return await self.get_workflow(copy_id, organization_id)

    async def create_workflow_with_definition(
        self,
        organization_id: int,
        name: str,
        entity_type: str,
        states: list[dict],
        transitions: list[dict],
        triggers: list[dict],
        description: str | None = None,
        is_default: bool = False,
    ) -> WorkflowModel:
        """Create a workflow and its whole definition in one transaction.

        Transitions reference states by ``from``/``to`` name and triggers by
        ``state`` name. Trigger ``actions`` carry WorkflowActionModel fields.
        """
        module = WorkflowEntityType(entity_type).module.value
        async with self.async_session() as session:
            try:
                if is_default:
                    await self._clear_default_workflows(
                        session, organization_id, module, entity_type
                    )
                workflow = WorkflowModel(
                    organization_id=organization_id,
                    name=name,
                    description=description,
                    module=module,
                    entity_type=entity_type,
                    is_active=True,
                    is_default=is_default,
                )
                session.add(workflow)
                await session.flush()
                workflow_id = workflow.id

                state_models = {
                    state["name"]: WorkflowStateModel(workflow_id=workflow_id, **state)
                    for state in states
                }
                session.add_all(state_models.values())
                await session.flush()

                for transition in transitions:
                    fields = dict(transition)
                    session.add(
                        WorkflowTransitionModel(
                            workflow_id=workflow_id,
                            from_state_id=state_models[fields.pop("from")].id,
                            to_state_id=state_models[fields.pop("to")].id,
                            **fields,
                        )
                    )

                for trigger in triggers:
                    fields = dict(trigger)
                    actions = fields.pop("actions", [])
                    session.add(
                        WorkflowTriggerModel(
                            workflow_id=workflow_id,
                            state_id=state_models[fields.pop("state")].id,
                            actions=[WorkflowActionModel(**action) for action in actions],
                            **fields,
                        )
                    )
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e

        return await self.get_workflow(workflow_id, organization_id)
