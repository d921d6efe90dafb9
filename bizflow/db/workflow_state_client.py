from typing import Optional

from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from bizflow.db.base_client import BaseDBClient
from bizflow.db.models import (
    WorkflowModel,
    WorkflowStateModel,
    WorkflowTransitionModel,
    WorkflowTriggerModel,
)
from bizflow.services.workflow.errors import NotFoundError

STATE_FIELDS = (
    "name",
    "display_name",
    "description",
    "state_type",
    "color",
    "icon",
    "position",
    "is_active",
)

TRANSITION_FIELDS = ("name", "description", "requires_confirmation", "is_active")


class WorkflowStateClient(BaseDBClient):
    async def _get_scoped_state(
        self, session, state_id: int, organization_id: int
    ) -> WorkflowStateModel:
        result = await session.execute(
            select(WorkflowStateModel)
            .join(WorkflowModel, WorkflowStateModel.workflow_id == WorkflowModel.id)
            .where(
                WorkflowStateModel.id == state_id,
                WorkflowModel.organization_id == organization_id,
            )
        )
        state = result.scalars().first()
        if not state:
            raise NotFoundError("State", state_id)
        return state

    async def create_workflow_state(
        self,
        workflow_id: int,
        organization_id: int,
        name: str,
        display_name: str,
        description: str | None = None,
        state_type: str = "intermediate",
        color: str | None = None,
        icon: str | None = None,
        position: int = 0,
        is_active: bool = True,
    ) -> WorkflowStateModel:
        async with self.async_session() as session:
            try:
                await self._get_scoped_workflow(session, workflow_id, organization_id)
                state = WorkflowStateModel(
                    workflow_id=workflow_id,
                    name=name,
                    display_name=display_name,
                    description=description,
                    state_type=state_type,
                    color=color or "#6B7280",
                    icon=icon,
                    position=position,
                    is_active=is_active,
                )
                session.add(state)
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
            await session.refresh(state)
        return state

    async def get_workflow_states(
        self, workflow_id: int, organization_id: int
    ) -> list[WorkflowStateModel]:
        async with self.async_session() as session:
            await self._get_scoped_workflow(session, workflow_id, organization_id)
            result = await session.execute(
                select(WorkflowStateModel)
                .where(WorkflowStateModel.workflow_id == workflow_id)
                .order_by(WorkflowStateModel.position, WorkflowStateModel.id)
            )
            return list(result.scalars().all())

    async def reorder_workflow_states(
        self, workflow_id: int, organization_id: int, state_ids: list[int]
    ) -> list[WorkflowStateModel]:
        """Set each state's position to its index in `state_ids`.

        Raises:
            NotFoundError: If the workflow or any of the states is not in it
        """
        async with self.async_session() as session:
            try:
                await self._get_scoped_workflow(session, workflow_id, organization_id)
                result = await session.execute(
                    select(WorkflowStateModel).where(
                        WorkflowStateModel.workflow_id == workflow_id,
                        WorkflowStateModel.id.in_(state_ids),
                    )
                )
                states = {state.id: state for state in result.scalars().all()}
                for position, state_id in enumerate(state_ids):
                    if state_id not in states:
                        raise NotFoundError("State", state_id)
                    states[state_id].position = position
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
        return await self.get_workflow_states(workflow_id, organization_id)

    async def get_workflow_state_by_name(
        self, workflow_id: int, name: str
    ) -> Optional[WorkflowStateModel]:
        """Find a state by exact, case-sensitive name, with its triggers loaded"""
        async with self.async_session() as session:
            result = await session.execute(
                select(WorkflowStateModel)
                .where(
                    WorkflowStateModel.workflow_id == workflow_id,
                    WorkflowStateModel.name == name,
                )
                .options(
                    selectinload(WorkflowStateModel.triggers).selectinload(
                        WorkflowTriggerModel.actions
                    )
                )
            )
            return result.scalars().first()

    async def update_workflow_state(
        self, state_id: int, organization_id: int, **fields
    ) -> WorkflowStateModel:
        async with self.async_session() as session:
            try:
                state = await self._get_scoped_state(session, state_id, organization_id)
                for field, value in fields.items():
                    if field in STATE_FIELDS and value is not None:
                        setattr(state, field, value)
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
            await session.refresh(state)
        return state

    async def delete_workflow_state(self, state_id: int, organization_id: int) -> None:
        """Delete a state. Transitions and triggers bound to it cascade in storage."""
        async with self.async_session() as session:
            try:
                state = await self._get_scoped_state(session, state_id, organization_id)
                await session.delete(state)
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e

    async def _get_scoped_transition(
        self, session, transition_id: int, organization_id: int
    ) -> WorkflowTransitionModel:
        result = await session.execute(
            select(WorkflowTransitionModel)
            .join(
                WorkflowModel, WorkflowTransitionModel.workflow_id == WorkflowModel.id
            )
            .where(
                WorkflowTransitionModel.id == transition_id,
                WorkflowModel.organization_id == organization_id,
            )
        )
        transition = result.scalars().first()
        if not transition:
            raise NotFoundError("Transition", transition_id)
        return transition

    async def create_workflow_transition(
        self,
        workflow_id: int,
        organization_id: int,
        from_state_id: int,
        to_state_id: int,
        name: str,
        description: str | None = None,
        requires_confirmation: bool = False,
        is_active: bool = True,
    ) -> WorkflowTransitionModel:
        async with self.async_session() as session:
            try:
                await self._get_scoped_workflow(session, workflow_id, organization_id)
                # Both ends must be states of this workflow
                for state_id in (from_state_id, to_state_id):
                    state = await self._get_scoped_state(
                        session, state_id, organization_id
                    )
                    if state.workflow_id != workflow_id:
                        raise NotFoundError("State", state_id)

                transition = WorkflowTransitionModel(
                    workflow_id=workflow_id,
                    from_state_id=from_state_id,
                    to_state_id=to_state_id,
                    name=name,
                    description=description,
                    requires_confirmation=requires_confirmation,
                    is_active=is_active,
                )
                session.add(transition)
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
            await session.refresh(transition)
        return transition

    async def get_workflow_transitions(
        self, workflow_id: int, organization_id: int
    ) -> list[WorkflowTransitionModel]:
        async with self.async_session() as session:
            await self._get_scoped_workflow(session, workflow_id, organization_id)
            result = await session.execute(
                select(WorkflowTransitionModel)
                .where(WorkflowTransitionModel.workflow_id == workflow_id)
                .order_by(WorkflowTransitionModel.id)
            )
            return list(result.scalars().all())

    async def update_workflow_transition(
        self, transition_id: int, organization_id: int, **fields
    ) -> WorkflowTransitionModel:
        async with self.async_session() as session:
            try:
                transition = await self._get_scoped_transition(
                    session, transition_id, organization_id
                )
                for field, value in fields.items():
                    if field in TRANSITION_FIELDS and value is not None:
                        setattr(transition, field, value)
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
            await session.refresh(transition)
        return transition

    async def delete_workflow_transition(
        self, transition_id: int, organization_id: int
    ) -> None:
        async with self.async_session() as session:
            try:
                transition = await self._get_scoped_transition(
                    session, transition_id, organization_id
                )
                await session.delete(transition)
                await session.commit()
            except Exception as e:
                await session.rollback()
                raise e
