"""
Storage-level tests of the workflow definition store.

Run against an in-memory SQLite database, see conftest.py.
"""

import asyncio

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from bizflow.db.models import (
    WorkflowActionModel,
    WorkflowModel,
    WorkflowStateModel,
    WorkflowTriggerModel,
)
from bizflow.services.workflow.errors import NotFoundError

STATES = [
    {"name": "pending", "display_name": "Pendente", "state_type": "initial", "position": 0},
    {"name": "confirmed", "display_name": "Confirmada", "position": 1},
    {"name": "completed", "display_name": "Concluída", "state_type": "final", "position": 2},
]
TRANSITIONS = [
    {"from": "pending", "to": "confirmed", "name": "Confirmar"},
    {"from": "confirmed", "to": "completed", "name": "Concluir"},
]
TRIGGERS = [
    {
        "state": "confirmed",
        "trigger_type": "on_enter",
        "actions": [
            {"action_type": "create_task", "action_config": {"title": "Preparar"}, "action_order": 0},
            {"action_type": "update_field", "action_config": {"field": "notes", "value": "ok"}, "action_order": 1},
        ],
    },
    {"state": "confirmed", "trigger_type": "time_before", "time_offset_minutes": 60},
]


async def _create_session_workflow(db_session, organization, name="Sessões", **kwargs):
    return await db_session.create_workflow_with_definition(
        organization_id=organization.id,
        name=name,
        entity_type="session",
        states=STATES,
        transitions=TRANSITIONS,
        triggers=TRIGGERS,
        **kwargs,
    )


async def _count(db_session, model, *where):
    async with db_session.async_session() as session:
        result = await session.execute(select(func.count()).select_from(model).where(*where))
        return result.scalar()


class TestWorkflowCrud:
    @pytest.mark.asyncio
    async def test_create_workflow_derives_module(self, db_session, organization):
        budget = await db_session.create_workflow(organization.id, "Orçamentos", "budget")
        session = await db_session.create_workflow(organization.id, "Sessões", "session")

        assert budget.module == "construction"
        assert session.module == "appointments"
        assert budget.is_active is True
        assert budget.is_default is False

    @pytest.mark.asyncio
    async def test_duplicate_name_in_organization_conflicts(
        self, db_session, organization, other_organization
    ):
        await db_session.create_workflow(organization.id, "Orçamentos", "budget")
        # Same name in another organization is fine
        await db_session.create_workflow(other_organization.id, "Orçamentos", "budget")

        with pytest.raises(IntegrityError):
            await db_session.create_workflow(organization.id, "Orçamentos", "project")

    @pytest.mark.asyncio
    async def test_get_workflows_filters(self, db_session, organization):
        await db_session.create_workflow(organization.id, "Orçamentos", "budget")
        await db_session.create_workflow(organization.id, "Projetos", "project", is_active=False)
        await db_session.create_workflow(organization.id, "Sessões", "session")

        construction = await db_session.get_workflows(organization.id, module="construction")
        assert {w.name for w in construction} == {"Orçamentos", "Projetos"}

        active_construction = await db_session.get_workflows(
            organization.id, module="construction", is_active=True
        )
        assert [w.name for w in active_construction] == ["Orçamentos"]

        sessions = await db_session.get_workflows(organization.id, entity_type="session")
        assert [w.name for w in sessions] == ["Sessões"]

    @pytest.mark.asyncio
    async def test_get_workflow_loads_definition(self, db_session, organization):
        created = await _create_session_workflow(db_session, organization)
        workflow = await db_session.get_workflow(created.id, organization.id)

        assert [s.name for s in workflow.states] == ["pending", "confirmed", "completed"]
        assert len(workflow.transitions) == 2
        assert len(workflow.triggers) == 2
        assert [a.action_type for a in workflow.triggers[0].actions] == [
            "create_task",
            "update_field",
        ]

    @pytest.mark.asyncio
    async def test_other_organization_cannot_see_or_change_workflow(
        self, db_session, organization, other_organization
    ):
        workflow = await db_session.create_workflow(organization.id, "Orçamentos", "budget")

        assert await db_session.get_workflow(workflow.id, other_organization.id) is None
        with pytest.raises(NotFoundError):
            await db_session.update_workflow(workflow.id, other_organization.id, name="X")
        with pytest.raises(NotFoundError):
            await db_session.delete_workflow(workflow.id, other_organization.id)
        with pytest.raises(NotFoundError):
            await db_session.set_default_workflow(workflow.id, other_organization.id)

    @pytest.mark.asyncio
    async def test_delete_workflow_cascades(self, db_session, organization):
        workflow = await _create_session_workflow(db_session, organization)

        await db_session.delete_workflow(workflow.id, organization.id)

        assert await db_session.get_workflow(workflow.id, organization.id) is None
        assert await _count(db_session, WorkflowStateModel) == 0
        assert await _count(db_session, WorkflowTriggerModel) == 0
        assert await _count(db_session, WorkflowActionModel) == 0


class TestDefaultWorkflow:
    @pytest.mark.asyncio
    async def test_set_default_replaces_previous_default(self, db_session, organization):
        first = await db_session.create_workflow(
            organization.id, "Sessões A", "session", is_default=True
        )
        second = await db_session.create_workflow(organization.id, "Sessões B", "session")

        updated = await db_session.set_default_workflow(second.id, organization.id)
        assert updated.is_default is True

        first = await db_session.get_workflow(first.id, organization.id)
        assert first.is_default is False
        default = await db_session.get_default_workflow(organization.id, "session")
        assert default.id == second.id

    @pytest.mark.asyncio
    async def test_create_with_default_clears_same_key_only(self, db_session, organization):
        budget = await db_session.create_workflow(
            organization.id, "Orçamentos", "budget", is_default=True
        )
        project = await db_session.create_workflow(
            organization.id, "Projetos", "project", is_default=True
        )
        budget_b = await db_session.create_workflow(
            organization.id, "Orçamentos B", "budget", is_default=True
        )

        assert (await db_session.get_workflow(budget.id, organization.id)).is_default is False
        assert (await db_session.get_workflow(project.id, organization.id)).is_default is True
        assert budget_b.is_default is True
        assert (
            await _count(
                db_session,
                WorkflowModel,
                WorkflowModel.organization_id == organization.id,
                WorkflowModel.is_default.is_(True),
            )
            == 2
        )

    @pytest.mark.asyncio
    async def test_update_to_default_clears_previous(self, db_session, organization):
        first = await db_session.create_workflow(
            organization.id, "Sessões A", "session", is_default=True
        )
        second = await db_session.create_workflow(organization.id, "Sessões B", "session")

        await db_session.update_workflow(second.id, organization.id, is_default=True)

        assert (await db_session.get_workflow(first.id, organization.id)).is_default is False
        assert (await db_session.get_default_workflow(organization.id, "session")).id == second.id

    @pytest.mark.asyncio
    async def test_inactive_default_is_not_returned(self, db_session, organization):
        await db_session.create_workflow(
            organization.id, "Sessões", "session", is_active=False, is_default=True
        )
        assert await db_session.get_default_workflow(organization.id, "session") is None

    @pytest.mark.asyncio
    async def test_storage_rejects_second_default(self, db_session, organization):
        """The partial unique index holds even for writes bypassing the client."""
        async with db_session.async_session() as session:
            for name in ("A", "B"):
                session.add(
                    WorkflowModel(
                        organization_id=organization.id,
                        name=name,
                        module="appointments",
                        entity_type="session",
                        is_default=True,
                    )
                )
            with pytest.raises(IntegrityError):
                await session.commit()

    @pytest.mark.asyncio
    async def test_concurrent_default_changes_leave_one_default(self, file_db_session):
        organization = await file_db_session.create_organization(
            "org_test_concurrent", "Clínica Concorrente"
        )
        await file_db_session.create_workflow(
            organization.id, "Sessões A", "session", is_default=True
        )
        second = await file_db_session.create_workflow(organization.id, "Sessões B", "session")
        third = await file_db_session.create_workflow(organization.id, "Sessões C", "session")

        results = await asyncio.gather(
            file_db_session.set_default_workflow(second.id, organization.id),
            file_db_session.set_default_workflow(third.id, organization.id),
            file_db_session.create_workflow(
                organization.id, "Sessões D", "session", is_default=True
            ),
            return_exceptions=True,
        )

        # A writer that loses the database lock fails as a whole
        assert any(not isinstance(result, Exception) for result in results)
        assert (
            await _count(
                file_db_session,
                WorkflowModel,
                WorkflowModel.organization_id == organization.id,
                WorkflowModel.is_default.is_(True),
            )
            == 1
        )
        assert await file_db_session.get_default_workflow(organization.id, "session")


class TestDuplicateWorkflow:
    @pytest.mark.asyncio
    async def test_duplicate_remaps_definition(self, db_session, organization):
        source = await _create_session_workflow(db_session, organization, is_default=True)

        copy = await db_session.duplicate_workflow(source.id, organization.id)

        assert copy.id != source.id
        assert copy.name == "Sessões (cópia)"
        assert copy.is_active is False
        assert copy.is_default is False
        assert len(copy.states) == len(source.states)
        assert len(copy.transitions) == len(source.transitions)
        assert len(copy.triggers) == len(source.triggers)

        copy_state_ids = {state.id for state in copy.states}
        assert copy_state_ids.isdisjoint({state.id for state in source.states})
        for transition in copy.transitions:
            assert transition.from_state_id in copy_state_ids
            assert transition.to_state_id in copy_state_ids
        for trigger in copy.triggers:
            assert trigger.state_id in copy_state_ids

        states_by_id = {state.id: state.name for state in copy.states}
        assert [
            (states_by_id[t.from_state_id], states_by_id[t.to_state_id])
            for t in copy.transitions
        ] == [("pending", "confirmed"), ("confirmed", "completed")]
        assert [len(t.actions) for t in copy.triggers] == [2, 0]

        # The source keeps its default flag
        default = await db_session.get_default_workflow(organization.id, "session")
        assert default.id == source.id

    @pytest.mark.asyncio
    async def test_duplicate_with_new_name(self, db_session, organization):
        source = await _create_session_workflow(db_session, organization)
        copy = await db_session.duplicate_workflow(
            source.id, organization.id, new_name="Sessões v2"
        )
        assert copy.name == "Sessões v2"

    @pytest.mark.asyncio
    async def test_duplicate_other_organization(
        self, db_session, organization, other_organization
    ):
        source = await _create_session_workflow(db_session, organization)
        with pytest.raises(NotFoundError):
            await db_session.duplicate_workflow(source.id, other_organization.id)


class TestStatesAndTransitions:
    @pytest.mark.asyncio
    async def test_state_defaults_and_lookup_by_name(self, db_session, organization):
        workflow = await db_session.create_workflow(organization.id, "Sessões", "session")
        state = await db_session.create_workflow_state(
            workflow.id, organization.id, name="confirmed", display_name="Confirmada"
        )

        assert state.color == "#6B7280"
        assert state.state_type == "intermediate"
        found = await db_session.get_workflow_state_by_name(workflow.id, "confirmed")
        assert found.id == state.id
        # Names are matched verbatim
        assert await db_session.get_workflow_state_by_name(workflow.id, "Confirmed") is None

    @pytest.mark.asyncio
    async def test_duplicate_state_name_conflicts(self, db_session, organization):
        workflow = await db_session.create_workflow(organization.id, "Sessões", "session")
        await db_session.create_workflow_state(
            workflow.id, organization.id, name="pending", display_name="Pendente"
        )
        with pytest.raises(IntegrityError):
            await db_session.create_workflow_state(
                workflow.id, organization.id, name="pending", display_name="Outro"
            )

    @pytest.mark.asyncio
    async def test_transition_states_must_belong_to_workflow(self, db_session, organization):
        first = await _create_session_workflow(db_session, organization, name="A")
        second = await _create_session_workflow(db_session, organization, name="B")

        with pytest.raises(NotFoundError):
            await db_session.create_workflow_transition(
                first.id,
                organization.id,
                from_state_id=first.states[0].id,
                to_state_id=second.states[1].id,
                name="Cruzada",
            )

    @pytest.mark.asyncio
    async def test_duplicate_transition_conflicts(self, db_session, organization):
        workflow = await _create_session_workflow(db_session, organization)
        with pytest.raises(IntegrityError):
            await db_session.create_workflow_transition(
                workflow.id,
                organization.id,
                from_state_id=workflow.states[0].id,
                to_state_id=workflow.states[1].id,
                name="Confirmar outra vez",
            )

    @pytest.mark.asyncio
    async def test_delete_state_cascades_to_its_triggers(self, db_session, organization):
        workflow = await _create_session_workflow(db_session, organization)
        confirmed = workflow.states[1]

        await db_session.delete_workflow_state(confirmed.id, organization.id)

        assert await _count(db_session, WorkflowTriggerModel) == 0
        transitions = await db_session.get_workflow_transitions(workflow.id, organization.id)
        assert transitions == []

    @pytest.mark.asyncio
    async def test_reorder_states(self, db_session, organization):
        workflow = await _create_session_workflow(db_session, organization)
        pending, confirmed, completed = workflow.states

        states = await db_session.reorder_workflow_states(
            workflow.id, organization.id, [completed.id, pending.id, confirmed.id]
        )

        assert [(s.name, s.position) for s in states] == [
            ("completed", 0),
            ("pending", 1),
            ("confirmed", 2),
        ]

    @pytest.mark.asyncio
    async def test_reorder_rejects_state_of_other_workflow(self, db_session, organization):
        first = await _create_session_workflow(db_session, organization, name="A")
        second = await _create_session_workflow(db_session, organization, name="B")
        state_ids = [s.id for s in reversed(first.states)]

        with pytest.raises(NotFoundError):
            await db_session.reorder_workflow_states(
                first.id, organization.id, state_ids + [second.states[0].id]
            )

        # Nothing moved
        states = await db_session.get_workflow_states(first.id, organization.id)
        assert [s.position for s in states] == [0, 1, 2]
        assert [s.name for s in states] == ["pending", "confirmed", "completed"]

    @pytest.mark.asyncio
    async def test_reorder_other_organization(
        self, db_session, organization, other_organization
    ):
        workflow = await _create_session_workflow(db_session, organization)

        with pytest.raises(NotFoundError):
            await db_session.reorder_workflow_states(
                workflow.id, other_organization.id, [s.id for s in workflow.states]
            )


class TestTriggersAndActions:
    @pytest.mark.asyncio
    async def test_trigger_must_be_bound(self, db_session, organization):
        workflow = await db_session.create_workflow(organization.id, "Sessões", "session")
        with pytest.raises(ValueError):
            await db_session.create_workflow_trigger(
                workflow.id, organization.id, trigger_type="on_enter"
            )

    @pytest.mark.asyncio
    async def test_trigger_state_from_other_workflow(self, db_session, organization):
        first = await _create_session_workflow(db_session, organization, name="A")
        second = await _create_session_workflow(db_session, organization, name="B")
        with pytest.raises(NotFoundError):
            await db_session.create_workflow_trigger(
                first.id,
                organization.id,
                trigger_type="on_enter",
                state_id=second.states[0].id,
            )

    @pytest.mark.asyncio
    async def test_create_trigger_with_actions_in_order(self, db_session, organization):
        workflow = await _create_session_workflow(db_session, organization)
        trigger = await db_session.create_workflow_trigger(
            workflow.id,
            organization.id,
            trigger_type="time_after",
            state_id=workflow.states[2].id,
            time_offset_minutes=1440,
            actions=[
                {"action_type": "create_task", "action_config": {"title": "Pedir feedback"}},
                {"action_type": "update_field", "action_config": {"field": "followup", "value": True}},
            ],
        )

        assert trigger.workflow.id == workflow.id
        assert [(a.action_type, a.action_order) for a in trigger.actions] == [
            ("create_task", 0),
            ("update_field", 1),
        ]

    @pytest.mark.asyncio
    async def test_action_with_template_of_other_organization(
        self, db_session, organization, other_organization
    ):
        workflow = await _create_session_workflow(db_session, organization)
        foreign = await db_session.create_message_template(
            other_organization.id, "Lembrete", "whatsapp", "Olá"
        )
        with pytest.raises(NotFoundError):
            await db_session.create_workflow_action(
                workflow.triggers[0].id,
                organization.id,
                action_type="send_whatsapp",
                template_id=foreign.id,
            )

    @pytest.mark.asyncio
    async def test_deleting_template_unlinks_actions(self, db_session, organization):
        workflow = await _create_session_workflow(db_session, organization)
        template = await db_session.create_message_template(
            organization.id, "Lembrete", "whatsapp", "Olá {{patient_name}}"
        )
        action = await db_session.create_workflow_action(
            workflow.triggers[0].id,
            organization.id,
            action_type="send_whatsapp",
            template_id=template.id,
        )

        await db_session.delete_message_template(template.id, organization.id)

        action = await db_session.get_workflow_action(action.id, organization.id)
        assert action is not None
        assert action.template_id is None

    @pytest.mark.asyncio
    async def test_update_action_clears_template(self, db_session, organization):
        workflow = await _create_session_workflow(db_session, organization)
        template = await db_session.create_message_template(
            organization.id, "Confirmação", "email", "Olá", subject="Assunto"
        )
        action = await db_session.create_workflow_action(
            workflow.triggers[0].id,
            organization.id,
            action_type="send_email",
            template_id=template.id,
        )

        updated = await db_session.update_workflow_action(
            action.id, organization.id, clear_template=True, is_active=False
        )
        assert updated.template_id is None
        assert updated.is_active is False
