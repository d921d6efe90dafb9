"""
API tests of the workflow definition and template endpoints.
"""

import pytest
import pytest_asyncio

BASE = "/api/v1/workflows"


@pytest_asyncio.fixture
async def client(test_client_factory, organization):
    async with test_client_factory(organization) as client:
        yield client


async def _create_session_workflow(client, name="Sessões") -> dict:
    response = await client.post(BASE, json={"name": name, "entity_type": "session"})
    assert response.status_code == 200
    workflow = response.json()

    states = {}
    for position, state_name in enumerate(["pending", "confirmed"]):
        response = await client.post(
            f"{BASE}/{workflow['id']}/states",
            json={
                "name": state_name,
                "display_name": state_name.title(),
                "position": position,
            },
        )
        assert response.status_code == 200
        states[state_name] = response.json()
    workflow["states"] = states
    return workflow


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_missing_organization_header(self, test_client_factory, db_session):
        from httpx import ASGITransport, AsyncClient

        from bizflow.app import app

        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as client:
            response = await client.get(BASE)
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_organization(self, test_client_factory, db_session):
        from bizflow.db.models import OrganizationModel

        ghost = OrganizationModel(id=9999, provider_id="org_ghost")
        async with test_client_factory(ghost) as client:
            response = await client.get(BASE)
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json() == {"message": "OK"}


class TestWorkflowEndpoints:
    @pytest.mark.asyncio
    async def test_create_and_get(self, client):
        workflow = await _create_session_workflow(client)
        assert workflow["module"] == "appointments"
        assert workflow["is_default"] is False

        response = await client.get(f"{BASE}/{workflow['id']}")
        assert response.status_code == 200
        detail = response.json()
        assert [s["name"] for s in detail["states"]] == ["pending", "confirmed"]
        assert detail["transitions"] == []
        assert detail["triggers"] == []

    @pytest.mark.asyncio
    async def test_list_filters(self, client):
        await _create_session_workflow(client)
        await client.post(BASE, json={"name": "Orçamentos", "entity_type": "budget"})

        response = await client.get(BASE, params={"module": "construction"})
        assert [w["name"] for w in response.json()] == ["Orçamentos"]

        response = await client.get(BASE)
        assert len(response.json()) == 2

    @pytest.mark.asyncio
    async def test_duplicate_name_conflicts(self, client):
        await _create_session_workflow(client)
        response = await client.post(BASE, json={"name": "Sessões", "entity_type": "session"})
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_invalid_entity_type(self, client):
        response = await client.post(BASE, json={"name": "Faturas", "entity_type": "invoice"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_other_organization_gets_404(
        self, client, test_client_factory, other_organization
    ):
        workflow = await _create_session_workflow(client)

        async with test_client_factory(other_organization) as other_client:
            assert (await other_client.get(f"{BASE}/{workflow['id']}")).status_code == 404
            response = await other_client.put(f"{BASE}/{workflow['id']}", json={"name": "X"})
            assert response.status_code == 404
            response = await other_client.delete(f"{BASE}/{workflow['id']}")
            assert response.status_code == 404
            response = await other_client.get(f"{BASE}/{workflow['id']}/states")
            assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_set_default_and_duplicate(self, client):
        first = await _create_session_workflow(client, "A")
        second = await _create_session_workflow(client, "B")

        response = await client.post(f"{BASE}/{first['id']}/set-default")
        assert response.json()["is_default"] is True
        response = await client.put(f"{BASE}/{second['id']}", json={"is_default": True})
        assert response.json()["is_default"] is True
        assert (await client.get(f"{BASE}/{first['id']}")).json()["is_default"] is False

        response = await client.post(f"{BASE}/{second['id']}/duplicate")
        assert response.status_code == 200
        copy = response.json()
        assert copy["name"] == "B (cópia)"
        assert copy["is_active"] is False
        assert copy["is_default"] is False
        assert len(copy["states"]) == 2

        response = await client.post(
            f"{BASE}/{second['id']}/duplicate", json={"new_name": "B v2"}
        )
        assert response.json()["name"] == "B v2"

    @pytest.mark.asyncio
    async def test_delete_workflow(self, client):
        workflow = await _create_session_workflow(client)

        response = await client.delete(f"{BASE}/{workflow['id']}")
        assert response.json() == {"message": "Workflow deleted"}
        assert (await client.get(f"{BASE}/{workflow['id']}")).status_code == 404


class TestDefinitionEndpoints:
    @pytest.mark.asyncio
    async def test_state_and_transition_crud(self, client):
        workflow = await _create_session_workflow(client)
        pending, confirmed = workflow["states"]["pending"], workflow["states"]["confirmed"]

        response = await client.post(
            f"{BASE}/{workflow['id']}/transitions",
            json={
                "from_state_id": pending["id"],
                "to_state_id": confirmed["id"],
                "name": "Confirmar",
            },
        )
        assert response.status_code == 200
        transition = response.json()

        response = await client.put(
            f"{BASE}/transitions/{transition['id']}",
            json={"requires_confirmation": True},
        )
        assert response.json()["requires_confirmation"] is True

        response = await client.put(
            f"{BASE}/states/{confirmed['id']}", json={"color": "#3B82F6", "state_type": "final"}
        )
        assert response.json()["color"] == "#3B82F6"
        assert response.json()["state_type"] == "final"

        response = await client.post(
            f"{BASE}/{workflow['id']}/states",
            json={"name": "pending", "display_name": "Outra"},
        )
        assert response.status_code == 409

        response = await client.delete(f"{BASE}/states/{confirmed['id']}")
        assert response.json() == {"message": "State deleted"}
        response = await client.get(f"{BASE}/{workflow['id']}/transitions")
        assert response.json() == []

    @pytest.mark.asyncio
    async def test_transition_with_foreign_state(self, client):
        first = await _create_session_workflow(client, "A")
        second = await _create_session_workflow(client, "B")

        response = await client.post(
            f"{BASE}/{first['id']}/transitions",
            json={
                "from_state_id": first["states"]["pending"]["id"],
                "to_state_id": second["states"]["confirmed"]["id"],
                "name": "Cruzada",
            },
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_reorder_states(self, client):
        first = await _create_session_workflow(client, "A")
        second = await _create_session_workflow(client, "B")
        pending, confirmed = first["states"]["pending"], first["states"]["confirmed"]

        response = await client.put(
            f"{BASE}/{first['id']}/states/reorder",
            json={"state_ids": [confirmed["id"], pending["id"]]},
        )
        assert response.status_code == 200
        assert [(s["name"], s["position"]) for s in response.json()] == [
            ("confirmed", 0),
            ("pending", 1),
        ]

        response = await client.put(
            f"{BASE}/{first['id']}/states/reorder",
            json={"state_ids": [second["states"]["pending"]["id"]]},
        )
        assert response.status_code == 404

        response = await client.put(
            f"{BASE}/{first['id']}/states/reorder", json={"state_ids": []}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_trigger_with_actions(self, client):
        workflow = await _create_session_workflow(client)
        confirmed = workflow["states"]["confirmed"]

        response = await client.post(
            f"{BASE}/{workflow['id']}/triggers",
            json={
                "trigger_type": "time_before",
                "state_id": confirmed["id"],
                "time_offset_minutes": 1440,
                "actions": [
                    {"action_type": "create_task", "action_config": {"title": "Preparar sala"}},
                    {"action_type": "update_field", "action_config": {"field": "notified", "value": True}},
                ],
            },
        )
        assert response.status_code == 200
        trigger = response.json()
        assert [(a["action_type"], a["action_order"]) for a in trigger["actions"]] == [
            ("create_task", 0),
            ("update_field", 1),
        ]

        response = await client.put(
            f"{BASE}/triggers/{trigger['id']}", json={"time_offset_minutes": 120}
        )
        assert response.json()["time_offset_minutes"] == 120

        response = await client.get(f"{BASE}/{workflow['id']}/triggers")
        assert [t["id"] for t in response.json()] == [trigger["id"]]

        response = await client.delete(f"{BASE}/triggers/{trigger['id']}")
        assert response.json() == {"message": "Trigger deleted"}
        assert (await client.get(f"{BASE}/triggers/{trigger['id']}")).status_code == 404

    @pytest.mark.asyncio
    async def test_unbound_trigger_is_rejected(self, client):
        workflow = await _create_session_workflow(client)
        response = await client.post(
            f"{BASE}/{workflow['id']}/triggers", json={"trigger_type": "on_enter"}
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_action_config_is_rejected(self, client):
        workflow = await _create_session_workflow(client)
        confirmed = workflow["states"]["confirmed"]

        response = await client.post(
            f"{BASE}/{workflow['id']}/triggers",
            json={
                "trigger_type": "on_enter",
                "state_id": confirmed["id"],
                "actions": [{"action_type": "update_field", "action_config": {"value": 1}}],
            },
        )
        assert response.status_code == 422
        assert "update_field" in response.json()["detail"]

        # Nothing was stored
        response = await client.get(f"{BASE}/{workflow['id']}/triggers")
        assert response.json() == []

    @pytest.mark.asyncio
    async def test_action_crud(self, client):
        workflow = await _create_session_workflow(client)
        response = await client.post(
            f"{BASE}/{workflow['id']}/triggers",
            json={"trigger_type": "on_enter", "state_id": workflow["states"]["confirmed"]["id"]},
        )
        trigger = response.json()
        response = await client.post(
            "/api/v1/message-templates",
            json={"name": "Confirmação", "channel": "whatsapp", "body": "Olá {{patient_name}}"},
        )
        template = response.json()

        response = await client.post(
            f"{BASE}/triggers/{trigger['id']}/actions",
            json={"action_type": "send_whatsapp", "template_id": template["id"]},
        )
        assert response.status_code == 200
        action = response.json()
        assert action["template_id"] == template["id"]

        response = await client.put(
            f"{BASE}/actions/{action['id']}",
            json={"action_config": {"to_field": 5}},
        )
        assert response.status_code == 422

        response = await client.put(
            f"{BASE}/actions/{action['id']}",
            json={"action_config": {"to_field": "guardian_phone"}, "template_id": None},
        )
        assert response.status_code == 200
        assert response.json()["template_id"] is None
        assert response.json()["action_config"] == {"to_field": "guardian_phone"}

        response = await client.delete(f"{BASE}/actions/{action['id']}")
        assert response.json() == {"message": "Action deleted"}
        response = await client.put(f"{BASE}/actions/{action['id']}", json={"is_active": False})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_trigger_test_endpoint(self, client):
        workflow = await _create_session_workflow(client)
        response = await client.post(
            "/api/v1/message-templates",
            json={"name": "Confirmação", "channel": "whatsapp", "body": "Hi {{patient_name}}"},
        )
        template = response.json()
        response = await client.post(
            f"{BASE}/{workflow['id']}/triggers",
            json={
                "trigger_type": "on_enter",
                "state_id": workflow["states"]["confirmed"]["id"],
                "actions": [{"action_type": "send_whatsapp", "template_id": template["id"]}],
            },
        )
        trigger = response.json()

        response = await client.post(f"{BASE}/{workflow['id']}/triggers/{trigger['id']}/test")

        assert response.status_code == 200
        preview = response.json()
        assert preview["actions"][0]["rendered_body"] == "Hi João Silva"
        assert preview["actions"][0]["recipient"] == "+351912345678"

        response = await client.get("/api/v1/workflow-executions/jobs")
        assert response.json()["total"] == 0

        response = await client.post(f"{BASE}/{workflow['id'] + 1000}/triggers/{trigger['id']}/test")
        assert response.status_code == 404


class TestCatalogueEndpoints:
    @pytest.mark.asyncio
    async def test_variables(self, client):
        response = await client.get(f"{BASE}/variables", params={"entity_type": "budget"})
        assert response.status_code == 200
        variables = {v["name"]: v for v in response.json()}
        assert variables["budget_number"]["sample_value"] == "ORC-2025-001"
        assert variables["budget_number"]["description"] == "Número do orçamento"

        response = await client.get(f"{BASE}/variables")
        assert "patient_name" in {v["name"] for v in response.json()}

    @pytest.mark.asyncio
    async def test_init_defaults(self, client):
        response = await client.post(f"{BASE}/init-defaults", params={"module": "appointments"})
        assert response.status_code == 200
        body = response.json()
        assert body["templates_created"] == 5
        assert [w["entity_type"] for w in body["workflows"]] == ["session"]

        response = await client.post(f"{BASE}/init-defaults", params={"module": "appointments"})
        assert response.json()["templates_created"] == 0

    @pytest.mark.asyncio
    async def test_init_defaults_unknown_module(self, client):
        response = await client.post(f"{BASE}/init-defaults", params={"module": "retail"})
        assert response.status_code == 400


class TestMessageTemplateEndpoints:
    @pytest.mark.asyncio
    async def test_template_crud(self, client):
        response = await client.post(
            "/api/v1/message-templates",
            json={
                "name": "Orçamento",
                "channel": "email",
                "subject": "Orçamento {{budget_number}}",
                "body": "Caro(a) {{client_name}}, segue o orçamento {{budget_number}}.",
            },
        )
        assert response.status_code == 200
        template = response.json()
        assert [v["name"] for v in template["variables"]] == ["budget_number", "client_name"]

        response = await client.put(
            f"/api/v1/message-templates/{template['id']}",
            json={"body": "Olá {{client_name}}, o projeto {{project_name}} avança."},
        )
        assert [v["name"] for v in response.json()["variables"]] == [
            "budget_number",
            "client_name",
            "project_name",
        ]

        response = await client.get("/api/v1/message-templates", params={"channel": "whatsapp"})
        assert response.json() == []

        response = await client.delete(f"/api/v1/message-templates/{template['id']}")
        assert response.json() == {"message": "Template deleted"}
        response = await client.get(f"/api/v1/message-templates/{template['id']}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_explicit_variables_are_kept(self, client):
        response = await client.post(
            "/api/v1/message-templates",
            json={
                "name": "Livre",
                "channel": "whatsapp",
                "body": "Olá {{patient_name}}",
                "variables": [{"name": "patient_name", "description": "Nome"}],
            },
        )
        assert response.json()["variables"] == [{"name": "patient_name", "description": "Nome"}]

    @pytest.mark.asyncio
    async def test_template_of_other_organization(
        self, client, test_client_factory, other_organization
    ):
        response = await client.post(
            "/api/v1/message-templates",
            json={"name": "Privado", "channel": "whatsapp", "body": "Olá"},
        )
        template = response.json()

        async with test_client_factory(other_organization) as other_client:
            response = await other_client.get(f"/api/v1/message-templates/{template['id']}")
            assert response.status_code == 404
            response = await other_client.delete(f"/api/v1/message-templates/{template['id']}")
            assert response.status_code == 404
