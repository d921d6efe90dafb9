"""
Default workflows and message templates seeded per business module.

Seeding is idempotent: a default workflow that already exists for an entity
type is returned as is, and templates are skipped when one with the same
(name, channel) exists for the organization.
"""

from dataclasses import dataclass, field

from loguru import logger

from bizflow.db import db_client
from bizflow.db.models import WorkflowModel
from bizflow.enums import (
    ActionType,
    MessageChannel,
    StateType,
    TriggerType,
    WorkflowEntityType,
    WorkflowModule,
)
from bizflow.services.workflow.sample_data import describe_template_variables

EMAIL = MessageChannel.EMAIL.value
WHATSAPP = MessageChannel.WHATSAPP.value

DEFAULT_TEMPLATES = {
    WorkflowModule.CONSTRUCTION.value: [
        {
            "name": "Orçamento Enviado",
            "channel": EMAIL,
            "subject": "Novo Orçamento - {{budget_number}}",
            "body": """Caro(a) {{client_name}},

Enviamos em anexo o orçamento {{budget_number}} para o projeto "{{project_name}}".

Valor Total: {{budget_total}}€

Para visualizar ou aprovar o orçamento, aceda ao seguinte link:
{{budget_link}}

Ficamos ao dispor para qualquer esclarecimento.

Com os melhores cumprimentos,
{{organization_name}}""",
        },
        {
            "name": "Orçamento Aprovado",
            "channel": EMAIL,
            "subject": "Orçamento {{budget_number}} Aprovado!",
            "body": """O orçamento {{budget_number}} para o cliente {{client_name}} foi aprovado!

Projeto: {{project_name}}
Valor: {{budget_total}}€

O projeto pode agora ser iniciado.

{{organization_name}}""",
        },
        {
            "name": "Orçamento Rejeitado",
            "channel": EMAIL,
            "subject": "Orçamento {{budget_number}} Rejeitado",
            "body": """O orçamento {{budget_number}} para o cliente {{client_name}} foi rejeitado.

Projeto: {{project_name}}
Valor: {{budget_total}}€

Poderá ser necessário rever o orçamento e reenviar ao cliente.

{{organization_name}}""",
        },
        {
            "name": "Projeto Concluído",
            "channel": EMAIL,
            "subject": "Projeto {{project_name}} Concluído",
            "body": """Caro(a) {{client_name}},

Temos o prazer de informar que o projeto "{{project_name}}" foi concluído com sucesso!

Agradecemos a sua confiança e estamos ao dispor para futuros projetos.

Com os melhores cumprimentos,
{{organization_name}}""",
        },
    ],
    WorkflowModule.APPOINTMENTS.value: [
        {
            "name": "Lembrete 24h",
            "channel": WHATSAPP,
            "body": """Olá {{patient_name}}! 👋

Lembramos que tem uma consulta agendada para amanhã:

📅 Data: {{session_date}}
🕐 Hora: {{session_time}}
👤 Terapeuta: {{therapist_name}}

Por favor, confirme a sua presença respondendo a esta mensagem.

{{organization_name}}""",
        },
        {
            "name": "Lembrete 2h",
            "channel": WHATSAPP,
            "body": """Olá {{patient_name}}! 👋

A sua consulta é daqui a 2 horas:

🕐 {{session_time}}
👤 {{therapist_name}}

Esperamos por si!

{{organization_name}}""",
        },
        {
            "name": "Sessão Confirmada",
            "channel": WHATSAPP,
            "body": """Olá {{patient_name}}! ✅

A sua consulta está confirmada:

📅 Data: {{session_date}}
🕐 Hora: {{session_time}}
👤 Terapeuta: {{therapist_name}}

Até breve!
{{organization_name}}""",
        },
        {
            "name": "Lembrete Pagamento",
            "channel": WHATSAPP,
            "body": """Olá {{patient_name}}! 👋

Gostaríamos de lembrar que tem sessões pendentes de pagamento no valor de {{amount}}€.

Por favor, regularize o pagamento na próxima consulta ou contacte-nos para mais informações.

Obrigado,
{{organization_name}}""",
        },
        {
            "name": "Sessão Cancelada",
            "channel": WHATSAPP,
            "body": """Olá {{patient_name}},

A sua consulta do dia {{session_date}} às {{session_time}} foi cancelada.

Para reagendar, por favor contacte-nos.

{{organization_name}}""",
        },
    ],
}


def _state(name, display_name, description, state_type, color, position):
    return {
        "name": name,
        "display_name": display_name,
        "description": description,
        "state_type": state_type.value,
        "color": color,
        "position": position,
    }


def _email_on_enter(state: str, subject: str, to_field: str) -> dict:
    return {
        "state": state,
        "trigger_type": TriggerType.ON_ENTER.value,
        "actions": [
            {
                "action_type": ActionType.SEND_EMAIL.value,
                "action_config": {"subject": subject, "to_field": to_field},
                "action_order": 0,
            }
        ],
    }


BUDGET_WORKFLOW = {
    "name": "Ciclo de Vida do Orçamento",
    "description": "Workflow padrão para gestão de orçamentos de construção",
    "entity_type": WorkflowEntityType.BUDGET.value,
    "states": [
        _state("draft", "Rascunho", "Orçamento em preparação", StateType.INITIAL, "#6B7280", 0),
        _state("sent", "Enviado", "Orçamento enviado ao cliente", StateType.INTERMEDIATE, "#3B82F6", 1),
        _state("approved", "Aprovado", "Orçamento aprovado pelo cliente", StateType.FINAL, "#10B981", 2),
        _state("rejected", "Rejeitado", "Orçamento rejeitado pelo cliente", StateType.FINAL, "#EF4444", 3),
        _state("expired", "Expirado", "Orçamento expirou sem resposta", StateType.FINAL, "#F59E0B", 4),
    ],
    "transitions": [
        {"from": "draft", "to": "sent", "name": "Enviar ao Cliente"},
        {"from": "sent", "to": "approved", "name": "Cliente Aprova"},
        {"from": "sent", "to": "rejected", "name": "Cliente Rejeita"},
        {"from": "sent", "to": "expired", "name": "Expirar"},
        {"from": "rejected", "to": "draft", "name": "Voltar a Rascunho"},
    ],
    "triggers": [
        _email_on_enter(
            "sent", "Novo orçamento disponível - {{budget_number}}", "client_email"
        ),
        _email_on_enter(
            "approved", "Orçamento {{budget_number}} foi aprovado!", "organization_email"
        ),
    ],
}

PROJECT_WORKFLOW = {
    "name": "Ciclo de Vida do Projeto",
    "description": "Workflow padrão para gestão de projetos de construção",
    "entity_type": WorkflowEntityType.PROJECT.value,
    "states": [
        _state("in_progress", "Em Progresso", "Projeto em execução", StateType.INITIAL, "#3B82F6", 0),
        _state("on_hold", "Em Espera", "Projeto pausado", StateType.INTERMEDIATE, "#F59E0B", 1),
        _state("completed", "Concluído", "Projeto finalizado", StateType.FINAL, "#10B981", 2),
        _state("cancelled", "Cancelado", "Projeto cancelado", StateType.FINAL, "#EF4444", 3),
    ],
    "transitions": [
        {"from": "in_progress", "to": "on_hold", "name": "Pausar Projeto"},
        {
            "from": "in_progress",
            "to": "completed",
            "name": "Concluir Projeto",
            "requires_confirmation": True,
        },
        {
            "from": "in_progress",
            "to": "cancelled",
            "name": "Cancelar Projeto",
            "requires_confirmation": True,
        },
        {"from": "on_hold", "to": "in_progress", "name": "Retomar Projeto"},
        {
            "from": "on_hold",
            "to": "cancelled",
            "name": "Cancelar Projeto",
            "requires_confirmation": True,
        },
    ],
    "triggers": [
        _email_on_enter(
            "completed", "Projeto {{project_name}} foi concluído!", "client_email"
        ),
    ],
}


def _whatsapp_trigger(
    state: str, template_id: int, trigger_type: TriggerType, offset: int | None = None
) -> dict:
    return {
        "state": state,
        "trigger_type": trigger_type.value,
        "time_offset_minutes": offset,
        "time_field": "scheduled_at" if offset is not None else None,
        "actions": [
            {
                "action_type": ActionType.SEND_WHATSAPP.value,
                "action_config": {"to_field": "patient_phone"},
                "template_id": template_id,
                "action_order": 0,
            }
        ],
    }


def session_workflow(template_ids: dict[str, int]) -> dict:
    """Default appointment workflow, its messages bound to seeded templates by name."""
    triggers = []
    if "Sessão Confirmada" in template_ids:
        triggers.append(
            _whatsapp_trigger(
                "confirmed", template_ids["Sessão Confirmada"], TriggerType.ON_ENTER
            )
        )
    if "Lembrete 24h" in template_ids:
        triggers.append(
            _whatsapp_trigger(
                "confirmed", template_ids["Lembrete 24h"], TriggerType.TIME_BEFORE, 24 * 60
            )
        )
    if "Lembrete 2h" in template_ids:
        triggers.append(
            _whatsapp_trigger(
                "confirmed", template_ids["Lembrete 2h"], TriggerType.TIME_BEFORE, 2 * 60
            )
        )
    if "Sessão Cancelada" in template_ids:
        triggers.append(
            _whatsapp_trigger(
                "cancelled", template_ids["Sessão Cancelada"], TriggerType.ON_ENTER
            )
        )

    return {
        "name": "Ciclo de Vida da Sessão",
        "description": "Workflow padrão para gestão de sessões e lembretes",
        "entity_type": WorkflowEntityType.SESSION.value,
        "states": [
            _state("pending", "Pendente", "Sessão por confirmar", StateType.INITIAL, "#F59E0B", 0),
            _state("confirmed", "Confirmada", "Sessão confirmada", StateType.INTERMEDIATE, "#3B82F6", 1),
            _state("completed", "Realizada", "Sessão realizada", StateType.FINAL, "#10B981", 2),
            _state("cancelled", "Cancelada", "Sessão cancelada", StateType.FINAL, "#EF4444", 3),
            _state("no_show", "Falta", "Paciente não compareceu", StateType.FINAL, "#6B7280", 4),
        ],
        "transitions": [
            {"from": "pending", "to": "confirmed", "name": "Confirmar Sessão"},
            {
                "from": "pending",
                "to": "cancelled",
                "name": "Cancelar Sessão",
                "requires_confirmation": True,
            },
            {"from": "confirmed", "to": "completed", "name": "Concluir Sessão"},
            {
                "from": "confirmed",
                "to": "cancelled",
                "name": "Cancelar Sessão",
                "requires_confirmation": True,
            },
            {"from": "confirmed", "to": "no_show", "name": "Marcar Falta"},
        ],
        "triggers": triggers,
    }


@dataclass
class BootstrapResult:
    workflows: list[WorkflowModel] = field(default_factory=list)
    templates_created: int = 0


class WorkflowBootstrapper:
    async def create_default_templates(
        self, organization_id: int, module: str
    ) -> tuple[dict[str, int], int]:
        """Seed a module's templates.

        Returns (name -> id for every default template, number created).
        """
        template_ids = {}
        created = 0
        for template in DEFAULT_TEMPLATES[module]:
            existing = await db_client.get_message_template_by_name(
                organization_id, template["name"], template["channel"]
            )
            if existing:
                template_ids[template["name"]] = existing.id
                continue

            created_template = await db_client.create_message_template(
                organization_id=organization_id,
                name=template["name"],
                channel=template["channel"],
                subject=template.get("subject"),
                body=template["body"],
                variables=describe_template_variables(
                    template.get("subject"), template["body"]
                ),
            )
            template_ids[template["name"]] = created_template.id
            created += 1

        logger.info(
            f"Seeded {created} {module} templates for organization {organization_id}"
        )
        return template_ids, created

    async def create_default_workflow(
        self, organization_id: int, definition: dict
    ) -> WorkflowModel:
        existing = await db_client.get_default_workflow(
            organization_id, definition["entity_type"]
        )
        if existing:
            return await db_client.get_workflow(existing.id, organization_id)

        # A workflow with the default name may exist without being the default
        same_name = await db_client.get_workflow_by_name(
            organization_id, definition["name"]
        )
        if same_name:
            return await db_client.get_workflow(same_name.id, organization_id)

        workflow = await db_client.create_workflow_with_definition(
            organization_id=organization_id,
            name=definition["name"],
            description=definition["description"],
            entity_type=definition["entity_type"],
            states=definition["states"],
            transitions=definition["transitions"],
            triggers=definition["triggers"],
            is_default=True,
        )
        logger.info(
            f"Created default {definition['entity_type']} workflow {workflow.id} "
            f"for organization {organization_id}"
        )
        return workflow

    async def init_defaults(
        self, organization_id: int, module: str | None = None
    ) -> BootstrapResult:
        """
        Seed default workflows and templates.

        Args:
            organization_id: Organization to seed
            module: construction, appointments, or empty for every module

        Raises:
            ValueError: If the module is unknown
        """
        valid_modules = [member.value for member in WorkflowModule]
        if module and module not in valid_modules:
            raise ValueError(f"Unknown module: {module}")
        modules = [module] if module else valid_modules

        result = BootstrapResult()
        for current in modules:
            template_ids, created = await self.create_default_templates(
                organization_id, current
            )
            result.templates_created += created

            if current == WorkflowModule.CONSTRUCTION.value:
                definitions = [BUDGET_WORKFLOW, PROJECT_WORKFLOW]
            else:
                definitions = [session_workflow(template_ids)]
            for definition in definitions:
                result.workflows.append(
                    await self.create_default_workflow(organization_id, definition)
                )
        return result


workflow_bootstrapper = WorkflowBootstrapper()
