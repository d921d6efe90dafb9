"""Synthetic entity data used by the trigger simulator and the variable catalogue."""

from typing import Any, Dict

from bizflow.enums import WorkflowEntityType
from bizflow.utils.template_renderer import extract_variables

SAMPLE_DATA: Dict[str, Dict[str, Any]] = {
    WorkflowEntityType.SESSION.value: {
        "patient_name": "João Silva",
        "patient_phone": "+351912345678",
        "patient_email": "joao.silva@email.com",
        "therapist_name": "Dr. Maria Santos",
        "session_date": "15/01/2025",
        "session_time": "14:30",
        "session_type": "Consulta Regular",
        "amount": "50.00",
        "organization_name": "Clínica Exemplo",
        "organization_email": "clinica@exemplo.com",
    },
    WorkflowEntityType.BUDGET.value: {
        "client_name": "Manuel Costa",
        "client_email": "manuel.costa@email.com",
        "client_phone": "+351923456789",
        "project_name": "Remodelação Cozinha",
        "budget_number": "ORC-2025-001",
        "budget_total": "15000.00",
        "budget_link": "https://app.controlewise.pt/budgets/123",
        "approval_link": "https://app.controlewise.pt/budgets/123/approve",
        "organization_name": "Construções ABC",
        "organization_email": "info@construcoes-abc.pt",
    },
    WorkflowEntityType.PROJECT.value: {
        "client_name": "Ana Ferreira",
        "client_email": "ana.ferreira@email.com",
        "client_phone": "+351934567890",
        "project_name": "Construção Moradia",
        "project_number": "PRJ-2025-001",
        "project_status": "Em Curso",
        "organization_name": "Construções ABC",
        "organization_email": "info@construcoes-abc.pt",
    },
}

DEFAULT_SAMPLE_DATA: Dict[str, Any] = {
    "name": "Cliente Exemplo",
    "email": "cliente@email.com",
    "phone": "+351900000000",
}

VARIABLE_DESCRIPTIONS = {
    "patient_name": "Nome do paciente",
    "patient_phone": "Telefone do paciente",
    "patient_email": "Email do paciente",
    "therapist_name": "Nome do terapeuta",
    "session_date": "Data da sessão (DD/MM/AAAA)",
    "session_time": "Hora da sessão (HH:MM)",
    "session_type": "Tipo de sessão",
    "amount": "Valor da sessão/pagamento",
    "client_name": "Nome do cliente",
    "client_email": "Email do cliente",
    "client_phone": "Telefone do cliente",
    "project_name": "Nome do projeto",
    "project_number": "Número do projeto",
    "project_status": "Estado do projeto",
    "budget_number": "Número do orçamento",
    "budget_total": "Valor total do orçamento",
    "budget_link": "Link para visualizar orçamento",
    "approval_link": "Link para aprovar orçamento",
    "organization_name": "Nome da organização",
    "organization_email": "Email da organização",
}


def get_sample_data(entity_type: str) -> Dict[str, Any]:
    """Return a fresh copy of the fixture for an entity type."""
    return dict(SAMPLE_DATA.get(entity_type, DEFAULT_SAMPLE_DATA))


def get_available_variables(entity_type: str) -> list[dict[str, str]]:
    return [
        {
            "name": name,
            "description": VARIABLE_DESCRIPTIONS.get(name, name),
            "sample_value": str(value),
        }
        for name, value in get_sample_data(entity_type).items()
    ]


def describe_template_variables(*texts: str | None) -> list[dict[str, str]]:
    """Catalogue entries for the placeholders used across a template's texts"""
    names: list[str] = []
    for text in texts:
        names.extend(extract_variables(text))
    return [
        {"name": name, "description": VARIABLE_DESCRIPTIONS.get(name, name)}
        for name in dict.fromkeys(names)
    ]
