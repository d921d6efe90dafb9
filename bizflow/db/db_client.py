from bizflow.db.execution_log_client import ExecutionLogClient
from bizflow.db.message_template_client import MessageTemplateClient
from bizflow.db.organization_client import OrganizationClient
from bizflow.db.scheduled_job_client import ScheduledJobClient
from bizflow.db.workflow_client import WorkflowClient
from bizflow.db.workflow_state_client import WorkflowStateClient
from bizflow.db.workflow_trigger_client import WorkflowTriggerClient


class DBClient(
    WorkflowClient,
    WorkflowStateClient,
    WorkflowTriggerClient,
    MessageTemplateClient,
    ScheduledJobClient,
    ExecutionLogClient,
    OrganizationClient,
):
    """
    Unified database client that combines all specialized database operations.

    This client inherits from:
    - WorkflowClient: handles workflow CRUD, default selection and duplication
    - WorkflowStateClient: handles workflow state and transition operations
    - WorkflowTriggerClient: handles trigger and action operations
    - MessageTemplateClient: handles message template operations
    - ScheduledJobClient: handles the scheduled job queue
    - ExecutionLogClient: handles the append-only execution log
    - OrganizationClient: handles organization operations
    """

    pass
