from enum import Enum


class Environment(Enum):
    LOCAL = "local"
    PRODUCTION = "production"
    TEST = "test"


class WorkflowModule(Enum):
    CONSTRUCTION = "construction"
    APPOINTMENTS = "appointments"


class WorkflowEntityType(Enum):
    SESSION = "session"
    BUDGET = "budget"
    PROJECT = "project"

    @property
    def module(self) -> WorkflowModule:
        return ENTITY_TYPE_MODULES[self]


ENTITY_TYPE_MODULES = {
    WorkflowEntityType.SESSION: WorkflowModule.APPOINTMENTS,
    WorkflowEntityType.BUDGET: WorkflowModule.CONSTRUCTION,
    WorkflowEntityType.PROJECT: WorkflowModule.CONSTRUCTION,
}


class StateType(Enum):
    INITIAL = "initial"
    INTERMEDIATE = "intermediate"
    FINAL = "final"


class TriggerType(Enum):
    ON_ENTER = "on_enter"
    ON_EXIT = "on_exit"
    TIME_BEFORE = "time_before"
    TIME_AFTER = "time_after"
    # Evaluated by a separate periodic process, never by the state-change reactor
    RECURRING = "recurring"


class ActionType(Enum):
    SEND_WHATSAPP = "send_whatsapp"
    SEND_EMAIL = "send_email"
    UPDATE_FIELD = "update_field"
    CREATE_TASK = "create_task"


class MessageChannel(Enum):
    WHATSAPP = "whatsapp"
    EMAIL = "email"


class ScheduledJobStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ExecutionEventType(Enum):
    STATE_CHANGE = "state_change"
    TRIGGER_FIRED = "trigger_fired"
    ACTION_EXECUTED = "action_executed"
    ACTION_FAILED = "action_failed"
