from enum import Enum
from typing import TypedDict


class TriggerOutcome(str, Enum):
    scheduled = "scheduled"
    skipped = "skipped"
    failed = "failed"


class TriggerDecision(TypedDict):
    trigger_id: int
    trigger_type: str
    outcome: TriggerOutcome
    scheduled_for: str | None  # ISO timestamp when scheduled
    reason: str | None  # why it was skipped or failed


class NotFoundError(ValueError):
    """Unknown definition entity, or one that belongs to another organization.

    Cross-tenant lookups raise this too so callers cannot learn which ids exist.
    """

    def __init__(self, kind: str, entity_id):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id} not found")


class InvalidActionConfigError(ValueError):
    def __init__(self, action_type: str, message: str):
        self.action_type = action_type
        super().__init__(f"Invalid {action_type} action config: {message}")


class TriggerSchedulingError(Exception):
    """Raised after every trigger of a state was attempted and at least one failed.

    The message is the first failure, all failures are kept in ``errors``.
    """

    def __init__(self, errors: list[Exception]):
        self.errors = errors
        super().__init__(str(errors[0]))


class DeliveryError(Exception):
    pass
