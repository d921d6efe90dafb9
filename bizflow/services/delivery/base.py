"""
Delivery collaborator interface.
The dispatcher hands rendered messages to a provider and only cares whether
the hand-off succeeded. Retries after a failure are the provider's business.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class DeliveryRequest:
    """A rendered message ready to be sent."""

    channel: str  # "whatsapp" | "email"
    recipient: str  # phone number or email address
    body: str
    job_id: int
    action_id: int
    organization_id: int
    attempt: int
    subject: Optional[str] = None  # email only

    @property
    def idempotency_key(self) -> str:
        # Stable across re-sends of the same attempt so the gateway can deduplicate
        return f"{self.job_id}:{self.action_id}:{self.attempt}"


@dataclass
class DeliveryResult:
    """Provider acknowledgement of a hand-off."""

    provider: str
    message_id: Optional[str] = None
    raw_response: Dict[str, Any] = field(default_factory=dict)


class DeliveryProvider(ABC):
    PROVIDER_NAME = None

    @abstractmethod
    async def send(self, request: DeliveryRequest) -> DeliveryResult:
        """
        Hand a message to the delivery channel.

        Raises:
            DeliveryError: If the channel rejected or could not accept the message
        """
        pass
