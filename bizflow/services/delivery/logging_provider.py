from loguru import logger

from bizflow.services.delivery.base import (
    DeliveryProvider,
    DeliveryRequest,
    DeliveryResult,
)


class LoggingDeliveryProvider(DeliveryProvider):
    """Writes messages to the log instead of sending them.

    Used for channels without a configured gateway, e.g. in local development.
    """

    PROVIDER_NAME = "log"

    async def send(self, request: DeliveryRequest) -> DeliveryResult:
        logger.info(
            f"[{request.channel}] to={request.recipient} subject={request.subject!r} "
            f"key={request.idempotency_key}\n{request.body}"
        )
        return DeliveryResult(provider=self.PROVIDER_NAME)
