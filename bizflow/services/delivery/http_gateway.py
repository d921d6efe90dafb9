import asyncio

import httpx
from loguru import logger

from bizflow.constants import WORKFLOW_DELIVERY_TIMEOUT_SECONDS
from bizflow.services.delivery.base import (
    DeliveryProvider,
    DeliveryRequest,
    DeliveryResult,
)
from bizflow.services.workflow.errors import DeliveryError


class HTTPGatewayProvider(DeliveryProvider):
    """Posts messages as JSON to an outbound chat/email gateway.

    The gateway is expected to deduplicate on the ``Idempotency-Key`` header.
    """

    PROVIDER_NAME = "http_gateway"

    def __init__(
        self,
        url: str,
        token: str | None = None,
        timeout: float = WORKFLOW_DELIVERY_TIMEOUT_SECONDS,
    ):
        self.url = url
        self.token = token
        self.timeout = timeout

    def _headers(self, request: DeliveryRequest) -> dict:
        headers = {"Idempotency-Key": request.idempotency_key}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def send(self, request: DeliveryRequest) -> DeliveryResult:
        payload = {
            "channel": request.channel,
            "to": request.recipient,
            "subject": request.subject,
            "body": request.body,
            "metadata": {
                "organization_id": request.organization_id,
                "job_id": request.job_id,
                "action_id": request.action_id,
                "attempt": request.attempt,
            },
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(
                    self.url, json=payload, headers=self._headers(request)
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                logger.error(
                    f"Gateway rejected {request.channel} message for job {request.job_id}: "
                    f"{e.response.status_code} {e.response.text}"
                )
                raise DeliveryError(
                    f"Gateway returned {e.response.status_code} for {request.channel} message"
                ) from e
            except httpx.TimeoutException as e:
                # Surfaced as a timeout so the dispatcher requeues the job
                raise asyncio.TimeoutError(f"Gateway timed out: {e}") from e
            except httpx.HTTPError as e:
                raise DeliveryError(f"Gateway request failed: {e}") from e

        data = response.json() if response.content else {}
        logger.info(
            f"Delivered {request.channel} message for job {request.job_id} to {request.recipient}"
        )
        return DeliveryResult(
            provider=self.PROVIDER_NAME,
            message_id=data.get("id") or data.get("message_id"),
            raw_response=data,
        )
