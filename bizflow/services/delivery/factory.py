"""
Factory for delivery providers.
Gateway URLs come from the environment, one per channel.
"""

from loguru import logger

from bizflow.constants import (
    DELIVERY_GATEWAY_TOKEN,
    EMAIL_GATEWAY_URL,
    WHATSAPP_GATEWAY_URL,
)
from bizflow.enums import MessageChannel
from bizflow.services.delivery.base import DeliveryProvider
from bizflow.services.delivery.http_gateway import HTTPGatewayProvider
from bizflow.services.delivery.logging_provider import LoggingDeliveryProvider

GATEWAY_URLS = {
    MessageChannel.WHATSAPP.value: WHATSAPP_GATEWAY_URL,
    MessageChannel.EMAIL.value: EMAIL_GATEWAY_URL,
}


def get_delivery_provider(channel: str) -> DeliveryProvider:
    """
    Create the provider for a channel.

    Raises:
        ValueError: If the channel is unknown
    """
    if channel not in GATEWAY_URLS:
        raise ValueError(f"Unknown delivery channel: {channel}")

    url = GATEWAY_URLS[channel]
    if not url:
        logger.warning(f"No gateway configured for {channel}, messages will only be logged")
        return LoggingDeliveryProvider()
    return HTTPGatewayProvider(url, token=DELIVERY_GATEWAY_TOKEN)
