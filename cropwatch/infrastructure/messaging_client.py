"""
Infrastructure layer: Outbound message transport client.
"""
from typing import Optional
import logging

from cropwatch.config import settings
from cropwatch.domain.exceptions import ExternalServiceError
from cropwatch.infrastructure.api_constants import MessagingAPIEndpoints
from cropwatch.infrastructure.provider_client import ProviderClient

logger = logging.getLogger(__name__)


class MessagingApiClient(ProviderClient):
    """
    Client for the message transport.

    Messages are attempted once. Retrying is the transport's business.
    """

    service_name = "Messaging API"

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None):
        super().__init__(
            base_url=base_url or settings.messaging_api_base_url,
            api_key=api_key if api_key is not None else settings.messaging_api_key,
        )

    async def send(self, recipient: str, message: str) -> bool:
        """
        Attempt delivery of one message.

        Returns:
            True if the transport accepted the message
        """
        try:
            await self._make_request(
                "POST",
                MessagingAPIEndpoints.MESSAGES,
                retry_enabled=False,
                json={"to": recipient, "body": message},
            )
        except ExternalServiceError as e:
            logger.warning(f"Message to {recipient} not accepted: {e}")
            return False
        return True


# Singleton instance
_messaging_client: Optional[MessagingApiClient] = None


def get_messaging_client() -> MessagingApiClient:
    """
    Get or create the singleton MessagingApiClient instance.

    Returns:
        MessagingApiClient instance
    """
    global _messaging_client
    if _messaging_client is None:
        _messaging_client = MessagingApiClient()
    return _messaging_client
