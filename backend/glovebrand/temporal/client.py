import asyncio
import logging

from temporalio.client import Client

from glovebrand.config import settings

logger = logging.getLogger(__name__)

_client: Client | None = None
_connect_lock = asyncio.Lock()


async def get_temporal_client() -> Client:
    """Process-wide client shared by the API, the queue trigger and the worker."""
    global _client
    if _client is not None:
        return _client
    async with _connect_lock:
        if _client is None:
            _client = await Client.connect(settings.TEMPORAL_ADDRESS, namespace=settings.TEMPORAL_NAMESPACE)
            logger.info(
                "temporal.connected",
                extra={"address": settings.TEMPORAL_ADDRESS, "namespace": settings.TEMPORAL_NAMESPACE},
            )
    return _client
