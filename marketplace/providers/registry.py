"""Provider registry: lookup of fulfillment clients by provider name."""

from __future__ import annotations

import logging

from marketplace.config import Settings
from marketplace.orders.models import MANUAL_PROVIDER
from marketplace.providers.base import FulfillmentClient, ManualFulfillmentClient
from marketplace.providers.gelato import GelatoClient
from marketplace.providers.printful import PrintfulClient

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Configured fulfillment clients keyed by name.

    ``manual`` is always present. It is excluded from sync_providers()
    because it has no catalog to sync.
    """

    def __init__(self, clients: list[FulfillmentClient] | None = None):
        self._clients: dict[str, FulfillmentClient] = {MANUAL_PROVIDER: ManualFulfillmentClient()}
        for client in clients or []:
            self.register(client)

    def register(self, client: FulfillmentClient) -> None:
        self._clients[client.name] = client
        logger.info("Fulfillment provider registered: %s", client.name)

    def get(self, name: str) -> FulfillmentClient | None:
        return self._clients.get(name)

    def sync_providers(self) -> list[FulfillmentClient]:
        return [c for name, c in self._clients.items() if name != MANUAL_PROVIDER]

    async def aclose(self) -> None:
        """Close every client that holds a connection pool."""
        for client in self._clients.values():
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()


def build_registry(settings: Settings) -> ProviderRegistry:
    """Register every provider that has credentials configured."""
    registry = ProviderRegistry()
    if settings.printful_api_key:
        registry.register(
            PrintfulClient(
                settings.printful_api_key,
                store_id=settings.printful_store_id,
                base_url=settings.printful_base_url,
                timeout=settings.provider_timeout_seconds,
            )
        )
    if settings.gelato_api_key:
        registry.register(
            GelatoClient(
                settings.gelato_api_key,
                store_id=settings.gelato_store_id,
                order_url=settings.gelato_order_url,
                ecommerce_url=settings.gelato_ecommerce_url,
                timeout=settings.provider_timeout_seconds,
            )
        )
    return registry
