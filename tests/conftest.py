"""Shared fixtures for the marketplace test suite."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from marketplace.config import Settings
from marketplace.orders.models import Order, OrderStatus, TrackingInfo
from marketplace.orders.store import InMemoryOrderStore
from marketplace.products.models import ProviderProduct
from marketplace.providers.registry import ProviderRegistry

PRINTFUL_SECRET_HEX = "a1b2c3d4e5f60718293a4b5c6d7e8f90"
PING_SECRET = "ping-test-secret"
STRIPE_SECRET = "whsec_test_secret"
GELATO_SECRET = "gelato-shared-token"
CRON_SECRET = "cron-test-secret"


class FakeFulfillmentClient:
    """In-process FulfillmentClient with scripted failures and call recording."""

    def __init__(
        self,
        name: str,
        *,
        products: list[ProviderProduct] | None = None,
        confirm_error: Exception | None = None,
        confirm_failures: int = 0,
        fetch_error: Exception | None = None,
        cancel_error: Exception | None = None,
    ):
        self.name = name
        self.products = products or []
        self.confirm_error = confirm_error
        # Number of leading confirm calls that fail; 0 with an error means always
        self.confirm_failures = confirm_failures
        self.fetch_error = fetch_error
        self.cancel_error = cancel_error
        self.confirm_calls: list[str] = []
        self.cancel_calls: list[str] = []
        self.fetch_calls: list[tuple[int, int]] = []

    async def confirm_order(self, order_id: str) -> dict[str, Any]:
        self.confirm_calls.append(order_id)
        if self.confirm_error is not None and (
            self.confirm_failures == 0 or len(self.confirm_calls) <= self.confirm_failures
        ):
            raise self.confirm_error
        return {"id": order_id, "status": "pending"}

    async def create_order(self, order: dict[str, Any]) -> dict[str, Any]:
        return {"id": "draft-new", "status": "draft"}

    async def get_products(self, limit: int = 100, offset: int = 0) -> list[ProviderProduct]:
        self.fetch_calls.append((limit, offset))
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.products[offset:offset + limit]

    async def cancel_order(self, order_id: str) -> dict[str, Any]:
        self.cancel_calls.append(order_id)
        if self.cancel_error is not None:
            raise self.cancel_error
        return {"id": order_id, "status": "canceled"}


class RecordingOrderStore(InMemoryOrderStore):
    """InMemoryOrderStore that records every write."""

    def __init__(self, orders: list[Order] | None = None):
        super().__init__(orders)
        self.writes: list[tuple[str, str, Any]] = []

    async def update_status(self, order_id: str, status: OrderStatus) -> None:
        self.writes.append(("status", order_id, status))
        await super().update_status(order_id, status)

    async def update_tracking(self, order_id: str, tracking: list[TrackingInfo]) -> None:
        self.writes.append(("tracking", order_id, tracking))
        await super().update_tracking(order_id, tracking)


@pytest.fixture()
def settings() -> Settings:
    """Settings with every webhook secret configured and fast retries."""
    return Settings(
        printful_webhook_secret=PRINTFUL_SECRET_HEX,
        gelato_webhook_secret=GELATO_SECRET,
        ping_webhook_secret=PING_SECRET,
        stripe_webhook_secret=STRIPE_SECRET,
        cron_secret=CRON_SECRET,
        confirm_max_retries=3,
        confirm_base_delay=0.1,
    )


@pytest.fixture()
def no_sleep():
    """Patch the retry sleep so backoff costs no wall time."""
    with patch("marketplace.retry._sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep


@pytest.fixture()
def t0() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture()
def make_order(t0):
    def _make(order_id: str = "order-1", **kwargs: Any) -> Order:
        kwargs.setdefault("created_at", t0)
        kwargs.setdefault("updated_at", t0)
        return Order(id=order_id, **kwargs)

    return _make


@pytest.fixture()
def printful_client() -> FakeFulfillmentClient:
    return FakeFulfillmentClient("printful")


@pytest.fixture()
def gelato_client() -> FakeFulfillmentClient:
    return FakeFulfillmentClient("gelato")


@pytest.fixture()
def registry(printful_client, gelato_client) -> ProviderRegistry:
    return ProviderRegistry([printful_client, gelato_client])
