"""Fulfillment provider capability interface.

Every provider (Printful, Gelato, manual) exposes the same four
operations so call sites never special-case a provider. ``manual`` is a
real no-op client, not a missing one.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

import httpx

from marketplace.errors import ProviderError
from marketplace.products.models import ProviderProduct

logger = logging.getLogger(__name__)


def to_minor_units(amount: Any) -> int:
    """Decimal major-unit price (str or number) to integer minor units. Unparseable is 0."""
    if amount is None:
        return 0
    try:
        return int((Decimal(str(amount)) * 100).to_integral_value())
    except (InvalidOperation, ValueError):
        return 0


class FulfillmentClient(Protocol):
    name: str

    async def confirm_order(self, order_id: str) -> dict[str, Any]: ...

    async def create_order(self, order: dict[str, Any]) -> dict[str, Any]: ...

    async def get_products(self, limit: int = 100, offset: int = 0) -> list[ProviderProduct]: ...

    async def cancel_order(self, order_id: str) -> dict[str, Any]: ...


class ManualFulfillmentClient:
    """Orders fulfilled by hand: every operation succeeds without a remote call."""

    name = "manual"

    async def confirm_order(self, order_id: str) -> dict[str, Any]:
        return {"id": order_id, "status": "confirmed"}

    async def create_order(self, order: dict[str, Any]) -> dict[str, Any]:
        return {"id": str(order.get("external_id", "")), "status": "manual"}

    async def get_products(self, limit: int = 100, offset: int = 0) -> list[ProviderProduct]:
        return []

    async def cancel_order(self, order_id: str) -> dict[str, Any]:
        return {"id": order_id, "status": "cancelled"}


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class HttpProviderClient:
    """Shared httpx plumbing: every transport/HTTP failure becomes ProviderError."""

    name = ""

    def __init__(self, base_url: str, headers: dict[str, str], timeout: float = 30.0,
                 transport: httpx.AsyncBaseTransport | None = None):
        self._client = httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout, transport=transport
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning("%s API %s %s failed: HTTP %d", self.name, method, path, status)
            raise ProviderError(
                self.name,
                f"HTTP {status} from {method} {path}",
                status_code=status,
                retry_after=_retry_after(e.response),
            ) from e
        except httpx.TimeoutException as e:
            raise ProviderError(self.name, f"Request timed out: {method} {path}", status_code=408) from e
        except httpx.TransportError as e:
            raise ProviderError(
                self.name, f"Service unavailable ({type(e).__name__}): {method} {path}"
            ) from e
        if not response.content:
            return {}
        return response.json()
