"""Gelato API client.

Orders live on the order API (v4); store products on the ecommerce API.
A draft is confirmed by switching its ``orderType`` to ``order``.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from marketplace.products.models import ProviderProduct, ProviderVariant
from marketplace.providers.base import HttpProviderClient, to_minor_units

logger = logging.getLogger(__name__)


class GelatoClient(HttpProviderClient):
    name = "gelato"

    def __init__(
        self,
        api_key: str,
        store_id: str = "",
        order_url: str = "https://order.gelatoapis.com",
        ecommerce_url: str = "https://ecommerce.gelatoapis.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(order_url, {"X-API-KEY": api_key}, timeout=timeout, transport=transport)
        self._store_id = store_id
        self._ecommerce_url = ecommerce_url.rstrip("/")

    async def confirm_order(self, order_id: str) -> dict[str, Any]:
        data = await self._request("PATCH", f"/v4/orders/{order_id}", json={"orderType": "order"})
        return {"id": str(data.get("id", order_id)), "status": data.get("fulfillmentStatus", "created")}

    async def create_order(self, order: dict[str, Any]) -> dict[str, Any]:
        body = {"orderType": "draft", **order}
        data = await self._request("POST", "/v4/orders", json=body)
        return {"id": str(data.get("id", "")), "status": data.get("fulfillmentStatus", "draft")}

    async def cancel_order(self, order_id: str) -> dict[str, Any]:
        await self._request("POST", f"/v4/orders/{order_id}:cancel")
        return {"id": order_id, "status": "canceled"}

    async def get_products(self, limit: int = 100, offset: int = 0) -> list[ProviderProduct]:
        data = await self._request(
            "GET",
            f"{self._ecommerce_url}/v1/stores/{self._store_id}/products",
            params={"limit": limit, "offset": offset},
        )
        products = [
            ProviderProduct(
                id=str(p["id"]),
                name=p.get("title", ""),
                description=p.get("description") or "",
                image_url=p.get("previewUrl") or "",
                variants=tuple(
                    ProviderVariant(
                        id=str(v["id"]),
                        name=v.get("title", ""),
                        sku=v.get("sku") or v.get("productUid") or "",
                        price=to_minor_units(v.get("price")),
                        currency=v.get("currency") or "USD",
                    )
                    for v in p.get("variants", [])
                ),
            )
            for p in data.get("products", [])
        ]
        logger.info("Fetched %d Gelato products", len(products))
        return products
