"""Printful REST API client (v1).

Drafts are created with ``confirm=false`` at checkout and confirmed after
payment. Store products are listed, then fetched one by one for their
sync variants.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from marketplace.products.models import ProviderProduct, ProviderVariant
from marketplace.providers.base import HttpProviderClient, to_minor_units

logger = logging.getLogger(__name__)


class PrintfulClient(HttpProviderClient):
    name = "printful"

    def __init__(
        self,
        api_key: str,
        store_id: str = "",
        base_url: str = "https://api.printful.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Authorization": f"Bearer {api_key}"}
        if store_id:
            headers["X-PF-Store-Id"] = store_id
        super().__init__(base_url, headers, timeout=timeout, transport=transport)

    async def confirm_order(self, order_id: str) -> dict[str, Any]:
        data = await self._request("POST", f"/orders/{order_id}/confirm")
        result = data.get("result", {})
        return {"id": str(result.get("id", order_id)), "status": result.get("status", "pending")}

    async def create_order(self, order: dict[str, Any]) -> dict[str, Any]:
        data = await self._request("POST", "/orders", params={"confirm": "false"}, json=order)
        result = data.get("result", {})
        return {"id": str(result.get("id", "")), "status": result.get("status", "draft")}

    async def cancel_order(self, order_id: str) -> dict[str, Any]:
        data = await self._request("DELETE", f"/orders/{order_id}")
        result = data.get("result", {})
        return {"id": str(result.get("id", order_id)), "status": result.get("status", "canceled")}

    async def get_products(self, limit: int = 100, offset: int = 0) -> list[ProviderProduct]:
        listing = await self._request(
            "GET", "/store/products", params={"limit": limit, "offset": offset}
        )
        products: list[ProviderProduct] = []
        for summary in listing.get("result", []):
            detail = await self._request("GET", f"/store/products/{summary['id']}")
            result = detail.get("result", {})
            sync_product = result.get("sync_product", {})
            variants = tuple(
                ProviderVariant(
                    id=str(v["id"]),
                    name=v.get("name", ""),
                    sku=v.get("sku") or "",
                    price=to_minor_units(v.get("retail_price")),
                    currency=v.get("currency") or "USD",
                    in_stock=v.get("availability_status", "active") == "active",
                )
                for v in result.get("sync_variants", [])
            )
            products.append(
                ProviderProduct(
                    id=str(sync_product.get("id", summary["id"])),
                    name=sync_product.get("name") or summary.get("name", ""),
                    image_url=sync_product.get("thumbnail_url") or "",
                    variants=variants,
                )
            )
        logger.info("Fetched %d Printful products", len(products))
        return products
