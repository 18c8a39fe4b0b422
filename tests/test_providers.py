"""Tests for provider API clients, the registry and error classification.

HTTP is faked with httpx.MockTransport; no network access.
"""

from __future__ import annotations

import json

import httpx
import pytest

from marketplace.config import Settings
from marketplace.errors import ProviderError, ProviderErrorType, classify_provider_error
from marketplace.providers.base import ManualFulfillmentClient, to_minor_units
from marketplace.providers.gelato import GelatoClient
from marketplace.providers.printful import PrintfulClient
from marketplace.providers.registry import ProviderRegistry, build_registry


def _transport(handler) -> httpx.MockTransport:
    return httpx.MockTransport(handler)


class TestPrintfulClient:
    @pytest.mark.asyncio
    async def test_confirm_order(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["store"] = request.headers.get("X-PF-Store-Id")
            return httpx.Response(200, json={"result": {"id": 555, "status": "pending"}})

        client = PrintfulClient("pf-key", store_id="77", transport=_transport(handler))
        result = await client.confirm_order("555")
        await client.aclose()

        assert result == {"id": "555", "status": "pending"}
        assert seen == {"method": "POST", "path": "/orders/555/confirm", "auth": "Bearer pf-key", "store": "77"}

    @pytest.mark.asyncio
    async def test_get_products(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/store/products":
                assert request.url.params["limit"] == "100"
                return httpx.Response(200, json={"result": [{"id": 1, "name": "Tee"}]})
            assert request.url.path == "/store/products/1"
            return httpx.Response(200, json={
                "result": {
                    "sync_product": {"id": 1, "name": "Tee", "thumbnail_url": "https://img/1.png"},
                    "sync_variants": [
                        {"id": 11, "name": "Tee / M", "sku": "TEE-M", "retail_price": "24.99", "currency": "USD"},
                        {"id": 12, "name": "Tee / L", "retail_price": None, "availability_status": "discontinued"},
                    ],
                }
            })

        client = PrintfulClient("pf-key", transport=_transport(handler))
        products = await client.get_products()

        assert len(products) == 1
        product = products[0]
        assert (product.id, product.name, product.image_url) == ("1", "Tee", "https://img/1.png")
        assert [v.price for v in product.variants] == [2499, 0]
        assert [v.in_stock for v in product.variants] == [True, False]

    @pytest.mark.asyncio
    async def test_rate_limit_carries_retry_after(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, headers={"Retry-After": "12"}, json={"error": "slow down"})

        client = PrintfulClient("pf-key", transport=_transport(handler))
        with pytest.raises(ProviderError) as exc_info:
            await client.confirm_order("1")

        err = exc_info.value
        assert err.provider == "printful"
        assert err.status_code == 429
        assert err.retry_after == 12.0
        assert err.error_type == ProviderErrorType.RATE_LIMIT

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        client = PrintfulClient("pf-key", transport=_transport(handler))
        with pytest.raises(ProviderError) as exc_info:
            await client.cancel_order("1")
        assert exc_info.value.error_type == ProviderErrorType.TIMEOUT

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = PrintfulClient("pf-key", transport=_transport(handler))
        with pytest.raises(ProviderError) as exc_info:
            await client.confirm_order("1")
        assert exc_info.value.error_type == ProviderErrorType.SERVICE_UNAVAILABLE


class TestGelatoClient:
    @pytest.mark.asyncio
    async def test_confirm_switches_order_type(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["key"] = request.headers["X-API-KEY"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "gl-1", "fulfillmentStatus": "passed"})

        client = GelatoClient("gl-key", transport=_transport(handler))
        result = await client.confirm_order("gl-1")

        assert result == {"id": "gl-1", "status": "passed"}
        assert seen == {"method": "PATCH", "path": "/v4/orders/gl-1", "key": "gl-key", "body": {"orderType": "order"}}

    @pytest.mark.asyncio
    async def test_get_products_from_ecommerce_api(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.host == "ecommerce.gelatoapis.com"
            assert request.url.path == "/v1/stores/store-9/products"
            return httpx.Response(200, json={
                "products": [
                    {
                        "id": "p1",
                        "title": "Poster",
                        "previewUrl": "https://img/p1.png",
                        "variants": [{"id": "v1", "title": "A3", "productUid": "poster_a3", "price": 19.5}],
                    }
                ]
            })

        client = GelatoClient("gl-key", store_id="store-9", transport=_transport(handler))
        products = await client.get_products()

        assert products[0].name == "Poster"
        assert products[0].variants[0].sku == "poster_a3"
        assert products[0].variants[0].price == 1950

    @pytest.mark.asyncio
    async def test_server_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503)

        client = GelatoClient("gl-key", transport=_transport(handler))
        with pytest.raises(ProviderError) as exc_info:
            await client.confirm_order("gl-1")
        assert exc_info.value.error_type == ProviderErrorType.SERVICE_UNAVAILABLE


class TestRegistry:
    def test_manual_always_present(self):
        registry = ProviderRegistry()
        assert isinstance(registry.get("manual"), ManualFulfillmentClient)
        assert registry.sync_providers() == []

    def test_build_registry_only_configured(self):
        registry = build_registry(Settings(printful_api_key="pf-key", gelato_api_key=""))
        assert registry.get("printful") is not None
        assert registry.get("gelato") is None
        assert [c.name for c in registry.sync_providers()] == ["printful"]

    @pytest.mark.asyncio
    async def test_manual_client_is_noop(self):
        manual = ManualFulfillmentClient()
        assert (await manual.confirm_order("m-1"))["id"] == "m-1"
        assert await manual.get_products() == []


class TestClassifyProviderError:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (ProviderError("printful", "x", status_code=429), ProviderErrorType.RATE_LIMIT),
            (ProviderError("printful", "x", status_code=401), ProviderErrorType.AUTH),
            (ProviderError("printful", "x", status_code=403), ProviderErrorType.AUTH),
            (ProviderError("printful", "x", status_code=502), ProviderErrorType.SERVICE_UNAVAILABLE),
            (ProviderError("printful", "x", status_code=408), ProviderErrorType.TIMEOUT),
            (ProviderError("printful", "x", status_code=400), ProviderErrorType.API_ERROR),
            (RuntimeError("Rate limit exceeded"), ProviderErrorType.RATE_LIMIT),
            (TimeoutError("operation timed out"), ProviderErrorType.TIMEOUT),
            (RuntimeError("upstream unavailable"), ProviderErrorType.SERVICE_UNAVAILABLE),
            (ValueError("bad payload"), ProviderErrorType.API_ERROR),
        ],
    )
    def test_classification(self, error, expected):
        assert classify_provider_error(error) == expected


class TestMinorUnits:
    @pytest.mark.parametrize(
        "amount, expected",
        [("24.99", 2499), (19.5, 1950), (10, 1000), ("0.005", 0), (None, 0), ("n/a", 0), ("", 0)],
    )
    def test_conversion(self, amount, expected):
        assert to_minor_units(amount) == expected
