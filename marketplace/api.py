"""HTTP surface: webhook receivers, product sync, draft cleanup cron.

Security contract:
- Webhook routes read the raw body before anything else (needed for HMAC)
- 401 only for signature failures; everything else that passed verification
  gets {"received": true} so providers do not retry into the same failure
- Never return error details to webhook callers
- Cron routes require the x-cron-secret header (constant-time compare)
"""

from __future__ import annotations

import hmac
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from marketplace.config import Settings, get_settings
from marketplace.errors import SyncError, Unauthorized
from marketplace.jobs.cleanup_drafts import cleanup_abandoned_drafts
from marketplace.orders.store import OrderStore, PostgresOrderStore
from marketplace.products.store import PostgresProductStore, ProductStore
from marketplace.providers.registry import ProviderRegistry, build_registry
from marketplace.sync.coordinator import SyncCoordinator
from marketplace.sync.store import RedisSyncStateStore, SyncStateStore
from marketplace.webhooks.service import WebhookService
from marketplace.webhooks.verification import PING_TIMESTAMP_HEADER, SIGNATURE_HEADERS

logger = logging.getLogger(__name__)

CRON_SECRET_HEADER = "x-cron-secret"

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Root logging for the service process."""
    logging.basicConfig(level=level.upper(), format=_LOG_FORMAT)


async def _webhook(call: Callable[[], Awaitable[dict[str, bool]]]) -> JSONResponse:
    try:
        result = await call()
    except Unauthorized as e:
        logger.warning("Webhook rejected: %s", e.message)
        return JSONResponse({"received": False}, status_code=e.http_status)
    return JSONResponse(result, status_code=200)


def register_webhook_routes(app: FastAPI, service: WebhookService) -> None:
    """Register one POST route per provider plus a receive-count status route."""

    @app.post("/webhooks/printful")
    async def printful_webhook(request: Request):
        """Receive Printful webhooks (signature-verified when a secret is set)."""
        body = await request.body()
        signature = request.headers.get(SIGNATURE_HEADERS["printful"])
        return await _webhook(lambda: service.handle_printful(body, signature))

    @app.post("/webhooks/gelato")
    async def gelato_webhook(request: Request):
        """Receive Gelato webhooks (shared-token header when a secret is set)."""
        body = await request.body()
        token = request.headers.get(SIGNATURE_HEADERS["gelato"])
        return await _webhook(lambda: service.handle_gelato(body, token))

    @app.post("/webhooks/ping")
    async def ping_webhook(request: Request):
        """Receive PingPay payment webhooks (signature-verified)."""
        body = await request.body()
        signature = request.headers.get(SIGNATURE_HEADERS["ping"])
        timestamp = request.headers.get(PING_TIMESTAMP_HEADER)
        return await _webhook(lambda: service.handle_ping(body, signature, timestamp))

    @app.post("/webhooks/stripe")
    async def stripe_webhook(request: Request):
        """Receive Stripe payment webhooks (signature-verified)."""
        body = await request.body()
        signature = request.headers.get(SIGNATURE_HEADERS["stripe"])
        return await _webhook(lambda: service.handle_stripe(body, signature))

    @app.get("/webhooks/status")
    async def webhook_status():
        """Webhook receive counts per provider."""
        return {"counts": dict(service.webhook_counts)}

    logger.info("Webhook routes registered: /webhooks/{printful,gelato,ping,stripe}")


def register_sync_routes(app: FastAPI, coordinator: SyncCoordinator) -> None:
    @app.post("/sync")
    async def sync_products():
        """Run a product sync now. 409 while another run is in progress."""
        try:
            return await coordinator.sync()
        except SyncError as e:
            return JSONResponse(e.to_dict(), status_code=e.http_status)

    @app.get("/sync-status")
    async def sync_status():
        state = await coordinator.get_sync_status()
        return state.to_dict()


def register_cron_routes(
    app: FastAPI, settings: Settings, orders: OrderStore, registry: ProviderRegistry
) -> None:
    @app.post("/cron/cleanup-drafts")
    async def cleanup_drafts(request: Request):
        """Cancel provider drafts of orders abandoned before payment."""
        provided = request.headers.get(CRON_SECRET_HEADER, "")
        if not settings.cron_secret or not hmac.compare_digest(
            provided.encode("utf-8"), settings.cron_secret.encode("utf-8")
        ):
            logger.warning("Rejected cron call without a valid %s header", CRON_SECRET_HEADER)
            return JSONResponse({"error": "unauthorized"}, status_code=401)
        return await cleanup_abandoned_drafts(orders, registry)


def create_app(
    settings: Settings | None = None,
    *,
    orders: OrderStore | None = None,
    products: ProductStore | None = None,
    sync_states: SyncStateStore | None = None,
    registry: ProviderRegistry | None = None,
) -> FastAPI:
    """Build the FastAPI app. Collaborators default to Postgres/Redis from settings."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    if orders is None:
        orders = PostgresOrderStore(settings.database_url)
    if products is None:
        products = PostgresProductStore(settings.database_url)
    if sync_states is None:
        sync_states = RedisSyncStateStore(settings.redis_url)
    if registry is None:
        registry = build_registry(settings)

    webhooks = WebhookService(orders, registry, settings)
    coordinator = SyncCoordinator(
        sync_states,
        products,
        registry,
        stale_after=settings.sync_stale_after_seconds,
        timeout=settings.sync_timeout_seconds,
    )

    postgres_stores = [s for s in (orders, products) if isinstance(s, (PostgresOrderStore, PostgresProductStore))]

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        for store in postgres_stores:
            await store.init_tables()
        yield
        await registry.aclose()
        if isinstance(sync_states, RedisSyncStateStore):
            await sync_states.aclose()
        logger.info("Provider and Redis connections closed")

    app = FastAPI(title="Marketplace order reconciliation", lifespan=lifespan)
    app.state.webhooks = webhooks
    app.state.sync = coordinator

    register_webhook_routes(app, webhooks)
    register_sync_routes(app, coordinator)
    register_cron_routes(app, settings, orders, registry)
    return app
