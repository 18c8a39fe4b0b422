"""Webhook application service: verify, normalize, transition, persist.

Each handler:
1. Verifies the provider signature (Unauthorized propagates, nothing else runs)
2. Normalizes the payload (never raises; malformed -> "unknown" event)
3. Resolves the target order by its correlation key
4. Computes the transition (pure, see marketplace.orders.transitions)
5. Persists only the fields that changed
6. Runs downstream side effects (draft confirmation) with bounded retry

Contract:
- Returns {"received": True} for anything that passed signature checks,
  including unknown events and unresolvable orders (no provider retry storms)
- No per-order locking: transition guards and the payment "already
  processed" check are the only defence against duplicate/out-of-order delivery
- Processing errors after verification are logged and acknowledged; an order
  left short of its final status shows up as paid_pending_fulfillment or
  stays in its pre-payment status for the cleanup job
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from marketplace.config import Settings, get_settings
from marketplace.errors import Unauthorized
from marketplace.orders.models import Order, OrderStatus
from marketplace.orders.store import OrderStore
from marketplace.orders.transitions import (
    PaymentAction,
    StatusUpdate,
    compute_gelato_update,
    compute_printful_update,
    final_payment_status,
    payment_action,
)
from marketplace.providers.registry import ProviderRegistry
from marketplace.retry import retry_async
from marketplace.webhooks import verification
from marketplace.webhooks.normalizer import (
    NormalizedEvent,
    parse_gelato,
    parse_ping,
    parse_printful,
    parse_stripe,
)

logger = logging.getLogger(__name__)

ACK: dict[str, bool] = {"received": True}

FulfillmentTransition = Callable[[str, Mapping[str, Any], OrderStatus], StatusUpdate]


@dataclass(frozen=True)
class ConfirmationResult:
    """Outcome of confirming one provider's draft order."""

    provider: str
    success: bool
    error: str | None = None


class WebhookService:
    """Applies provider webhooks to orders."""

    def __init__(
        self,
        orders: OrderStore,
        registry: ProviderRegistry,
        settings: Settings | None = None,
    ):
        self._orders = orders
        self._registry = registry
        self._settings = settings or get_settings()
        # Webhook receive counter for monitoring (in-memory, per process)
        self.webhook_counts: dict[str, int] = {}

    # ── Audit ─────────────────────────────────────────────────────────────

    def _log_webhook(self, provider: str, event_type: str, ref: str | None, status: str) -> None:
        self.webhook_counts[provider] = self.webhook_counts.get(provider, 0) + 1
        logger.info(
            "WEBHOOK_AUDIT provider=%s event=%s ref=%s status=%s count=%d",
            provider,
            event_type,
            ref or "-",
            status,
            self.webhook_counts[provider],
        )

    def _verify(self, provider: str, check: Callable[[], None]) -> None:
        try:
            check()
        except Unauthorized:
            self._log_webhook(provider, "unknown", None, "signature_failed")
            raise

    # ── Entry points ──────────────────────────────────────────────────────

    async def handle_printful(self, raw_body: bytes, signature: str | None) -> dict[str, bool]:
        s = self._settings
        self._verify(
            "printful",
            lambda: verification.verify_printful(raw_body, signature, s.printful_webhook_secret),
        )
        return await self._apply_fulfillment_event(parse_printful(raw_body), compute_printful_update)

    async def handle_gelato(self, raw_body: bytes, token: str | None) -> dict[str, bool]:
        s = self._settings
        self._verify("gelato", lambda: verification.verify_gelato(token, s.gelato_webhook_secret))
        return await self._apply_fulfillment_event(parse_gelato(raw_body), compute_gelato_update)

    async def handle_ping(
        self, raw_body: bytes, signature: str | None, timestamp: str | None
    ) -> dict[str, bool]:
        s = self._settings
        self._verify(
            "ping",
            lambda: verification.verify_ping(
                raw_body,
                signature,
                timestamp,
                s.ping_webhook_secret,
                tolerance=s.signature_tolerance_seconds,
            ),
        )
        return await self._apply_payment_event(parse_ping(raw_body))

    async def handle_stripe(self, raw_body: bytes, signature: str | None) -> dict[str, bool]:
        s = self._settings
        self._verify(
            "stripe",
            lambda: verification.verify_stripe(
                raw_body,
                signature,
                s.stripe_webhook_secret,
                tolerance=s.signature_tolerance_seconds,
            ),
        )
        return await self._apply_payment_event(parse_stripe(raw_body))

    # ── Fulfillment events ────────────────────────────────────────────────

    async def _resolve_fulfillment_order(self, reference: str) -> Order | None:
        order = await self._orders.find_by_fulfillment_ref(reference)
        if order is None:
            order = await self._orders.find(reference)
        return order

    async def _apply_fulfillment_event(
        self, event: NormalizedEvent, transition: FulfillmentTransition
    ) -> dict[str, bool]:
        if not event.external_order_id:
            self._log_webhook(event.provider, event.event_type, None, "not_order_scoped")
            return ACK

        try:
            order = await self._resolve_fulfillment_order(event.external_order_id)
            if order is None:
                logger.warning(
                    "%s webhook %s references unknown order %s",
                    event.provider,
                    event.event_type,
                    event.external_order_id,
                )
                self._log_webhook(event.provider, event.event_type, event.external_order_id, "order_not_found")
                return ACK

            update = transition(event.event_type, event.payload, order.status)
            written = await self._persist(order, update)
            self._log_webhook(
                event.provider,
                event.event_type,
                order.id,
                "applied" if written else "no_change",
            )
        except Exception:
            # Acknowledge anyway: provider redelivery would hit the same failure
            logger.exception(
                "Failed to apply %s webhook %s for %s",
                event.provider,
                event.event_type,
                event.external_order_id,
            )
            self._log_webhook(event.provider, event.event_type, event.external_order_id, "processing_failed")
        return ACK

    async def _persist(self, order: Order, update: StatusUpdate) -> bool:
        """Write the fields the update changes. Returns True if anything was written."""
        written = False
        if update.new_status is not None and update.new_status != order.status:
            await self._orders.update_status(order.id, update.new_status)
            logger.info("Order %s: %s -> %s", order.id, order.status.value, update.new_status.value)
            written = True
        if update.new_tracking is not None and update.new_tracking != order.tracking_info:
            await self._orders.update_tracking(order.id, update.new_tracking)
            logger.info("Order %s: tracking updated (%d records)", order.id, len(update.new_tracking))
            written = True
        return written

    # ── Payment events ────────────────────────────────────────────────────

    async def _resolve_payment_order(self, event: NormalizedEvent) -> Order | None:
        order = None
        if event.external_order_id:
            order = await self._orders.find(event.external_order_id)
        if order is None and event.session_id:
            order = await self._orders.find_by_checkout_session(event.session_id)
        return order

    async def _apply_payment_event(self, event: NormalizedEvent) -> dict[str, bool]:
        try:
            await self._process_payment_event(event)
        except Exception:
            logger.exception(
                "Failed to apply %s webhook %s for %s",
                event.provider,
                event.event_type,
                event.external_order_id or event.session_id,
            )
            self._log_webhook(event.provider, event.event_type, event.external_order_id, "processing_failed")
        return ACK

    async def _process_payment_event(self, event: NormalizedEvent) -> None:
        order = await self._resolve_payment_order(event)
        if order is None:
            logger.warning(
                "%s webhook %s: no order for id=%s session=%s",
                event.provider,
                event.event_type,
                event.external_order_id,
                event.session_id,
            )
            self._log_webhook(event.provider, event.event_type, event.external_order_id, "order_not_found")
            return

        action = payment_action(event.event_type, order.status)

        if action == PaymentAction.FAIL:
            await self._orders.update_status(order.id, OrderStatus.PAYMENT_FAILED)
            self._log_webhook(event.provider, event.event_type, order.id, "payment_failed")
            return

        if action == PaymentAction.IGNORE:
            # Unknown event type, or a replayed success for an already-paid order
            self._log_webhook(event.provider, event.event_type, order.id, "ignored")
            return

        # Payment is a fact even if fulfillment confirmation fails below
        await self._orders.update_status(order.id, OrderStatus.PAID)

        if not order.draft_order_ids:
            self._log_webhook(event.provider, event.event_type, order.id, "paid")
            return

        results = await self.confirm_drafts(order)
        final_status = final_payment_status(r.success for r in results)
        await self._orders.update_status(order.id, final_status)
        if final_status == OrderStatus.PAID_PENDING_FULFILLMENT:
            logger.error(
                "Order %s paid but fulfillment confirmation failed: %s",
                order.id,
                {r.provider: r.error for r in results if not r.success},
            )
        self._log_webhook(event.provider, event.event_type, order.id, final_status.value)

    async def confirm_drafts(self, order: Order) -> list[ConfirmationResult]:
        """Confirm every provider draft of an order.

        Providers are independent: one failing does not stop the others.
        """
        return [
            await self._confirm_draft(provider_name, draft_id)
            for provider_name, draft_id in order.draft_order_ids.items()
        ]

    async def _confirm_draft(self, provider_name: str, draft_id: str) -> ConfirmationResult:
        client = self._registry.get(provider_name)
        if client is None:
            logger.error("Draft %s: provider %s not configured", draft_id, provider_name)
            return ConfirmationResult(provider_name, False, "Provider not configured")

        try:
            await retry_async(
                lambda: client.confirm_order(draft_id),
                max_retries=self._settings.confirm_max_retries,
                base_delay=self._settings.confirm_base_delay,
                label=f"confirm_order[{provider_name}]",
            )
        except Exception as e:
            logger.error("Failed to confirm draft %s at %s: %s", draft_id, provider_name, e)
            return ConfirmationResult(provider_name, False, str(e))

        logger.info("Confirmed draft %s at %s", draft_id, provider_name)
        return ConfirmationResult(provider_name, True)
