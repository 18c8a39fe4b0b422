"""Order status transition engine: pure functions, no I/O.

Fulfillment events (Printful, Gelato) map ``(event_type, payload,
current_status)`` to an optional new status and an optional replacement
tracking list. Payment events map to a PaymentAction that the webhook
service carries out.

Contract:
- Total over every event type: unrecognized events are a no-op, never an error
- Guarded events only fire from the states where they make sense
  ("remove hold" must not pull a shipped order back to processing)
- Unguarded events are provider-authoritative facts and always overwrite
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

from marketplace.orders.models import OrderStatus, TrackingInfo


@dataclass(frozen=True)
class StatusUpdate:
    """Result of applying one fulfillment event to an order."""

    new_status: OrderStatus | None = None
    new_tracking: list[TrackingInfo] | None = None

    @property
    def is_noop(self) -> bool:
        return self.new_status is None and self.new_tracking is None


NO_CHANGE = StatusUpdate()


# ── Printful ──────────────────────────────────────────────────────────────

# Events that set a status regardless of the current one
_PRINTFUL_UNGUARDED: dict[str, OrderStatus] = {
    "shipment_sent": OrderStatus.SHIPPED,
    "shipment_delivered": OrderStatus.DELIVERED,
    "shipment_returned": OrderStatus.RETURNED,
    "shipment_canceled": OrderStatus.PARTIALLY_CANCELLED,
    "shipment_out_of_stock": OrderStatus.ON_HOLD,
    "shipment_put_hold": OrderStatus.ON_HOLD,
    "shipment_put_hold_approval": OrderStatus.ON_HOLD,
    "order_put_hold": OrderStatus.ON_HOLD,
    "order_put_hold_approval": OrderStatus.ON_HOLD,
    "order_canceled": OrderStatus.CANCELLED,
    "order_failed": OrderStatus.FAILED,
    "order_refunded": OrderStatus.REFUNDED,
}

# event -> (allowed current statuses, new status)
_PRINTFUL_GUARDED: dict[str, tuple[frozenset[OrderStatus], OrderStatus]] = {
    "order_created": (
        frozenset({OrderStatus.PAID, OrderStatus.PAID_PENDING_FULFILLMENT}),
        OrderStatus.PROCESSING,
    ),
    "shipment_remove_hold": (frozenset({OrderStatus.ON_HOLD}), OrderStatus.PROCESSING),
    "order_remove_hold": (frozenset({OrderStatus.ON_HOLD}), OrderStatus.PROCESSING),
}

PRINTFUL_EVENTS = frozenset(_PRINTFUL_UNGUARDED) | frozenset(_PRINTFUL_GUARDED)


def _printful_tracking(data: Mapping[str, Any] | None) -> list[TrackingInfo] | None:
    shipment = (data or {}).get("shipment")
    if not isinstance(shipment, Mapping):
        return None
    return [
        TrackingInfo(
            tracking_code=str(shipment.get("tracking_number") or ""),
            tracking_url=str(shipment.get("tracking_url") or ""),
            shipment_method_name=str(shipment.get("service") or "Standard"),
        )
    ]


def compute_printful_update(
    event_type: str,
    data: Mapping[str, Any] | None,
    current_status: OrderStatus,
) -> StatusUpdate:
    """Decide the status/tracking change for a Printful event."""
    if event_type in _PRINTFUL_GUARDED:
        allowed, target = _PRINTFUL_GUARDED[event_type]
        if current_status in allowed:
            return StatusUpdate(new_status=target)
        return NO_CHANGE

    target = _PRINTFUL_UNGUARDED.get(event_type)
    if target is None:
        return NO_CHANGE

    if event_type == "shipment_sent":
        return StatusUpdate(new_status=target, new_tracking=_printful_tracking(data))
    return StatusUpdate(new_status=target)


# ── Gelato ────────────────────────────────────────────────────────────────

# Gelato has used both underscore and colon spellings for its events
_GELATO_EVENTS: dict[str, OrderStatus] = {
    "shipment_created": OrderStatus.SHIPPED,
    "shipment:created": OrderStatus.SHIPPED,
    "order_cancelled": OrderStatus.CANCELLED,
    "order:cancelled": OrderStatus.CANCELLED,
    "delivered": OrderStatus.DELIVERED,
    "order:delivered": OrderStatus.DELIVERED,
    "order_created": OrderStatus.PROCESSING,
    "order:created": OrderStatus.PROCESSING,
}

GELATO_EVENTS = frozenset(_GELATO_EVENTS)


def _gelato_tracking(order_data: Mapping[str, Any] | None) -> list[TrackingInfo] | None:
    order_data = order_data or {}
    shipments = order_data.get("shipments")
    if not shipments:
        single = order_data.get("shipment")
        shipments = [single] if single else []
    records = [
        TrackingInfo(
            tracking_code=str(s.get("trackingCode") or s.get("tracking_code") or ""),
            tracking_url=str(s.get("trackingUrl") or s.get("tracking_url") or ""),
            shipment_method_name=str(s.get("shipmentMethodName") or s.get("method") or "Standard"),
            shipment_method_uid=s.get("shipmentMethodUid"),
            fulfillment_country=s.get("fulfillmentCountry"),
        )
        for s in shipments
        if isinstance(s, Mapping)
    ]
    return records or None


def compute_gelato_update(
    event_type: str,
    order_data: Mapping[str, Any] | None,
    current_status: OrderStatus,
) -> StatusUpdate:
    """Decide the status/tracking change for a Gelato event.

    All Gelato transitions are unguarded; ``current_status`` is accepted so
    both providers share one call shape.
    """
    target = _GELATO_EVENTS.get(event_type)
    if target is None:
        return NO_CHANGE
    if target == OrderStatus.SHIPPED:
        return StatusUpdate(new_status=target, new_tracking=_gelato_tracking(order_data))
    return StatusUpdate(new_status=target)


# ── Payment ───────────────────────────────────────────────────────────────


class PaymentAction(str, Enum):
    """What the webhook service should do for a payment event."""

    CONFIRM = "confirm"  # mark paid, confirm fulfillment drafts
    FAIL = "fail"        # mark payment_failed
    IGNORE = "ignore"    # unknown event, or success already processed


PAYMENT_SUCCESS_EVENTS = frozenset({
    "payment.success",
    "checkout.session.completed",
    "payment_intent.succeeded",
})

PAYMENT_FAILURE_EVENTS = frozenset({
    "payment.failed",
    "payment_intent.payment_failed",
})

# A success event is only acted on before payment has been recorded;
# anything else is an at-least-once replay.
PAYABLE_STATUSES = frozenset({
    OrderStatus.DRAFT_CREATED,
    OrderStatus.PENDING,
    OrderStatus.PAYMENT_PENDING,
})


def payment_action(event_type: str, current_status: OrderStatus) -> PaymentAction:
    """Map a payment event to the action to take for an order."""
    if event_type in PAYMENT_SUCCESS_EVENTS:
        if current_status in PAYABLE_STATUSES:
            return PaymentAction.CONFIRM
        return PaymentAction.IGNORE
    if event_type in PAYMENT_FAILURE_EVENTS:
        return PaymentAction.FAIL
    return PaymentAction.IGNORE


def final_payment_status(confirmations: Iterable[bool]) -> OrderStatus:
    """Status after draft confirmation: processing only if every one succeeded."""
    if all(confirmations):
        return OrderStatus.PROCESSING
    return OrderStatus.PAID_PENDING_FULFILLMENT
