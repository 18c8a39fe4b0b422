"""Order data model.

An order is created at checkout-session creation and afterwards mutated
only by webhook processing (status/tracking) and the abandoned-draft
cleanup job. Orders are never deleted, only terminalized.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class OrderStatus(str, Enum):
    """Closed set of order lifecycle states."""

    PENDING = "pending"
    DRAFT_CREATED = "draft_created"
    PAYMENT_PENDING = "payment_pending"
    PAID = "paid"
    PAID_PENDING_FULFILLMENT = "paid_pending_fulfillment"  # fulfillment confirmation partially failed
    PROCESSING = "processing"
    ON_HOLD = "on_hold"
    PRINTING = "printing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    RETURNED = "returned"
    PARTIALLY_CANCELLED = "partially_cancelled"
    CANCELLED = "cancelled"
    PAYMENT_FAILED = "payment_failed"
    FAILED = "failed"
    REFUNDED = "refunded"


# Draft-order key for orders fulfilled by hand (no provider call)
MANUAL_PROVIDER = "manual"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TrackingInfo:
    """One shipment tracking record."""

    tracking_code: str = ""
    tracking_url: str = ""
    shipment_method_name: str = "Standard"
    shipment_method_uid: str | None = None
    fulfillment_country: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "trackingCode": self.tracking_code,
            "trackingUrl": self.tracking_url,
            "shipmentMethodName": self.shipment_method_name,
            "shipmentMethodUid": self.shipment_method_uid,
            "fulfillmentCountry": self.fulfillment_country,
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> TrackingInfo:
        return TrackingInfo(
            tracking_code=d.get("trackingCode") or "",
            tracking_url=d.get("trackingUrl") or "",
            shipment_method_name=d.get("shipmentMethodName") or "Standard",
            shipment_method_uid=d.get("shipmentMethodUid"),
            fulfillment_country=d.get("fulfillmentCountry"),
        )


@dataclass
class Order:
    """A marketplace order as seen by webhook reconciliation."""

    id: str
    user_id: str = ""
    status: OrderStatus = OrderStatus.PENDING
    total_amount: int = 0  # minor units
    currency: str = "USD"
    checkout_session_id: str | None = None
    checkout_provider: str | None = None
    fulfillment_reference_id: str | None = None
    draft_order_ids: dict[str, str] = field(default_factory=dict)
    tracking_info: list[TrackingInfo] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

