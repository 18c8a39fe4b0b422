"""Tests for the order status transition engine.

Tests:
- Printful table: guarded events fire only from their allowed states
- Printful shipment_sent replaces tracking (method defaults to "Standard")
- Gelato table: both event spellings, tracking per shipment
- Unknown events are a no-op from every state
- Payment guard and final status after draft confirmation
"""

from __future__ import annotations

from hypothesis import given, settings
from hypothesis import strategies as st

from marketplace.orders.models import OrderStatus, TrackingInfo
from marketplace.orders.transitions import (
    GELATO_EVENTS,
    NO_CHANGE,
    PAYABLE_STATUSES,
    PAYMENT_FAILURE_EVENTS,
    PAYMENT_SUCCESS_EVENTS,
    PRINTFUL_EVENTS,
    PaymentAction,
    StatusUpdate,
    compute_gelato_update,
    compute_printful_update,
    final_payment_status,
    payment_action,
)

statuses = st.sampled_from(list(OrderStatus))


# ── Printful ──────────────────────────────────────────────────────────────


class TestPrintfulGuards:
    """order_created and the remove-hold events are state-guarded."""

    @given(statuses)
    @settings(max_examples=50)
    def test_order_created_only_from_paid_states(self, status):
        update = compute_printful_update("order_created", {}, status)
        if status in (OrderStatus.PAID, OrderStatus.PAID_PENDING_FULFILLMENT):
            assert update == StatusUpdate(new_status=OrderStatus.PROCESSING)
        else:
            assert update.is_noop

    @given(st.sampled_from(["shipment_remove_hold", "order_remove_hold"]), statuses)
    @settings(max_examples=50)
    def test_remove_hold_only_from_on_hold(self, event, status):
        update = compute_printful_update(event, {}, status)
        if status == OrderStatus.ON_HOLD:
            assert update.new_status == OrderStatus.PROCESSING
        else:
            assert update.is_noop

    def test_remove_hold_does_not_pull_shipped_back(self):
        assert compute_printful_update("order_remove_hold", {}, OrderStatus.SHIPPED) is NO_CHANGE


class TestPrintfulUnguarded:
    """Provider-authoritative events overwrite whatever the status is."""

    EXPECTED = {
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

    @given(st.sampled_from(sorted(EXPECTED)), statuses)
    @settings(max_examples=100)
    def test_status_from_any_state(self, event, status):
        update = compute_printful_update(event, {}, status)
        assert update.new_status == self.EXPECTED[event]
        assert update.new_tracking is None

    def test_shipment_sent_replaces_tracking(self):
        data = {
            "shipment": {
                "tracking_number": "1Z999",
                "tracking_url": "https://track.example/1Z999",
                "service": "FedEx Ground",
            }
        }
        update = compute_printful_update("shipment_sent", data, OrderStatus.PROCESSING)
        assert update.new_status == OrderStatus.SHIPPED
        assert update.new_tracking == [
            TrackingInfo(
                tracking_code="1Z999",
                tracking_url="https://track.example/1Z999",
                shipment_method_name="FedEx Ground",
            )
        ]

    def test_shipment_sent_method_defaults_to_standard(self):
        data = {"shipment": {"tracking_number": "ABC", "tracking_url": "https://t/ABC"}}
        update = compute_printful_update("shipment_sent", data, OrderStatus.PROCESSING)
        assert update.new_tracking[0].shipment_method_name == "Standard"

    def test_shipment_sent_without_shipment_keeps_tracking(self):
        update = compute_printful_update("shipment_sent", {}, OrderStatus.PROCESSING)
        assert update.new_status == OrderStatus.SHIPPED
        assert update.new_tracking is None


# ── Gelato ────────────────────────────────────────────────────────────────


class TestGelatoTransitions:
    """Gelato events, underscore and colon spellings."""

    def test_both_spellings_map_identically(self):
        pairs = [
            ("shipment_created", "shipment:created"),
            ("order_cancelled", "order:cancelled"),
            ("delivered", "order:delivered"),
            ("order_created", "order:created"),
        ]
        for underscore, colon in pairs:
            a = compute_gelato_update(underscore, {}, OrderStatus.PROCESSING)
            b = compute_gelato_update(colon, {}, OrderStatus.PROCESSING)
            assert a.new_status == b.new_status
            assert a.new_status is not None

    def test_shipment_created_tracking_per_shipment(self):
        order_data = {
            "shipments": [
                {
                    "trackingCode": "TC1",
                    "trackingUrl": "https://t/TC1",
                    "shipmentMethodName": "Express",
                    "shipmentMethodUid": "express_uid",
                    "fulfillmentCountry": "DE",
                },
                {"trackingCode": "TC2", "trackingUrl": "https://t/TC2"},
            ]
        }
        update = compute_gelato_update("shipment:created", order_data, OrderStatus.PROCESSING)
        assert update.new_status == OrderStatus.SHIPPED
        assert [t.tracking_code for t in update.new_tracking] == ["TC1", "TC2"]
        assert update.new_tracking[0].fulfillment_country == "DE"
        assert update.new_tracking[1].shipment_method_name == "Standard"

    @given(st.sampled_from(sorted(GELATO_EVENTS)), statuses)
    @settings(max_examples=50)
    def test_unguarded(self, event, status):
        assert compute_gelato_update(event, {}, status).new_status is not None


# ── Totality ──────────────────────────────────────────────────────────────


class TestUnknownEvents:
    """Unrecognized events never raise and never change anything."""

    @given(st.text(max_size=40).filter(lambda e: e not in PRINTFUL_EVENTS), statuses)
    @settings(max_examples=100)
    def test_printful_unknown_is_noop(self, event, status):
        assert compute_printful_update(event, {"shipment": {}}, status).is_noop

    @given(st.text(max_size=40).filter(lambda e: e not in GELATO_EVENTS), statuses)
    @settings(max_examples=100)
    def test_gelato_unknown_is_noop(self, event, status):
        assert compute_gelato_update(event, {}, status).is_noop

    def test_none_payload_is_tolerated(self):
        assert compute_printful_update("shipment_sent", None, OrderStatus.PROCESSING).new_tracking is None
        assert compute_gelato_update("shipment_created", None, OrderStatus.PROCESSING).new_tracking is None


# ── Payment ───────────────────────────────────────────────────────────────


class TestPaymentAction:
    """Success is acted on once; failure always records payment_failed."""

    @given(st.sampled_from(sorted(PAYMENT_SUCCESS_EVENTS)), statuses)
    @settings(max_examples=100)
    def test_success_guard(self, event, status):
        expected = PaymentAction.CONFIRM if status in PAYABLE_STATUSES else PaymentAction.IGNORE
        assert payment_action(event, status) == expected

    @given(st.sampled_from(sorted(PAYMENT_FAILURE_EVENTS)), statuses)
    @settings(max_examples=50)
    def test_failure_from_any_state(self, event, status):
        assert payment_action(event, status) == PaymentAction.FAIL

    def test_already_paid_is_ignored(self):
        for status in (OrderStatus.PAID, OrderStatus.PROCESSING, OrderStatus.PAID_PENDING_FULFILLMENT):
            assert payment_action("payment.success", status) == PaymentAction.IGNORE

    def test_unknown_event_ignored(self):
        assert payment_action("charge.refunded", OrderStatus.PENDING) == PaymentAction.IGNORE


class TestFinalPaymentStatus:
    @given(st.lists(st.booleans(), max_size=6))
    def test_processing_iff_all_succeeded(self, results):
        expected = OrderStatus.PROCESSING if all(results) else OrderStatus.PAID_PENDING_FULFILLMENT
        assert final_payment_status(results) == expected

    def test_accepts_generator(self):
        assert final_payment_status(r for r in [True, False]) == OrderStatus.PAID_PENDING_FULFILLMENT
