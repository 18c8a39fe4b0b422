"""Webhook payload normalizer: provider payloads to one event shape.

Parsing never raises: malformed JSON (or a non-object body) becomes
``event_type="unknown"``. Providers retry webhooks, so a transient parse
problem must not turn into a permanent failure response.

Correlation ids are optional; some provider events are not order-scoped.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

logger = logging.getLogger(__name__)

UNKNOWN_EVENT = "unknown"


@dataclass(frozen=True)
class NormalizedEvent:
    """Provider-independent view of an inbound webhook."""

    provider: str
    event_type: str = UNKNOWN_EVENT
    external_order_id: str | None = None  # merchant-side order id / fulfillment ref
    session_id: str | None = None         # payment checkout session id
    payload: Mapping[str, Any] = field(default_factory=dict)


def _load(provider: str, raw_body: bytes | str) -> dict[str, Any] | None:
    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError):
        logger.warning("Unparseable %s webhook body, treating as unknown event", provider)
        return None
    if not isinstance(payload, dict):
        logger.warning("Non-object %s webhook body, treating as unknown event", provider)
        return None
    return payload


def _dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _str_or_none(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def parse_printful(raw_body: bytes | str) -> NormalizedEvent:
    """Printful: ``{"type": ..., "data": {"order": {"external_id": ...}, "shipment": {...}}}``."""
    payload = _load("printful", raw_body)
    if payload is None:
        return NormalizedEvent(provider="printful")
    data = _dict(payload.get("data"))
    return NormalizedEvent(
        provider="printful",
        event_type=str(payload.get("type") or UNKNOWN_EVENT),
        external_order_id=_str_or_none(_dict(data.get("order")).get("external_id")),
        payload=data,
    )


def parse_gelato(raw_body: bytes | str) -> NormalizedEvent:
    """Gelato: ``{"event": ..., "order": {"orderReferenceId": ..., "shipments": [...]}}``.

    Some Gelato events carry the order fields at the top level.
    """
    payload = _load("gelato", raw_body)
    if payload is None:
        return NormalizedEvent(provider="gelato")
    order_data = _dict(payload.get("order")) or payload
    return NormalizedEvent(
        provider="gelato",
        event_type=str(payload.get("event") or UNKNOWN_EVENT),
        external_order_id=_str_or_none(
            order_data.get("orderReferenceId") or order_data.get("externalId")
        ),
        payload=order_data,
    )


def parse_ping(raw_body: bytes | str) -> NormalizedEvent:
    """PingPay: ``{"type": ..., "data": {"sessionId": ..., "metadata": {"orderId": ...}}}``."""
    payload = _load("ping", raw_body)
    if payload is None:
        return NormalizedEvent(provider="ping")
    data = _dict(payload.get("data"))
    metadata = _dict(data.get("metadata"))
    return NormalizedEvent(
        provider="ping",
        event_type=str(payload.get("type") or payload.get("event") or UNKNOWN_EVENT),
        external_order_id=_str_or_none(metadata.get("orderId") or data.get("orderId")),
        session_id=_str_or_none(data.get("sessionId") or data.get("session_id")),
        payload=data,
    )


def parse_stripe(raw_body: bytes | str) -> NormalizedEvent:
    """Stripe: ``{"type": ..., "data": {"object": {"id": ..., "metadata": {"orderId": ...}}}}``."""
    payload = _load("stripe", raw_body)
    if payload is None:
        return NormalizedEvent(provider="stripe")
    obj = _dict(_dict(payload.get("data")).get("object"))
    event_type = str(payload.get("type") or UNKNOWN_EVENT)
    session_id = _str_or_none(obj.get("id")) if event_type.startswith("checkout.session.") else None
    return NormalizedEvent(
        provider="stripe",
        event_type=event_type,
        external_order_id=_str_or_none(_dict(obj.get("metadata")).get("orderId")),
        session_id=session_id,
        payload=obj,
    )


PARSERS = {
    "printful": parse_printful,
    "gelato": parse_gelato,
    "ping": parse_ping,
    "stripe": parse_stripe,
}
