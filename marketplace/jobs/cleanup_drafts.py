"""Cancel provider drafts of orders that were never paid.

A checkout creates draft orders at each fulfillment provider before payment.
When the buyer walks away the drafts sit at the provider indefinitely; this
job cancels them and terminalizes the local order.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from marketplace.orders.models import Order, OrderStatus, utcnow
from marketplace.orders.store import OrderStore
from marketplace.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

ABANDONABLE_STATUSES = frozenset({OrderStatus.DRAFT_CREATED, OrderStatus.PAYMENT_PENDING})

DEFAULT_MAX_AGE_HOURS = 24


async def _cancel_drafts(order: Order, registry: ProviderRegistry) -> bool:
    all_cancelled = True
    for provider_name, draft_id in order.draft_order_ids.items():
        client = registry.get(provider_name)
        if client is None:
            logger.error("Order %s: provider %s not configured, draft %s left open",
                         order.id, provider_name, draft_id)
            all_cancelled = False
            continue
        try:
            await client.cancel_order(draft_id)
        except Exception as e:
            logger.error("Order %s: failed to cancel %s draft %s: %s",
                         order.id, provider_name, draft_id, e)
            all_cancelled = False
    return all_cancelled


async def cleanup_abandoned_drafts(
    store: OrderStore,
    registry: ProviderRegistry,
    max_age_hours: int = DEFAULT_MAX_AGE_HOURS,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Cancel drafts of unpaid orders older than ``max_age_hours``.

    An order is marked cancelled only when every one of its drafts was
    cancelled; otherwise it is left as is and picked up by the next run.

    Returns:
        {"totalProcessed": int, "cancelled": int, "failed": int}
    """
    cutoff = (now or utcnow()) - timedelta(hours=max_age_hours)
    orders = await store.find_abandoned_drafts(ABANDONABLE_STATUSES, older_than=cutoff)

    cancelled = 0
    failed = 0
    for order in orders:
        try:
            ok = await _cancel_drafts(order, registry)
            if ok:
                await store.update_status(order.id, OrderStatus.CANCELLED)
        except Exception:
            logger.exception("Order %s: draft cleanup failed", order.id)
            ok = False
        if ok:
            cancelled += 1
        else:
            failed += 1

    logger.info("Draft cleanup: %d processed, %d cancelled, %d failed",
                len(orders), cancelled, failed)
    return {"totalProcessed": len(orders), "cancelled": cancelled, "failed": failed}
