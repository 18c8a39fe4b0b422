"""Order persistence: store interface, in-memory store, Postgres store.

Status and tracking are written independently so a webhook that only
changes one field only writes that field. There is no version column:
concurrent writers are last-write-wins and the transition guards are the
only ordering defence.
"""

from __future__ import annotations

import copy
import json
import logging
from datetime import datetime
from typing import Any, Protocol

import psycopg
from psycopg.rows import dict_row

from marketplace.orders.models import Order, OrderStatus, TrackingInfo, utcnow

logger = logging.getLogger(__name__)


class OrderStore(Protocol):
    """Persistence operations the webhook core needs for orders."""

    async def find(self, order_id: str) -> Order | None: ...

    async def find_by_checkout_session(self, session_id: str) -> Order | None: ...

    async def find_by_fulfillment_ref(self, reference_id: str) -> Order | None: ...

    async def update_status(self, order_id: str, status: OrderStatus) -> None: ...

    async def update_tracking(self, order_id: str, tracking: list[TrackingInfo]) -> None: ...

    async def save(self, order: Order) -> None: ...

    async def find_abandoned_drafts(
        self, statuses: frozenset[OrderStatus], older_than: datetime
    ) -> list[Order]: ...


class InMemoryOrderStore:
    """Dict-backed order store for tests and local runs.

    Returns copies so callers cannot mutate stored state without going
    through update_status/update_tracking.
    """

    def __init__(self, orders: list[Order] | None = None):
        self._orders: dict[str, Order] = {}
        for order in orders or []:
            self._orders[order.id] = copy.deepcopy(order)

    async def find(self, order_id: str) -> Order | None:
        order = self._orders.get(order_id)
        return copy.deepcopy(order) if order else None

    async def find_by_checkout_session(self, session_id: str) -> Order | None:
        for order in self._orders.values():
            if order.checkout_session_id == session_id:
                return copy.deepcopy(order)
        return None

    async def find_by_fulfillment_ref(self, reference_id: str) -> Order | None:
        for order in self._orders.values():
            if order.fulfillment_reference_id == reference_id:
                return copy.deepcopy(order)
        return None

    async def update_status(self, order_id: str, status: OrderStatus) -> None:
        order = self._orders.get(order_id)
        if order is None:
            raise KeyError(order_id)
        order.status = status
        order.updated_at = utcnow()

    async def update_tracking(self, order_id: str, tracking: list[TrackingInfo]) -> None:
        order = self._orders.get(order_id)
        if order is None:
            raise KeyError(order_id)
        order.tracking_info = list(tracking)
        order.updated_at = utcnow()

    async def save(self, order: Order) -> None:
        self._orders[order.id] = copy.deepcopy(order)

    async def find_abandoned_drafts(
        self, statuses: frozenset[OrderStatus], older_than: datetime
    ) -> list[Order]:
        return [
            copy.deepcopy(o)
            for o in sorted(self._orders.values(), key=lambda o: o.created_at)
            if o.status in statuses and o.created_at < older_than
        ]


# ── Postgres ──────────────────────────────────────────────────────────────

_ORDER_COLUMNS = (
    "id, user_id, status, total_amount, currency, checkout_session_id, "
    "checkout_provider, fulfillment_reference_id, draft_order_ids, "
    "tracking_info, created_at, updated_at"
)


def _row_to_order(row: dict[str, Any]) -> Order:
    draft_ids = row.get("draft_order_ids") or {}
    tracking = row.get("tracking_info") or []
    if isinstance(draft_ids, str):
        draft_ids = json.loads(draft_ids)
    if isinstance(tracking, str):
        tracking = json.loads(tracking)
    return Order(
        id=row["id"],
        user_id=row.get("user_id") or "",
        status=OrderStatus(row["status"]),
        total_amount=row.get("total_amount") or 0,
        currency=row.get("currency") or "USD",
        checkout_session_id=row.get("checkout_session_id"),
        checkout_provider=row.get("checkout_provider"),
        fulfillment_reference_id=row.get("fulfillment_reference_id"),
        draft_order_ids=dict(draft_ids),
        tracking_info=[TrackingInfo.from_dict(t) for t in tracking],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresOrderStore:
    """Order store backed by the ``orders`` table (psycopg 3, async)."""

    def __init__(self, database_url: str):
        self._database_url = database_url

    async def _connect(self) -> psycopg.AsyncConnection:
        return await psycopg.AsyncConnection.connect(
            self._database_url, autocommit=True, row_factory=dict_row
        )

    async def init_tables(self) -> None:
        """Create the orders table if it doesn't exist.  Idempotent."""
        async with await self._connect() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS orders (
                    id                       TEXT PRIMARY KEY,
                    user_id                  TEXT NOT NULL DEFAULT '',
                    status                   TEXT NOT NULL DEFAULT 'pending',
                    total_amount             INTEGER NOT NULL DEFAULT 0,
                    currency                 TEXT NOT NULL DEFAULT 'USD',
                    checkout_session_id      TEXT,
                    checkout_provider        TEXT,
                    fulfillment_reference_id TEXT,
                    draft_order_ids          JSONB,
                    tracking_info            JSONB,
                    created_at               TIMESTAMPTZ NOT NULL DEFAULT now(),
                    updated_at               TIMESTAMPTZ NOT NULL DEFAULT now()
                )
            """)
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS orders_checkout_session_idx ON orders (checkout_session_id)"
            )
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS orders_fulfillment_ref_idx ON orders (fulfillment_reference_id)"
            )
        logger.info("Orders table initialized")

    async def _find_one(self, where: str, value: str) -> Order | None:
        async with await self._connect() as conn:
            cur = await conn.execute(
                f"SELECT {_ORDER_COLUMNS} FROM orders WHERE {where} = %s LIMIT 1",
                (value,),
            )
            row = await cur.fetchone()
        return _row_to_order(row) if row else None

    async def find(self, order_id: str) -> Order | None:
        return await self._find_one("id", order_id)

    async def find_by_checkout_session(self, session_id: str) -> Order | None:
        return await self._find_one("checkout_session_id", session_id)

    async def find_by_fulfillment_ref(self, reference_id: str) -> Order | None:
        return await self._find_one("fulfillment_reference_id", reference_id)

    async def update_status(self, order_id: str, status: OrderStatus) -> None:
        async with await self._connect() as conn:
            await conn.execute(
                "UPDATE orders SET status = %s, updated_at = now() WHERE id = %s",
                (status.value, order_id),
            )

    async def update_tracking(self, order_id: str, tracking: list[TrackingInfo]) -> None:
        async with await self._connect() as conn:
            await conn.execute(
                "UPDATE orders SET tracking_info = %s, updated_at = now() WHERE id = %s",
                (json.dumps([t.to_dict() for t in tracking]), order_id),
            )

    async def save(self, order: Order) -> None:
        async with await self._connect() as conn:
            await conn.execute(
                f"""INSERT INTO orders ({_ORDER_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET
                        status = EXCLUDED.status,
                        draft_order_ids = EXCLUDED.draft_order_ids,
                        tracking_info = EXCLUDED.tracking_info,
                        updated_at = EXCLUDED.updated_at""",
                (
                    order.id,
                    order.user_id,
                    order.status.value,
                    order.total_amount,
                    order.currency,
                    order.checkout_session_id,
                    order.checkout_provider,
                    order.fulfillment_reference_id,
                    json.dumps(order.draft_order_ids),
                    json.dumps([t.to_dict() for t in order.tracking_info]),
                    order.created_at,
                    order.updated_at,
                ),
            )

    async def find_abandoned_drafts(
        self, statuses: frozenset[OrderStatus], older_than: datetime
    ) -> list[Order]:
        async with await self._connect() as conn:
            cur = await conn.execute(
                f"""SELECT {_ORDER_COLUMNS} FROM orders
                    WHERE status = ANY(%s) AND created_at < %s
                    ORDER BY created_at""",
                ([s.value for s in statuses], older_than),
            )
            rows = await cur.fetchall()
        return [_row_to_order(r) for r in rows]
