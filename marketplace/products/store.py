"""Product persistence for the sync job: upsert + prune."""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime
from typing import Protocol

import psycopg

from marketplace.products.models import Product


class ProductStore(Protocol):
    async def upsert(self, product: Product) -> None: ...

    async def prune(self, provider: str, synced_before: datetime) -> int: ...


class InMemoryProductStore:
    def __init__(self) -> None:
        self.products: dict[str, Product] = {}

    async def upsert(self, product: Product) -> None:
        self.products[product.id] = product

    async def prune(self, provider: str, synced_before: datetime) -> int:
        """Delete a provider's products not seen since ``synced_before``."""
        stale = [
            pid
            for pid, p in self.products.items()
            if p.fulfillment_provider == provider and p.synced_at < synced_before
        ]
        for pid in stale:
            del self.products[pid]
        return len(stale)


class PostgresProductStore:
    """Product store backed by the ``products`` table (variants as JSONB)."""

    def __init__(self, database_url: str):
        self._database_url = database_url

    async def _connect(self) -> psycopg.AsyncConnection:
        return await psycopg.AsyncConnection.connect(self._database_url, autocommit=True)

    async def init_tables(self) -> None:
        """Create the products table if it doesn't exist.  Idempotent."""
        async with await self._connect() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS products (
                    id                   TEXT PRIMARY KEY,
                    fulfillment_provider TEXT NOT NULL,
                    external_id          TEXT NOT NULL,
                    name                 TEXT NOT NULL,
                    description          TEXT NOT NULL DEFAULT '',
                    image_url            TEXT NOT NULL DEFAULT '',
                    variants             JSONB NOT NULL DEFAULT '[]',
                    synced_at            TIMESTAMPTZ NOT NULL DEFAULT now()
                )
            """)

    async def upsert(self, product: Product) -> None:
        async with await self._connect() as conn:
            await conn.execute(
                """INSERT INTO products
                       (id, fulfillment_provider, external_id, name, description,
                        image_url, variants, synced_at)
                   VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                   ON CONFLICT (id) DO UPDATE SET
                       name = EXCLUDED.name,
                       description = EXCLUDED.description,
                       image_url = EXCLUDED.image_url,
                       variants = EXCLUDED.variants,
                       synced_at = EXCLUDED.synced_at""",
                (
                    product.id,
                    product.fulfillment_provider,
                    product.external_id,
                    product.name,
                    product.description,
                    product.image_url,
                    json.dumps([asdict(v) for v in product.variants]),
                    product.synced_at,
                ),
            )

    async def prune(self, provider: str, synced_before: datetime) -> int:
        async with await self._connect() as conn:
            cur = await conn.execute(
                "DELETE FROM products WHERE fulfillment_provider = %s AND synced_at < %s",
                (provider, synced_before),
            )
            return cur.rowcount
