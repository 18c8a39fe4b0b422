"""Catalog product shapes used by the product sync."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from marketplace.orders.models import utcnow


@dataclass(frozen=True)
class ProviderVariant:
    """A variant as reported by a fulfillment provider."""

    id: str
    name: str
    sku: str = ""
    price: int = 0  # minor units
    currency: str = "USD"
    in_stock: bool = True


@dataclass(frozen=True)
class ProviderProduct:
    """A product as reported by a fulfillment provider."""

    id: str
    name: str
    description: str = ""
    image_url: str = ""
    variants: tuple[ProviderVariant, ...] = ()


@dataclass
class Product:
    """Local catalog product, keyed by provider + provider product id."""

    id: str
    fulfillment_provider: str
    external_id: str
    name: str
    description: str = ""
    image_url: str = ""
    variants: list[ProviderVariant] = field(default_factory=list)
    synced_at: datetime = field(default_factory=utcnow)

    @staticmethod
    def from_provider(provider: str, product: ProviderProduct, synced_at: datetime) -> Product:
        if not product.name:
            raise ValueError(f"{provider} product {product.id} has no name")
        return Product(
            id=f"{provider}-{product.id}",
            fulfillment_provider=provider,
            external_id=product.id,
            name=product.name,
            description=product.description,
            image_url=product.image_url,
            variants=list(product.variants),
            synced_at=synced_at,
        )
