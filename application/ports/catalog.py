"""Catalog port: read-only product lookups used when placing an order."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class ProductInfo:
    product_id: str
    title: str
    price: Decimal
    is_digital: bool
    is_purchasable: bool = True
    content_key: Optional[str] = None


@runtime_checkable
class CatalogPort(Protocol):
    async def get_product(self, product_id: str) -> Optional[ProductInfo]:
        """Return the product, or None when the catalog does not know it."""
        ...
