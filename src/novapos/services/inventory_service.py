from __future__ import annotations

from novapos.domain.errors import NotFoundError, ValidationError
from novapos.domain.models import Product


class InventoryService:
    def __init__(self, store):
        self.store = store

    def list_products(self) -> list[Product]:
        return [p for p in self.store.get_products() if p.active]

    def search(self, text: str) -> list[Product]:
        needle = (text or "").strip().lower()
        if not needle:
            return self.list_products()
        return [
            p
            for p in self.list_products()
            if needle in p.name.lower() or needle in p.category.lower() or needle in p.id.lower()
        ]

    def top_critical_stock(self, limit: int = 10) -> list[Product]:
        """Active products at or below their minimum, most short first."""
        low = [p for p in self.list_products() if p.stock <= p.min_stock]
        low.sort(key=lambda p: p.stock - p.min_stock)
        return low[:limit]

    def get_product_by_id(self, product_id: str) -> Product:
        p = self.store.get_product((product_id or "").strip())
        if not p:
            raise NotFoundError("Product not found.")
        return p

    def save_product(
        self,
        product_id: str,
        name: str,
        category: str,
        cost: float,
        price: float,
        stock: int,
        min_stock: int,
        active: bool = True,
    ) -> Product:
        product_id = (product_id or "").strip()
        name = (name or "").strip()
        if not product_id or not name:
            raise ValidationError("Code and Name are required.")
        if min_stock < 0:
            raise ValidationError("Min stock must be >= 0.")
        if cost < 0:
            raise ValidationError("Cost must be >= 0.")
        if price < 0:
            raise ValidationError("Price must be >= 0.")
        product = Product(
            id=product_id,
            name=name,
            category=(category or "").strip() or "General",
            cost_usd=float(cost),
            price_usd=float(price),
            stock=int(stock),
            min_stock=int(min_stock),
            active=bool(active),
        )
        self.store.upsert_product(product)
        return product
