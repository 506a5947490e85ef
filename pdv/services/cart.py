"""Channel-local cart.

Nothing here touches the database: a ``Cart`` lives for one UI session and is
only turned into ``OrderItem`` rows at checkout.
"""
import json
from dataclasses import dataclass, field
from decimal import Decimal

from pdv.services.billing import money, ZERO


@dataclass(frozen=True)
class Customization:
    id: str
    name: str
    price_adjustment: Decimal = ZERO

    def as_key(self) -> dict:
        return {"id": self.id, "name": self.name, "price_adjustment": str(money(self.price_adjustment))}


@dataclass(frozen=True)
class CatalogItem:
    id: str
    name: str
    price: Decimal
    promotional_price: Decimal | None = None

    @property
    def base_price(self) -> Decimal:
        return money(self.promotional_price if self.promotional_price is not None else self.price)


@dataclass
class CartItem:
    menu_item_id: str
    name: str
    base_price: Decimal
    customizations: tuple[Customization, ...] = ()
    quantity: int = 1

    @property
    def unit_price(self) -> Decimal:
        return money(self.base_price + sum((c.price_adjustment for c in self.customizations), ZERO))

    @property
    def total_price(self) -> Decimal:
        return money(self.unit_price * self.quantity)

    @property
    def customizations_key(self) -> str:
        return json.dumps([c.as_key() for c in self.customizations], sort_keys=True)

    @property
    def customizations_text(self) -> str | None:
        return ", ".join(c.name for c in self.customizations) or None


@dataclass
class Cart:
    items: list[CartItem] = field(default_factory=list)

    def add_item(self, menu_item: CatalogItem, customizations=(), quantity: int = 1) -> CartItem:
        customizations = tuple(customizations)
        candidate = CartItem(
            menu_item_id=menu_item.id,
            name=menu_item.name,
            base_price=menu_item.base_price,
            customizations=customizations,
            quantity=quantity,
        )
        for existing in self.items:
            if (existing.menu_item_id == candidate.menu_item_id
                    and existing.customizations_key == candidate.customizations_key):
                existing.quantity += quantity
                return existing
        self.items.append(candidate)
        return candidate

    def update_quantity(self, index: int, delta: int) -> CartItem | None:
        item = self.items[index]
        item.quantity += delta
        if item.quantity <= 0:
            self.items.pop(index)
            return None
        return item

    def remove(self, index: int) -> CartItem:
        return self.items.pop(index)

    def clear(self) -> None:
        self.items.clear()

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def subtotal(self) -> Decimal:
        return money(sum((i.total_price for i in self.items), ZERO))

    def order_lines(self) -> list[dict]:
        """Snapshot rows for OrderItem inserts."""
        return [
            {
                "menu_item_id": i.menu_item_id,
                "name": i.name,
                "quantity": i.quantity,
                "unit_price": i.unit_price,
                "total_price": i.total_price,
                "notes": i.customizations_text,
            }
            for i in self.items
        ]
