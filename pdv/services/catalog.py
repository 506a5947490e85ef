from sqlalchemy.orm import Session

from pdv.errors import CheckoutValidationError
from pdv.models.core import MenuItem, ItemVariation
from pdv.services.cart import Cart, CatalogItem, Customization


def get_menu_item(db: Session, menu_item_id: str) -> MenuItem | None:
    item = db.get(MenuItem, menu_item_id)
    if item is None or item.deleted_at is not None:
        return None
    return item


def get_variations(db: Session, menu_item_id: str) -> list[ItemVariation]:
    return (
        db.query(ItemVariation)
        .filter(
            ItemVariation.menu_item_id == menu_item_id,
            ItemVariation.is_active.is_(True),
            ItemVariation.deleted_at.is_(None),
        )
        .order_by(ItemVariation.name.asc())
        .all()
    )


def build_cart(db: Session, selections) -> Cart:
    """Price client selections against the catalog.

    ``selections`` is an iterable of objects with ``menu_item_id``,
    ``variation_ids`` and ``quantity`` (the ``CartLineIn`` schema).
    Each selection goes through ``Cart.add_item`` so identical lines merge.
    """
    cart = Cart()
    for sel in selections:
        item = get_menu_item(db, sel.menu_item_id)
        if item is None or not item.is_available:
            raise CheckoutValidationError(f"menu item {sel.menu_item_id} is not available")
        if sel.quantity < 1:
            raise CheckoutValidationError("quantity must be at least 1")

        by_id = {v.id: v for v in get_variations(db, item.id)}
        customizations = []
        for vid in sel.variation_ids:
            v = by_id.get(vid)
            if v is None:
                raise CheckoutValidationError(f"variation {vid} does not belong to {item.name}")
            customizations.append(Customization(id=v.id, name=v.name, price_adjustment=v.price_adjustment))

        cart.add_item(
            CatalogItem(id=item.id, name=item.name, price=item.price, promotional_price=item.promotional_price),
            customizations,
            quantity=sel.quantity,
        )
    return cart
