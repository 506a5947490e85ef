from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy.orm import Session
from pdv.models.core import Order, OrderItem, RestaurantSettings

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def money(x) -> Decimal:
    """Quantize to cents. Floats go through str() to avoid binary artifacts."""
    if x is None:
        return ZERO
    if not isinstance(x, Decimal):
        x = Decimal(str(x))
    return x.quantize(CENT, rounding=ROUND_HALF_UP)


def restaurant_settings(db: Session) -> RestaurantSettings:
    """The single settings row; a transient default when none is configured yet."""
    rs = db.query(RestaurantSettings).first()
    if rs is None:
        rs = RestaurantSettings(
            name="Restaurante",
            service_fee_percent=Decimal("10.00"),
            loyalty_enabled=False,
            loyalty_points_per_real=Decimal("1"),
            loyalty_redemption_value=Decimal("0.01"),
        )
    return rs


def service_fee_for(subtotal, rate) -> Decimal:
    return money(money(subtotal) * Decimal(str(rate or 0)) / Decimal("100"))


def order_total(subtotal, discount, service_fee, delivery_fee) -> Decimal:
    return money(money(subtotal) - money(discount) + money(service_fee) + money(delivery_fee))


def live_items(db: Session, order_id: str) -> list[OrderItem]:
    return (
        db.query(OrderItem)
        .filter(OrderItem.order_id == order_id, OrderItem.deleted_at.is_(None))
        .order_by(OrderItem.created_at.asc(), OrderItem.id.asc())
        .all()
    )


def recompute_totals(db: Session, order: Order) -> Order:
    """Rederive subtotal, service fee and total from the order's current items.

    Pure function of (items, service_fee_rate, discount, delivery_fee): running
    it twice on the same item set yields the same numbers.
    """
    db.flush()
    subtotal = sum((money(i.total_price) for i in live_items(db, order.id)), ZERO)
    order.subtotal = money(subtotal)
    order.service_fee = service_fee_for(order.subtotal, order.service_fee_rate)
    order.total = order_total(order.subtotal, order.discount, order.service_fee, order.delivery_fee)
    return order


def totals_dict(order: Order) -> dict:
    return {
        "subtotal": float(money(order.subtotal)),
        "service_fee": float(money(order.service_fee)),
        "delivery_fee": float(money(order.delivery_fee)),
        "discount": float(money(order.discount)),
        "total": float(money(order.total)),
    }
