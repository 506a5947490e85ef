import logging
from decimal import Decimal, ROUND_FLOOR

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pdv.errors import LoyaltyError
from pdv.models.core import (
    Customer, LoyaltyTransaction, LoyaltyTxnType, Order, OrderStatus,
)
from pdv.services.billing import money, restaurant_settings

logger = logging.getLogger(__name__)


def points_for(total, points_per_real) -> int:
    raw = money(total) * Decimal(str(points_per_real or 0))
    return int(raw.to_integral_value(rounding=ROUND_FLOOR))


def redemption_value(db: Session, points: int) -> Decimal:
    rs = restaurant_settings(db)
    return money(Decimal(points) * Decimal(str(rs.loyalty_redemption_value or 0)))


def _existing(db: Session, order_id: str, kind: LoyaltyTxnType) -> LoyaltyTransaction | None:
    return (
        db.query(LoyaltyTransaction)
        .filter(LoyaltyTransaction.order_id == order_id, LoyaltyTransaction.type == kind)
        .first()
    )


def accrue(db: Session, order: Order) -> LoyaltyTransaction | None:
    """Credit points for a completed order.

    The earn row and the balance increment commit together. Returns the
    existing row when the order was already credited, ``None`` when the
    order does not qualify.
    """
    rs = restaurant_settings(db)
    if not rs.loyalty_enabled or order.status != OrderStatus.COMPLETED or not order.customer_id:
        return None
    customer = db.get(Customer, order.customer_id)
    if customer is None or not customer.cpf:
        return None

    done = _existing(db, order.id, LoyaltyTxnType.EARN)
    if done is not None:
        return done

    points = points_for(order.total, rs.loyalty_points_per_real)
    txn = LoyaltyTransaction(
        customer_id=customer.id,
        order_id=order.id,
        type=LoyaltyTxnType.EARN,
        points=points,
        description=f"Compra no pedido {order.order_number}",
    )
    db.add(txn)
    db.execute(
        update(Customer)
        .where(Customer.id == customer.id)
        .values(loyalty_points=Customer.loyalty_points + points)
    )
    try:
        db.commit()
    except IntegrityError:
        # another worker credited this order first
        db.rollback()
        return _existing(db, order.id, LoyaltyTxnType.EARN)
    db.refresh(customer)
    logger.info("accrued %s points to customer %s for order %s", points, customer.id, order.order_number)
    return txn


def redeem(db: Session, customer: Customer, points: int, order: Order | None = None,
           description: str | None = None) -> LoyaltyTransaction:
    """Debit points; the negative row and the balance decrement commit together."""
    if points <= 0:
        raise LoyaltyError("points to redeem must be positive")

    if order is not None:
        done = _existing(db, order.id, LoyaltyTxnType.REDEEM)
        if done is not None:
            return done

    txn = LoyaltyTransaction(
        customer_id=customer.id,
        order_id=order.id if order is not None else None,
        type=LoyaltyTxnType.REDEEM,
        points=-points,
        description=description or (
            f"Desconto no pedido {order.order_number}" if order is not None else "Resgate de pontos"
        ),
    )
    db.add(txn)
    res = db.execute(
        update(Customer)
        .where(Customer.id == customer.id, Customer.loyalty_points >= points)
        .values(loyalty_points=Customer.loyalty_points - points)
    )
    if res.rowcount != 1:
        db.rollback()
        raise LoyaltyError("insufficient loyalty points")
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        if order is not None:
            return _existing(db, order.id, LoyaltyTxnType.REDEEM)
        raise
    db.refresh(customer)
    logger.info("redeemed %s points from customer %s", points, customer.id)
    return txn
