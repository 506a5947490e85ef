import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pdv.models.common import utcnow, as_utc
from pdv.models.core import CashMovement, CashMovementType, Order, OrderStatus
from pdv.services.billing import money, ZERO

logger = logging.getLogger(__name__)

SALE_CATEGORY = "sale"

CHANNEL_LABELS = {
    "counter": "BALCÃO",
    "kiosk": "TOTEM",
    "dine_in": "MESA",
    "online": "ONLINE",
}


def for_order(db: Session, order_id: str) -> CashMovement | None:
    return db.query(CashMovement).filter(CashMovement.order_id == order_id).first()


def record(db: Session, order: Order) -> CashMovement:
    """One income row per completed order, keyed by order id."""
    if order.status != OrderStatus.COMPLETED:
        raise ValueError(f"order {order.order_number} is not completed")
    existing = for_order(db, order.id)
    if existing is not None:
        return existing

    completed = as_utc(order.completed_at) or utcnow()
    mv = CashMovement(
        type=CashMovementType.INCOME,
        category=SALE_CATEGORY,
        amount=money(order.total),
        payment_method=order.payment_method.value,
        description=f"Pedido {order.order_number} - {CHANNEL_LABELS.get(order.channel.value, order.channel.value)}",
        movement_date=completed.date(),
        order_id=order.id,
    )
    db.add(mv)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return for_order(db, order.id)
    logger.info("cash income %s recorded for order %s", mv.amount, order.order_number)
    return mv


def record_manual(db: Session, kind: CashMovementType, category: str, amount, payment_method: str | None,
                  description: str | None, movement_date: date | None = None) -> CashMovement:
    mv = CashMovement(
        type=kind,
        category=category,
        amount=money(amount),
        payment_method=payment_method,
        description=description,
        movement_date=movement_date or utcnow().date(),
    )
    db.add(mv)
    return mv


def daily_summary(db: Session, day: date) -> dict:
    rows = (
        db.query(CashMovement.type, CashMovement.payment_method, func.coalesce(func.sum(CashMovement.amount), 0))
        .filter(CashMovement.movement_date == day, CashMovement.deleted_at.is_(None))
        .group_by(CashMovement.type, CashMovement.payment_method)
        .all()
    )
    income, expense = ZERO, ZERO
    by_method: dict[str, float] = {}
    for kind, method, amount in rows:
        amount = money(Decimal(str(amount)))
        if kind == CashMovementType.INCOME:
            income += amount
            key = method or "unknown"
            by_method[key] = float(money(Decimal(str(by_method.get(key, 0))) + amount))
        else:
            expense += amount
    return {
        "date": day.isoformat(),
        "income": float(income),
        "expense": float(expense),
        "balance": float(money(income - expense)),
        "income_by_payment_method": by_method,
    }
