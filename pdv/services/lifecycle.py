"""Order lifecycle: creation per channel, status transitions, tab editing.

Everything here stops at the durability boundary: an Order and its items are
committed together, and the caller then hands the order to
``pdv.services.effects`` for the ledger, print and courier steps.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from pdv.errors import CheckoutValidationError, InvalidTransition, OrderPersistenceError
from pdv.models.common import utcnow
from pdv.models.core import (
    Customer, DeliveryType, DiningTable, Order, OrderItem, OrderStatus, PaymentMethod,
    SalesChannel, TableStatus,
)
from pdv.services import effects
from pdv.services.billing import (
    ZERO, live_items, money, order_total, recompute_totals, restaurant_settings, service_fee_for,
)
from pdv.services.cart import Cart
from pdv.services.catalog import build_cart
from pdv.services.customers import ResolvedCustomer, lookup, resolve
from pdv.services.delivery import fee_for_distance
from pdv.services.loyalty import redemption_value
from pdv.util.audit import audit

logger = logging.getLogger(__name__)

PREFIXES = {
    SalesChannel.COUNTER: "BAL",
    SalesChannel.KIOSK: "TOTEM",
    SalesChannel.DINE_IN: "MESA",
    SalesChannel.ONLINE: "PED",
}

S = OrderStatus
ALLOWED = {
    S.NEW: {S.CONFIRMED, S.PREPARING, S.READY_FOR_PAYMENT, S.CANCELED},
    S.CONFIRMED: {S.PREPARING, S.READY_FOR_PAYMENT, S.CANCELED},
    S.PREPARING: {S.READY, S.READY_FOR_PAYMENT, S.COMPLETED, S.CANCELED},
    S.READY: {S.READY_FOR_PAYMENT, S.COMPLETED, S.CANCELED},
    S.READY_FOR_PAYMENT: {S.COMPLETED, S.CANCELED},
    S.COMPLETED: set(),
    S.CANCELED: set(),
}

# statuses in which a running tab still accepts item changes
EDITABLE = {S.NEW, S.CONFIRMED, S.PREPARING, S.READY}

NUMBER_ATTEMPTS = 3
KIOSK_DEFAULT_NAME = "Cliente Totem"


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED[current]


def transition(db: Session, order: Order, target: OrderStatus, actor: str | None = None,
               reason: str | None = None) -> Order:
    """Validate and apply a status move plus its audit row. Does not commit."""
    current = order.status
    if not can_transition(current, target):
        raise InvalidTransition(current, target)
    order.status = target
    now = utcnow()
    if target == S.COMPLETED:
        order.completed_at = now
        order.closed_by_user_id = actor or order.closed_by_user_id
    elif target == S.CANCELED:
        order.canceled_at = now
        order.cancel_reason = reason
    audit(db, actor, "Order", order.id, "STATUS",
          before={"status": current.value}, after={"status": target.value}, reason=reason)
    return order


# --- pricing ----------------------------------------------------------------

@dataclass
class Quote:
    subtotal: Decimal
    service_fee_rate: Decimal
    service_fee: Decimal
    delivery_fee: Decimal
    discount: Decimal
    redeemed_points: int
    total: Decimal

    def as_dict(self) -> dict:
        return {
            "subtotal": float(self.subtotal),
            "service_fee_rate": float(self.service_fee_rate),
            "service_fee": float(self.service_fee),
            "delivery_fee": float(self.delivery_fee),
            "discount": float(self.discount),
            "redeemed_points": self.redeemed_points,
            "total": float(self.total),
        }


def quote(db: Session, cart: Cart, *, include_service_fee: bool = False,
          delivery_type: DeliveryType = DeliveryType.COUNTER, distance_km: float | None = None,
          discount=None, redeem_points: int = 0, customer: Customer | None = None,
          customer_cpf: str | None = None) -> Quote:
    """Price a cart without writing anything. Raises CheckoutValidationError.

    ``customer_cpf`` is a CPF supplied with the sale for a customer whose
    record does not carry one yet.
    """
    rs = restaurant_settings(db)
    subtotal = cart.subtotal
    rate = money(rs.service_fee_percent) if include_service_fee else ZERO
    service_fee = service_fee_for(subtotal, rate)
    delivery_fee = ZERO
    if delivery_type == DeliveryType.DELIVERY and distance_km is not None:
        delivery_fee = fee_for_distance(db, distance_km)

    explicit = money(discount)
    if explicit < 0:
        raise CheckoutValidationError("discount cannot be negative")
    redeemed = ZERO
    if redeem_points:
        if redeem_points < 0:
            raise CheckoutValidationError("points to redeem must be positive")
        if not rs.loyalty_enabled:
            raise CheckoutValidationError("loyalty program is disabled")
        if customer is None or not (customer.cpf or (customer_cpf or "").strip()):
            raise CheckoutValidationError("points can only be redeemed by an identified customer with CPF")
        if customer.loyalty_points < redeem_points:
            raise CheckoutValidationError("insufficient loyalty points")
        redeemed = redemption_value(db, redeem_points)

    total_discount = money(explicit + redeemed)
    if total_discount > money(subtotal + service_fee + delivery_fee):
        raise CheckoutValidationError("discount exceeds order amount")
    return Quote(
        subtotal=subtotal,
        service_fee_rate=rate,
        service_fee=service_fee,
        delivery_fee=delivery_fee,
        discount=total_discount,
        redeemed_points=redeem_points or 0,
        total=order_total(subtotal, total_discount, service_fee, delivery_fee),
    )


# --- persistence ------------------------------------------------------------

def _next_sequence(db: Session) -> int:
    return int(db.query(func.coalesce(func.max(Order.sequential_number), 0)).scalar() or 0) + 1


def order_number_for(channel: SalesChannel, sequence: int) -> str:
    return f"{PREFIXES[channel]}-{sequence:06d}"


def persist_order(db: Session, *, channel: SalesChannel, delivery_type: DeliveryType, status: OrderStatus,
                  cart: Cart | None, q: Quote | None, payment_method: PaymentMethod,
                  resolved: ResolvedCustomer | None = None, customer_name: str | None = None,
                  customer_phone: str | None = None, table_id: str | None = None,
                  motoboy_id: str | None = None, notes: str | None = None, actor: str | None = None,
                  owed: tuple[str, ...] = (), before_commit=None) -> Order:
    """Insert Order + OrderItems in one commit.

    Number allocation is ``max + 1`` guarded by unique constraints; a
    collision rolls back and retries. Any other write failure surfaces as a
    retryable ``OrderPersistenceError``.
    """
    customer = resolved.customer if resolved else None
    lines = cart.order_lines() if cart is not None else []
    for attempt in range(1, NUMBER_ATTEMPTS + 1):
        seq = _next_sequence(db)
        o = Order(
            order_number=order_number_for(channel, seq),
            sequential_number=seq,
            channel=channel,
            delivery_type=delivery_type,
            status=status,
            subtotal=q.subtotal if q else ZERO,
            service_fee_rate=q.service_fee_rate if q else ZERO,
            service_fee=q.service_fee if q else ZERO,
            delivery_fee=q.delivery_fee if q else ZERO,
            discount=q.discount if q else ZERO,
            redeemed_points=q.redeemed_points if q else 0,
            total=q.total if q else ZERO,
            payment_method=payment_method,
            customer_id=customer.id if customer else None,
            customer_name=(customer.name if customer and customer.name else customer_name),
            customer_phone=(customer.phone if customer else customer_phone),
            customer_cpf=customer.cpf if customer else None,
            table_id=table_id,
            motoboy_id=motoboy_id,
            notes=notes,
            opened_by_user_id=actor,
        )
        if status == S.COMPLETED:
            o.completed_at = utcnow()
            o.closed_by_user_id = actor
        effects.mark(o, *owed)
        try:
            db.add(o)
            db.flush()
            for line in lines:
                db.add(OrderItem(order_id=o.id, **line))
            audit(db, actor, "Order", o.id, "CREATE", after={
                "order_number": o.order_number, "channel": channel.value, "status": status.value,
                "total": str(o.total),
            })
            if before_commit is not None:
                before_commit(o)
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning("order number %s taken (attempt %s/%s)", o.order_number, attempt, NUMBER_ATTEMPTS)
            continue
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("order write failed")
            raise OrderPersistenceError("could not save the order, please retry") from exc
        logger.info("order %s created via %s as %s, total %s", o.order_number, channel.value, status.value, o.total)
        return o
    raise OrderPersistenceError("could not allocate a unique order number, please retry")


# --- channels ---------------------------------------------------------------

def counter_checkout(db: Session, body, actor: str | None = None) -> tuple[Order, ResolvedCustomer | None]:
    """Staffed counter: the sale is paid on the spot, so the order is born completed."""
    if not body.items:
        raise CheckoutValidationError("cart is empty")
    name = (body.customer_name or "").strip()
    phone = (body.customer_phone or "").strip()
    if not name or not phone:
        raise CheckoutValidationError("customer name and phone are required")
    if body.payment_method == PaymentMethod.PENDING:
        raise CheckoutValidationError("counter sales need a payment method")
    if body.delivery_type == DeliveryType.DINE_IN:
        raise CheckoutValidationError("dine-in orders go through a table tab")

    cart = build_cart(db, body.items)
    # priced against the stored record so a rejected sale leaves the directory untouched
    q = quote(db, cart, include_service_fee=body.include_service_fee, delivery_type=body.delivery_type,
              distance_km=body.distance_km, discount=body.discount, redeem_points=body.redeem_points,
              customer=lookup(db, phone), customer_cpf=body.customer_cpf)

    resolved = resolve(db, phone, name, body.customer_cpf)
    owed = [effects.CASH]
    if resolved is not None:
        owed.append(effects.LOYALTY)
        if q.redeemed_points:
            owed.append(effects.REDEEM)
    if body.print_receipt:
        owed.append(effects.PRINT)
    if body.motoboy_id:
        owed.append(effects.COURIER)

    order = persist_order(
        db, channel=SalesChannel.COUNTER, delivery_type=body.delivery_type, status=S.COMPLETED,
        cart=cart, q=q, payment_method=body.payment_method, resolved=resolved,
        customer_name=name, customer_phone=phone, motoboy_id=body.motoboy_id,
        notes=body.notes, actor=actor, owed=tuple(owed),
    )
    return order, resolved


def kiosk_checkout(db: Session, body) -> tuple[Order, ResolvedCustomer | None]:
    """Self-service kiosk: straight to the kitchen, paid by PIX later."""
    if not body.items:
        raise CheckoutValidationError("cart is empty")
    cart = build_cart(db, body.items)
    q = quote(db, cart)
    resolved = resolve(db, body.customer_phone, body.customer_name, body.customer_cpf) if body.customer_phone else None
    name = (body.customer_name or "").strip() or KIOSK_DEFAULT_NAME
    return persist_order(
        db, channel=SalesChannel.KIOSK, delivery_type=DeliveryType.PICKUP, status=S.PREPARING,
        cart=cart, q=q, payment_method=PaymentMethod.PIX, resolved=resolved,
        customer_name=name, customer_phone=(body.customer_phone or "").strip() or None,
        notes=body.notes,
    ), resolved


def complete_order(db: Session, order: Order, payment_method: PaymentMethod | None = None,
                   actor: str | None = None, print_receipt: bool = False,
                   motoboy_id: str | None = None) -> Order:
    """Shared completion path for kiosk payment and closed tabs.

    The status move and the owed-effect markers commit together; the caller
    then runs ``effects``.
    """
    if payment_method is not None:
        if payment_method == PaymentMethod.PENDING:
            raise CheckoutValidationError("a real payment method is required to complete")
        order.payment_method = payment_method
    elif order.payment_method == PaymentMethod.PENDING:
        raise CheckoutValidationError("a real payment method is required to complete")
    transition(db, order, S.COMPLETED, actor)
    if motoboy_id:
        order.motoboy_id = motoboy_id
    owed = [effects.CASH]
    if order.customer_id:
        owed.append(effects.LOYALTY)
        if order.redeemed_points:
            owed.append(effects.REDEEM)
    if print_receipt:
        owed.append(effects.PRINT)
    if order.motoboy_id:
        owed.append(effects.COURIER)
    effects.mark(order, *owed)
    _free_table(db, order)
    db.commit()
    logger.info("order %s completed with %s", order.order_number, order.payment_method.value)
    return order


def cancel_order(db: Session, order: Order, reason: str | None, actor: str | None = None) -> Order:
    transition(db, order, S.CANCELED, actor, reason)
    order.pending_effects = None
    _free_table(db, order)
    db.commit()
    logger.info("order %s canceled: %s", order.order_number, reason or "-")
    return order


def change_status(db: Session, order: Order, target: OrderStatus, actor: str | None = None) -> Order:
    """Kitchen/floor moves. Completion and cancellation have their own paths."""
    if target in (S.COMPLETED, S.CANCELED):
        raise CheckoutValidationError(f"use the dedicated endpoint to move an order to {target.value}")
    transition(db, order, target, actor)
    db.commit()
    return order


# --- dine-in tabs -----------------------------------------------------------

def _free_table(db: Session, order: Order) -> None:
    if not order.table_id:
        return
    t = db.get(DiningTable, order.table_id)
    if t is not None and t.status == TableStatus.OCCUPIED:
        t.status = TableStatus.FREE


def open_tab(db: Session, table_id: str, customer_name: str | None = None, customer_phone: str | None = None,
             include_service_fee: bool = True, notes: str | None = None, actor: str | None = None,
             customer_cpf: str | None = None) -> Order:
    table = db.get(DiningTable, table_id)
    if table is None or table.deleted_at is not None:
        raise CheckoutValidationError("table not found")
    if table.status != TableStatus.FREE:
        raise CheckoutValidationError(f"table {table.number} is not free")

    resolved = resolve(db, customer_phone, customer_name, customer_cpf) if customer_phone else None
    rs = restaurant_settings(db)
    rate = money(rs.service_fee_percent) if include_service_fee else ZERO
    q = Quote(subtotal=ZERO, service_fee_rate=rate, service_fee=ZERO, delivery_fee=ZERO,
              discount=ZERO, redeemed_points=0, total=ZERO)

    def occupy(_order):
        table.status = TableStatus.OCCUPIED

    order = persist_order(
        db, channel=SalesChannel.DINE_IN, delivery_type=DeliveryType.DINE_IN, status=S.NEW,
        cart=None, q=q, payment_method=PaymentMethod.PENDING, resolved=resolved,
        customer_name=(customer_name or "").strip() or f"Mesa {table.number}",
        customer_phone=customer_phone, table_id=table.id, notes=notes, actor=actor,
        before_commit=occupy,
    )
    return order


def _require_editable(order: Order) -> None:
    if order.status not in EDITABLE:
        raise CheckoutValidationError(f"order in status {order.status.value} can no longer be edited")


def set_tab_customer(db: Session, order: Order, customer_phone: str | None, customer_name: str | None = None,
                     customer_cpf: str | None = None, actor: str | None = None) -> ResolvedCustomer:
    """Attach or correct the customer of a running tab, creating the record when needed."""
    _require_editable(order)
    if not (customer_phone or "").strip():
        raise CheckoutValidationError("customer phone is required")
    before = {"customer_id": order.customer_id, "name": order.customer_name, "phone": order.customer_phone}
    resolved = resolve(db, customer_phone, customer_name, customer_cpf)
    c = resolved.customer
    order.customer_id = c.id
    order.customer_name = c.name or order.customer_name
    order.customer_phone = c.phone
    order.customer_cpf = c.cpf
    audit(db, actor, "Order", order.id, "SET_CUSTOMER", before=before,
          after={"customer_id": c.id, "name": order.customer_name, "phone": c.phone})
    db.commit()
    logger.info("tab %s linked to customer %s", order.order_number, c.id)
    return resolved


def add_tab_items(db: Session, order: Order, selections, actor: str | None = None) -> list[OrderItem]:
    _require_editable(order)
    if not selections:
        raise CheckoutValidationError("no items to add")
    cart = build_cart(db, selections)
    added = []
    for line in cart.order_lines():
        it = OrderItem(order_id=order.id, **line)
        db.add(it)
        added.append(it)
    recompute_totals(db, order)
    audit(db, actor, "Order", order.id, "ADD_ITEMS", after={"lines": len(added), "total": str(order.total)})
    db.commit()
    return added


def _tab_item(db: Session, order: Order, item_id: str) -> OrderItem:
    it = db.get(OrderItem, item_id)
    if it is None or it.order_id != order.id or it.deleted_at is not None:
        raise LookupError("order item not found")
    return it


def update_tab_item(db: Session, order: Order, item_id: str, quantity: int | None = None,
                    notes: str | None = None, actor: str | None = None) -> OrderItem | None:
    """Edit a line; quantity 0 or less removes it. Totals are recomputed either way."""
    _require_editable(order)
    it = _tab_item(db, order, item_id)
    before = {"quantity": it.quantity, "notes": it.notes}
    if notes is not None:
        it.notes = notes or None
    if quantity is not None:
        if quantity <= 0:
            it.deleted_at = utcnow()
        else:
            it.quantity = quantity
            it.total_price = money(money(it.unit_price) * quantity)
    recompute_totals(db, order)
    audit(db, actor, "OrderItem", it.id, "UPDATE", before=before,
          after={"quantity": it.quantity if it.deleted_at is None else 0, "notes": it.notes})
    db.commit()
    return it if it.deleted_at is None else None


def remove_tab_item(db: Session, order: Order, item_id: str, actor: str | None = None) -> None:
    _require_editable(order)
    it = _tab_item(db, order, item_id)
    it.deleted_at = utcnow()
    recompute_totals(db, order)
    audit(db, actor, "OrderItem", it.id, "REMOVE", before={"name": it.name, "quantity": it.quantity})
    db.commit()


def close_tab(db: Session, order: Order, actor: str | None = None) -> Order:
    """Stop taking items and hand the bill to the cashier; the table is freed."""
    if order.channel != SalesChannel.DINE_IN:
        raise CheckoutValidationError("only dine-in tabs can be closed")
    if not live_items(db, order.id):
        raise CheckoutValidationError("cannot close an empty tab")
    recompute_totals(db, order)
    transition(db, order, S.READY_FOR_PAYMENT, actor)
    _free_table(db, order)
    db.commit()
    return order
