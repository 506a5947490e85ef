import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session

from pdv.db import get_db
from pdv.deps import Printers, get_messenger, get_printers, require_auth, require_perm
from pdv.models.core import Order, OrderStatus, SalesChannel
from pdv.schemas.orders import (
    CancelIn, CheckoutOut, CompleteIn, CounterCheckoutIn, OrderItemOut, OrderOut,
    ReprintVariantLiteral, StatusIn,
)
from pdv.services import courier, effects, lifecycle, receipts
from pdv.services.billing import live_items, money
from pdv.services.courier import Messenger
from pdv.services.customers import ResolvedCustomer
from pdv.util.audit import audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


def order_out(db: Session, o: Order) -> OrderOut:
    return OrderOut(
        id=o.id,
        order_number=o.order_number,
        sequential_number=o.sequential_number,
        channel=o.channel.value,
        delivery_type=o.delivery_type.value,
        status=o.status.value,
        payment_method=o.payment_method.value,
        subtotal=float(money(o.subtotal)),
        service_fee=float(money(o.service_fee)),
        delivery_fee=float(money(o.delivery_fee)),
        discount=float(money(o.discount)),
        total=float(money(o.total)),
        customer_id=o.customer_id,
        customer_name=o.customer_name,
        customer_phone=o.customer_phone,
        table_id=o.table_id,
        motoboy_id=o.motoboy_id,
        notes=o.notes,
        pending_effects=sorted(effects.pending(o)),
        items=[
            OrderItemOut(
                id=i.id, menu_item_id=i.menu_item_id, name=i.name, quantity=i.quantity,
                unit_price=float(money(i.unit_price)), total_price=float(money(i.total_price)), notes=i.notes,
            )
            for i in live_items(db, o.id)
        ],
    )


def load_order(db: Session, order_id: str) -> Order:
    o = db.get(Order, order_id)
    if not o:
        raise HTTPException(404, detail="order not found")
    return o


async def run_completion_effects(
    db: Session,
    order: Order,
    printers: Printers,
    messenger: Messenger,
    background_tasks: BackgroundTasks,
    resolved: ResolvedCustomer | None = None,
) -> CheckoutOut:
    """Everything after the order commit. Failures become warnings, never errors."""
    warnings = list(resolved.warnings) if resolved else []
    report = effects.run_ledger_effects(db, order)
    warnings += report.warnings
    warnings += await effects.run_print_effect(db, printers.billing, order)

    if effects.COURIER in effects.pending(order):
        m, warn = courier.check_courier(db, order.motoboy_id)
        if warn:
            warnings.append(warn)
        if m is not None and m.phone:
            background_tasks.add_task(
                effects.dispatch_courier, messenger, db.get_bind(), order.id, m.phone,
                receipts.build_payload(db, order),
            )
        else:
            effects.clear(db, order, effects.COURIER)

    return CheckoutOut(
        order=order_out(db, order),
        warnings=warnings,
        loyalty_points_earned=report.loyalty_points_earned,
        loyalty_points_redeemed=report.loyalty_points_redeemed,
        customer_created=bool(resolved and resolved.created),
    )


@router.get("/")
def list_orders(
    status: str | None = None,
    channel: str | None = None,
    page: int = 1,
    size: int = 20,
    db: Session = Depends(get_db),
    sub: str = Depends(require_auth),
):
    q = db.query(Order)
    if status:
        try:
            q = q.filter(Order.status == OrderStatus(status))
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid status")
    if channel:
        try:
            q = q.filter(Order.channel == SalesChannel(channel))
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid channel")

    page = max(page, 1)
    size = size if size >= 1 else 20
    total = q.count()
    rows = (
        q.order_by(Order.sequential_number.desc())
        .offset((page - 1) * size)
        .limit(size)
        .all()
    )
    return {"items": [order_out(db, o) for o in rows], "total": total}


@router.post("/counter", response_model=CheckoutOut)
async def counter_checkout(
    body: CounterCheckoutIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    sub: str = Depends(require_auth),
    printers: Printers = Depends(get_printers),
    messenger: Messenger = Depends(get_messenger),
):
    order, resolved = lifecycle.counter_checkout(db, body, sub)
    return await run_completion_effects(db, order, printers, messenger, background_tasks, resolved)


@router.post("/reconcile")
async def reconcile(
    limit: int = 50,
    db: Session = Depends(get_db),
    sub: str = Depends(require_perm("CASH_EDIT")),
    printers: Printers = Depends(get_printers),
    messenger: Messenger = Depends(get_messenger),
):
    results = await effects.reconcile(db, printers.billing, messenger, limit=limit)
    if results:
        logger.info("reconcile by %s touched %s orders", sub, len(results))
    return {"orders": results, "count": len(results)}


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return order_out(db, load_order(db, order_id))


@router.post("/{order_id}/status", response_model=OrderOut)
def change_status(order_id: str, body: StatusIn, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    o = lifecycle.change_status(db, load_order(db, order_id), body.status, sub)
    return order_out(db, o)


@router.post("/{order_id}/complete", response_model=CheckoutOut)
async def complete(
    order_id: str,
    body: CompleteIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    sub: str = Depends(require_auth),
    printers: Printers = Depends(get_printers),
    messenger: Messenger = Depends(get_messenger),
):
    o = lifecycle.complete_order(
        db, load_order(db, order_id), body.payment_method, sub,
        print_receipt=body.print_receipt, motoboy_id=body.motoboy_id,
    )
    return await run_completion_effects(db, o, printers, messenger, background_tasks)


@router.post("/{order_id}/cancel", response_model=OrderOut)
def cancel(
    order_id: str,
    body: CancelIn,
    db: Session = Depends(get_db),
    sub: str = Depends(require_perm("VOID")),
):
    o = lifecycle.cancel_order(db, load_order(db, order_id), body.reason, sub)
    return order_out(db, o)


@router.post("/{order_id}/reprint")
async def reprint(
    order_id: str,
    variant: ReprintVariantLiteral = "customer",
    db: Session = Depends(get_db),
    sub: str = Depends(require_perm("REPRINT")),
    printers: Printers = Depends(get_printers),
):
    o = load_order(db, order_id)
    payload = receipts.build_payload(db, o)
    if variant == "kitchen":
        warnings = await receipts.print_kitchen(printers.kitchen, payload)
    else:
        warnings = await receipts.print_customer_copies(printers.billing, payload)
        if not warnings and effects.PRINT in effects.pending(o):
            effects.clear(db, o, effects.PRINT)
    audit(db, sub, "Order", o.id, "REPRINT", after={"variant": variant, "ok": not warnings})
    db.commit()
    return {"ok": not warnings, "variant": variant, "warnings": warnings}
