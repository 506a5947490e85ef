"""Post-completion side effects.

Once an Order is committed, the remaining steps (points redemption, cash
entry, loyalty accrual, receipt, courier) run one by one. Each step is
recorded in ``Order.pending_effects`` before it runs and cleared when it
succeeds, so a failure leaves a marker that ``reconcile`` can pick up later.
Every step is idempotent per order id.
"""
import asyncio
import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pdv.config import settings
from pdv.errors import LoyaltyError
from pdv.models.core import Customer, Order, OrderStatus
from pdv.services import cash_ledger, courier, loyalty, receipts

logger = logging.getLogger(__name__)

REDEEM = "redeem"
CASH = "cash"
LOYALTY = "loyalty"
PRINT = "print"
COURIER = "courier"

ORDERED = (REDEEM, CASH, LOYALTY, PRINT, COURIER)


def pending(order: Order) -> set[str]:
    return {e for e in (order.pending_effects or "").split(",") if e}


def _store(order: Order, effects: set[str]) -> None:
    order.pending_effects = ",".join(e for e in ORDERED if e in effects) or None


def mark(order: Order, *effects: str) -> None:
    """Flag steps as owed. The caller commits together with the order."""
    _store(order, pending(order) | set(effects))


def clear(db: Session, order: Order, effect: str) -> None:
    left = pending(order) - {effect}
    _store(order, left)
    db.commit()


@dataclass
class EffectReport:
    warnings: list[str] = field(default_factory=list)
    loyalty_points_earned: int | None = None
    loyalty_points_redeemed: int | None = None
    cash_movement_id: str | None = None


def run_ledger_effects(db: Session, order: Order) -> EffectReport:
    """Redemption, cash entry and accrual; each commits or rolls back on its own."""
    report = EffectReport()
    todo = pending(order)

    if REDEEM in todo:
        try:
            customer = db.get(Customer, order.customer_id) if order.customer_id else None
            if customer is not None and order.redeemed_points:
                txn = loyalty.redeem(db, customer, order.redeemed_points, order=order)
                report.loyalty_points_redeemed = -txn.points
            clear(db, order, REDEEM)
        except LoyaltyError as exc:
            logger.warning("points redemption for order %s failed: %s", order.order_number, exc.detail)
            report.warnings.append(f"Resgate de pontos não registrado: {exc.detail}")
        except SQLAlchemyError:
            db.rollback()
            logger.exception("points redemption for order %s failed", order.order_number)
            report.warnings.append("Resgate de pontos não registrado; será reprocessado")

    if CASH in todo:
        try:
            mv = cash_ledger.record(db, order)
            report.cash_movement_id = mv.id
            clear(db, order, CASH)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("cash entry for order %s failed", order.order_number)
            report.warnings.append("Lançamento no caixa falhou; será reprocessado")

    if LOYALTY in todo:
        try:
            txn = loyalty.accrue(db, order)
            if txn is not None:
                report.loyalty_points_earned = txn.points
            clear(db, order, LOYALTY)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("loyalty accrual for order %s failed", order.order_number)
            report.warnings.append("Pontos de fidelidade não creditados; serão reprocessados")

    return report


async def run_print_effect(db: Session, surface: receipts.PrintSurface, order: Order,
                           stagger_ms: int | None = None) -> list[str]:
    if PRINT not in pending(order):
        return []
    payload = receipts.build_payload(db, order)
    warnings = await receipts.print_customer_copies(surface, payload, stagger_ms)
    if not warnings:
        clear(db, order, PRINT)
    return warnings


async def dispatch_courier(messenger: courier.Messenger, bind, order_id: str, phone: str,
                           payload: dict, delay_ms: int | None = None) -> bool:
    """Background task: wait for the order commit to settle, then notify once."""
    delay = settings.COURIER_NOTIFY_DELAY_MS if delay_ms is None else delay_ms
    await asyncio.sleep(delay / 1000)
    try:
        ok = await courier.notify(messenger, phone, payload)
    except Exception:
        logger.exception("courier notification for order %s crashed", payload["order"]["order_number"])
        return False
    if ok:
        with Session(bind=bind, expire_on_commit=False) as s:
            o = s.get(Order, order_id)
            if o is not None:
                clear(s, o, COURIER)
    return ok


async def reconcile(db: Session, surface: receipts.PrintSurface, messenger: courier.Messenger,
                    limit: int = 50) -> list[dict]:
    """Retry owed steps for completed orders. Safe to run repeatedly."""
    rows = (
        db.query(Order)
        .filter(Order.status == OrderStatus.COMPLETED, Order.pending_effects.is_not(None))
        .order_by(Order.completed_at.asc())
        .limit(limit)
        .all()
    )
    out = []
    for o in rows:
        before = sorted(pending(o))
        report = run_ledger_effects(db, o)
        warnings = list(report.warnings)
        warnings += await run_print_effect(db, surface, o)
        if COURIER in pending(o):
            m, warn = courier.check_courier(db, o.motoboy_id)
            if warn:
                warnings.append(warn)
            if m is not None and m.phone:
                if await courier.notify(messenger, m.phone, receipts.build_payload(db, o)):
                    clear(db, o, COURIER)
                else:
                    warnings.append(f"Falha ao notificar motoboy {m.name}")
            else:
                # nothing left to retry against
                clear(db, o, COURIER)
        out.append({
            "order_id": o.id,
            "order_number": o.order_number,
            "retried": before,
            "pending": sorted(pending(o)),
            "warnings": warnings,
        })
        logger.info("reconciled order %s: %s -> %s", o.order_number, before, sorted(pending(o)))
    return out
