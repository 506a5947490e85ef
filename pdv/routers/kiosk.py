"""Self-service kiosk endpoints.

Kiosks are unattended, so these routes are keyed by the opaque session token
instead of an operator JWT.
"""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session

from pdv.db import get_db
from pdv.deps import Printers, get_kiosk_store, get_messenger, get_printers
from pdv.models.core import KioskSession, OrderStatus, PaymentMethod
from pdv.routers.orders import load_order, order_out, run_completion_effects
from pdv.schemas.orders import ConfirmPaymentIn, KioskCheckoutIn
from pdv.services import lifecycle, receipts
from pdv.services.courier import Messenger
from pdv.services.kiosk_sessions import KioskSessionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/kiosk", tags=["kiosk"])


def _session_out(s: KioskSession) -> dict:
    return {"token": s.token, "state": s.state.value, "expires_at": s.expires_at, "order_id": s.order_id}


def _load(store: KioskSessionStore, token: str) -> KioskSession:
    s = store.get(token)
    if s is None:
        raise HTTPException(404, detail="kiosk session not found")
    return s


@router.post("/sessions")
def open_session(store: KioskSessionStore = Depends(get_kiosk_store)):
    return _session_out(store.open())


@router.get("/sessions/{token}")
def get_session(token: str, store: KioskSessionStore = Depends(get_kiosk_store)):
    return _session_out(_load(store, token))


@router.post("/sessions/{token}/touch")
def touch(token: str, store: KioskSessionStore = Depends(get_kiosk_store)):
    s = store.touch(token)
    if s is None:
        raise HTTPException(404, detail="kiosk session not found")
    return _session_out(s)


@router.post("/sessions/{token}/checkout")
async def checkout(
    token: str,
    body: KioskCheckoutIn,
    db: Session = Depends(get_db),
    store: KioskSessionStore = Depends(get_kiosk_store),
    printers: Printers = Depends(get_printers),
):
    s = store.begin_checkout(token)
    if s is None:
        raise HTTPException(404, detail="kiosk session not found")
    try:
        order, resolved = lifecycle.kiosk_checkout(db, body)
    except Exception:
        # no order was placed, the kiosk may try again
        store.release(s)
        raise
    store.attach_order(s, order.id)

    warnings = list(resolved.warnings) if resolved else []
    warnings += await receipts.print_kitchen(printers.kitchen, receipts.build_payload(db, order))
    return {"session": _session_out(s), "order": order_out(db, order), "warnings": warnings}


@router.post("/sessions/{token}/confirm-payment")
async def confirm_payment(
    token: str,
    body: ConfirmPaymentIn,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    store: KioskSessionStore = Depends(get_kiosk_store),
    printers: Printers = Depends(get_printers),
    messenger: Messenger = Depends(get_messenger),
):
    # an expired session still confirms the order it placed
    s = _load(store, token)
    if not s.order_id:
        raise HTTPException(409, detail="no order placed in this session")
    order = load_order(db, s.order_id)
    if order.status == OrderStatus.COMPLETED:
        return {"session": _session_out(s), "order": order_out(db, order), "warnings": []}

    lifecycle.complete_order(db, order, PaymentMethod.PIX, print_receipt=body.print_receipt)
    result = await run_completion_effects(db, order, printers, messenger, background_tasks)
    store.finish(s)
    logger.info("kiosk payment confirmed for %s", order.order_number)
    return {
        "session": _session_out(s),
        "order": result.order,
        "warnings": result.warnings,
        "loyalty_points_earned": result.loyalty_points_earned,
    }
