# pdv/routers/dining.py
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List

from pdv.db import get_db
from pdv.deps import require_auth
from pdv.models.core import DiningTable, Order, OrderStatus, SalesChannel
from pdv.routers.orders import load_order, order_out
from pdv.schemas.orders import OpenTabIn, OrderOut, TabCustomerIn, TabItemPatch, TabItemsIn
from pdv.services import lifecycle

router = APIRouter(prefix="/dining", tags=["dining"])


def _row_from_table(t: DiningTable, open_order: Order | None = None) -> dict:
    return {
        "id": t.id,
        "number": t.number,
        "seats": t.seats,
        "status": t.status.value,
        "open_order_id": open_order.id if open_order else None,
        "open_order_number": open_order.order_number if open_order else None,
    }


def _load_tab(db: Session, order_id: str) -> Order:
    o = load_order(db, order_id)
    if o.channel != SalesChannel.DINE_IN:
        raise HTTPException(404, detail="tab not found")
    return o


# ------------------------------------------------------------------
# GET /dining/tables  -> floor view with the running tab per table
# ------------------------------------------------------------------
@router.get("/tables")
def list_tables(db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    rows: List[DiningTable] = (
        db.query(DiningTable)
        .filter(DiningTable.deleted_at.is_(None))
        .order_by(DiningTable.number.asc())
        .all()
    )
    running = {
        o.table_id: o
        for o in db.query(Order).filter(
            Order.channel == SalesChannel.DINE_IN,
            Order.status.in_(list(lifecycle.EDITABLE)),
        )
    }
    return [_row_from_table(t, running.get(t.id)) for t in rows]


# ------------------------------------------------------------------
# POST /dining/tabs  -> open a tab on a free table
# ------------------------------------------------------------------
@router.post("/tabs", response_model=OrderOut)
def open_tab(body: OpenTabIn, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    o = lifecycle.open_tab(
        db, body.table_id, body.customer_name, body.customer_phone,
        include_service_fee=body.include_service_fee, notes=body.notes, actor=sub,
        customer_cpf=body.customer_cpf,
    )
    return order_out(db, o)


@router.post("/tabs/{order_id}/items", response_model=OrderOut)
def add_items(order_id: str, body: TabItemsIn, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    o = _load_tab(db, order_id)
    lifecycle.add_tab_items(db, o, body.items, sub)
    return order_out(db, o)


@router.patch("/tabs/{order_id}/items/{item_id}", response_model=OrderOut)
def update_item(order_id: str, item_id: str, body: TabItemPatch,
                db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    o = _load_tab(db, order_id)
    try:
        lifecycle.update_tab_item(db, o, item_id, body.quantity, body.notes, sub)
    except LookupError:
        raise HTTPException(404, detail="order item not found")
    return order_out(db, o)


@router.delete("/tabs/{order_id}/items/{item_id}", response_model=OrderOut)
def remove_item(order_id: str, item_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    o = _load_tab(db, order_id)
    try:
        lifecycle.remove_tab_item(db, o, item_id, sub)
    except LookupError:
        raise HTTPException(404, detail="order item not found")
    return order_out(db, o)


# ------------------------------------------------------------------
# PATCH /dining/tabs/{id}/customer  -> identify the customer after seating
# ------------------------------------------------------------------
@router.patch("/tabs/{order_id}/customer")
def set_customer(order_id: str, body: TabCustomerIn, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    o = _load_tab(db, order_id)
    res = lifecycle.set_tab_customer(db, o, body.customer_phone, body.customer_name, body.customer_cpf, sub)
    return {"order": order_out(db, o), "warnings": res.warnings, "customer_created": res.created}


# ------------------------------------------------------------------
# POST /dining/tabs/{id}/close  -> bill goes to the cashier, table is freed
# ------------------------------------------------------------------
@router.post("/tabs/{order_id}/close", response_model=OrderOut)
def close_tab(order_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    o = _load_tab(db, order_id)
    if o.status == OrderStatus.READY_FOR_PAYMENT:
        return order_out(db, o)
    lifecycle.close_tab(db, o, sub)
    return order_out(db, o)
