from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from pdv.db import get_db
from pdv.deps import require_auth, require_perm
from pdv.models.common import utcnow
from pdv.models.core import CashMovement
from pdv.schemas.common import CashMovementIn
from pdv.services import cash_ledger
from pdv.util.audit import audit

router = APIRouter(prefix="/cash", tags=["cash"])


def _row(m: CashMovement) -> dict:
    return {
        "id": m.id,
        "type": m.type.value,
        "category": m.category,
        "amount": float(m.amount),
        "payment_method": m.payment_method,
        "description": m.description,
        "movement_date": m.movement_date.isoformat(),
        "order_id": m.order_id,
    }


@router.get("/movements")
def list_movements(day: date | None = None, order_id: str | None = None,
                   db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    q = db.query(CashMovement).filter(CashMovement.deleted_at.is_(None))
    if day:
        q = q.filter(CashMovement.movement_date == day)
    if order_id:
        q = q.filter(CashMovement.order_id == order_id)
    return [_row(m) for m in q.order_by(CashMovement.created_at.asc()).all()]


@router.post("/movements")
def add_movement(body: CashMovementIn, db: Session = Depends(get_db), sub: str = Depends(require_perm("CASH_EDIT"))):
    if body.category == cash_ledger.SALE_CATEGORY:
        raise HTTPException(400, detail="sale entries are written by order completion only")
    m = cash_ledger.record_manual(db, body.type, body.category, body.amount, body.payment_method,
                                  body.description, body.movement_date)
    db.flush()
    audit(db, sub, "CashMovement", m.id, "CREATE", after=_row(m))
    db.commit()
    return _row(m)


@router.get("/summary")
def summary(day: date | None = None, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return cash_ledger.daily_summary(db, day or utcnow().date())
