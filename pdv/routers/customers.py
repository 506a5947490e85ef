from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from pdv.db import get_db
from pdv.deps import require_auth, require_perm
from pdv.models.core import Customer
from pdv.schemas.common import CustomerOut, CustomerResolveIn, RedeemIn, SuspiciousIn
from pdv.services import customers, loyalty
from pdv.util.audit import audit

router = APIRouter(prefix="/customers", tags=["customers"])


def _out(c: Customer, warnings: list[str] | None = None) -> CustomerOut:
    return CustomerOut(
        id=c.id, phone=c.phone, name=c.name, cpf=c.cpf, loyalty_points=c.loyalty_points,
        is_suspicious=c.is_suspicious, suspicious_reason=c.suspicious_reason, warnings=warnings or [],
    )


def _load(db: Session, customer_id: str) -> Customer:
    c = db.get(Customer, customer_id)
    if not c or c.deleted_at is not None:
        raise HTTPException(404, detail="customer not found")
    return c


@router.get("/lookup")
def lookup(phone: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    """Read-only search behind the phone field; never creates anything."""
    c = customers.lookup(db, phone)
    if not c:
        return {"found": False, "customer": None}
    warnings = [customers.suspicious_warning(c)] if c.is_suspicious else []
    return {"found": True, "customer": _out(c, warnings)}


@router.post("/resolve", response_model=CustomerOut)
def resolve(body: CustomerResolveIn, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    res = customers.resolve(db, body.phone, body.name, body.cpf)
    if res is None:
        raise HTTPException(400, detail="phone is required")
    return _out(res.customer, res.warnings)


@router.get("/{customer_id}", response_model=CustomerOut)
def get_customer(customer_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return _out(_load(db, customer_id))


@router.post("/{customer_id}/suspicious", response_model=CustomerOut)
def flag_suspicious(customer_id: str, body: SuspiciousIn, db: Session = Depends(get_db),
                    sub: str = Depends(require_perm("CUSTOMER_EDIT"))):
    c = _load(db, customer_id)
    before = {"is_suspicious": c.is_suspicious, "reason": c.suspicious_reason}
    customers.flag_suspicious(db, c, body.is_suspicious, body.reason)
    audit(db, sub, "Customer", c.id, "FLAG_SUSPICIOUS", before=before,
          after={"is_suspicious": c.is_suspicious, "reason": c.suspicious_reason}, reason=body.reason)
    db.commit()
    return _out(c)


@router.get("/{customer_id}/loyalty")
def loyalty_statement(customer_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return customers.loyalty_statement(db, _load(db, customer_id))


@router.post("/{customer_id}/loyalty/redeem")
def redeem(customer_id: str, body: RedeemIn, db: Session = Depends(get_db),
           sub: str = Depends(require_perm("CUSTOMER_EDIT"))):
    c = _load(db, customer_id)
    txn = loyalty.redeem(db, c, body.points, description=body.description)
    return {
        "transaction_id": txn.id,
        "points": txn.points,
        "value": float(loyalty.redemption_value(db, body.points)),
        "balance": c.loyalty_points,
    }
