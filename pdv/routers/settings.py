# pdv/routers/settings.py
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from pdv.db import get_db
from pdv.deps import require_auth, require_perm
from pdv.models.core import RestaurantSettings, Printer, PrinterType

router = APIRouter(prefix="/settings", tags=["settings"])

RESTAURANT_FIELDS = {
    "name", "address", "phone", "service_fee_percent", "loyalty_enabled",
    "loyalty_points_per_real", "loyalty_redemption_value", "billing_printer_id",
    "kitchen_printer_id", "receipt_footer",
}
DECIMAL_FIELDS = {"service_fee_percent", "loyalty_points_per_real", "loyalty_redemption_value"}


def _restaurant_row(rs: RestaurantSettings) -> dict:
    return {
        "id": rs.id, "name": rs.name, "address": rs.address, "phone": rs.phone,
        "service_fee_percent": float(rs.service_fee_percent or 0),
        "loyalty_enabled": bool(rs.loyalty_enabled),
        "loyalty_points_per_real": float(rs.loyalty_points_per_real or 0),
        "loyalty_redemption_value": float(rs.loyalty_redemption_value or 0),
        "billing_printer_id": rs.billing_printer_id,
        "kitchen_printer_id": rs.kitchen_printer_id,
        "receipt_footer": rs.receipt_footer,
    }


@router.get("/restaurant")
def get_restaurant(db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    rs = db.query(RestaurantSettings).first()
    if not rs:
        return {}
    return _restaurant_row(rs)


@router.post("/restaurant")
def upsert_restaurant(body: dict, db: Session = Depends(get_db), sub: str = Depends(require_perm("SETTINGS_EDIT"))):
    data = {k: v for k, v in body.items() if k in RESTAURANT_FIELDS}
    for k in DECIMAL_FIELDS & data.keys():
        data[k] = Decimal(str(data[k]))
    rs = db.query(RestaurantSettings).first()
    if not rs:
        if not data.get("name"):
            raise HTTPException(400, detail="name is required")
        rs = RestaurantSettings(**data)
        db.add(rs)
    else:
        for k, v in data.items():
            setattr(rs, k, v)
    db.commit(); db.refresh(rs)
    return _restaurant_row(rs)


@router.post("/printers")
def add_printer(body: dict, db: Session = Depends(get_db), sub: str = Depends(require_perm("SETTINGS_EDIT"))):
    data = {k: v for k, v in body.items() if k in {"name", "type", "connection_url", "is_default"}}
    if isinstance(data.get("type"), str):
        data["type"] = PrinterType[data["type"].upper()]
    p = Printer(**data)
    db.add(p); db.commit(); db.refresh(p)
    return {"id": p.id}


@router.patch("/printers/{printer_id}")
def update_printer(printer_id: str, body: dict, db: Session = Depends(get_db), sub: str = Depends(require_perm("SETTINGS_EDIT"))):
    p = db.get(Printer, printer_id)
    if not p:
        raise HTTPException(404, detail="printer not found")
    for k, v in body.items():
        if k in {"name", "connection_url", "is_default", "type"}:
            if k == "type" and isinstance(v, str):
                setattr(p, "type", PrinterType[v.upper()])
            else:
                setattr(p, k, v)
    db.commit(); db.refresh(p)
    return {"id": p.id}
