from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
from decimal import Decimal

from pdv.db import get_db
from pdv.models.core import MenuItem
from pdv.deps import require_auth
from pdv.services.catalog import get_menu_item, get_variations

# Read-only: catalog maintenance lives outside the order core.
router = APIRouter(prefix="/menu", tags=["menu"])


def _as_float(val: Decimal | float | int | None) -> float | None:
    if val is None:
        return None
    return float(val)


@router.get("/items")
def list_items(
    category_id: Optional[str] = None,
    available_only: bool = True,
    db: Session = Depends(get_db),
    sub: str = Depends(require_auth),
):
    q = db.query(MenuItem).filter(MenuItem.deleted_at.is_(None))
    if category_id:
        q = q.filter(MenuItem.category_id == category_id)
    if available_only:
        q = q.filter(MenuItem.is_available.is_(True))

    rows: List[MenuItem] = q.order_by(MenuItem.sort_order.asc(), MenuItem.name.asc()).all()
    return [
        {
            "id": m.id,
            "category_id": m.category_id,
            "name": m.name,
            "description": m.description,
            "price": _as_float(m.price),
            "promotional_price": _as_float(m.promotional_price),
            "is_available": bool(m.is_available),
        }
        for m in rows
    ]


@router.get("/items/{item_id}/variations")
def list_variations(item_id: str, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    if get_menu_item(db, item_id) is None:
        raise HTTPException(404, detail="item not found")
    return [
        {"id": v.id, "name": v.name, "price_adjustment": _as_float(v.price_adjustment)}
        for v in get_variations(db, item_id)
    ]
