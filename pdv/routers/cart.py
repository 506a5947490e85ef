from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pdv.db import get_db
from pdv.deps import require_auth
from pdv.schemas.orders import QuoteIn
from pdv.services import customers
from pdv.services.catalog import build_cart
from pdv.services.lifecycle import quote

router = APIRouter(prefix="/cart", tags=["cart"])


@router.post("/quote")
def quote_cart(body: QuoteIn, db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    """Price a cart against the live catalog. Nothing is persisted."""
    cart = build_cart(db, body.items)
    customer = customers.lookup(db, body.customer_phone) if body.customer_phone else None
    q = quote(db, cart, include_service_fee=body.include_service_fee, delivery_type=body.delivery_type,
              distance_km=body.distance_km, discount=body.discount, redeem_points=body.redeem_points,
              customer=customer)
    return {
        "lines": [
            {
                "menu_item_id": i.menu_item_id,
                "name": i.name,
                "customizations": i.customizations_text,
                "quantity": i.quantity,
                "unit_price": float(i.unit_price),
                "total_price": float(i.total_price),
            }
            for i in cart.items
        ],
        **q.as_dict(),
    }
