from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pdv.db import get_db
from pdv.deps import require_auth
from pdv.services.delivery import fee_for_distance

router = APIRouter(prefix="/delivery", tags=["delivery"])


@router.get("/fee")
def delivery_fee(distance_km: float = Query(..., ge=0), db: Session = Depends(get_db),
                 sub: str = Depends(require_auth)):
    fee = fee_for_distance(db, distance_km)
    return {"distance_km": distance_km, "fee": float(fee), "in_zone": fee > 0}
