from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from pdv.db import get_db
from pdv.deps import get_messenger, require_auth
from pdv.routers.orders import load_order
from pdv.services import courier, effects, receipts
from pdv.services.courier import Messenger

router = APIRouter(prefix="/couriers", tags=["couriers"])


@router.get("/")
def list_couriers(db: Session = Depends(get_db), sub: str = Depends(require_auth)):
    return [{"id": m.id, "name": m.name, "phone": m.phone} for m in courier.active_couriers(db)]


@router.post("/{courier_id}/notify/{order_id}")
async def notify(courier_id: str, order_id: str, db: Session = Depends(get_db),
                 sub: str = Depends(require_auth), messenger: Messenger = Depends(get_messenger)):
    """Manual (re)send of the delivery notice; one attempt, result reported back."""
    o = load_order(db, order_id)
    m, warn = courier.check_courier(db, courier_id)
    if m is None:
        raise HTTPException(404, detail=warn)
    if warn:
        return {"ok": False, "warnings": [warn]}

    ok = await courier.notify(messenger, m.phone, receipts.build_payload(db, o))
    if ok:
        o.motoboy_id = m.id
        if effects.COURIER in effects.pending(o):
            effects.clear(db, o, effects.COURIER)
        else:
            db.commit()
    return {"ok": ok, "warnings": [] if ok else [f"Falha ao notificar motoboy {m.name}"]}
