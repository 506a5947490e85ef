from decimal import Decimal
from sqlalchemy.orm import Session

from pdv.models.core import DeliveryZone
from pdv.services.billing import money, ZERO


def fee_for_distance(db: Session, km) -> Decimal:
    """Fee of the first active zone with min_distance <= km < max_distance; 0 outside every zone."""
    km = Decimal(str(km))
    zone = (
        db.query(DeliveryZone)
        .filter(
            DeliveryZone.is_active.is_(True),
            DeliveryZone.deleted_at.is_(None),
            DeliveryZone.min_distance <= km,
            DeliveryZone.max_distance > km,
        )
        .order_by(DeliveryZone.min_distance.asc())
        .first()
    )
    return money(zone.fee) if zone else ZERO
