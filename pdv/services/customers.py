import logging
from dataclasses import dataclass, field

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pdv.models.core import Customer, LoyaltyTransaction

logger = logging.getLogger(__name__)


@dataclass
class ResolvedCustomer:
    customer: Customer
    created: bool = False
    warnings: list[str] = field(default_factory=list)


def normalize_phone(phone: str | None) -> str | None:
    # phones are opaque keys; only surrounding whitespace is dropped
    if phone is None:
        return None
    phone = phone.strip()
    return phone or None


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def suspicious_warning(customer: Customer) -> str:
    reason = customer.suspicious_reason or "verificar histórico antes de prosseguir"
    return f"Cliente marcado como suspeito: {reason}"


def lookup(db: Session, phone: str | None) -> Customer | None:
    phone = normalize_phone(phone)
    if not phone:
        return None
    return db.query(Customer).filter(Customer.phone == phone, Customer.deleted_at.is_(None)).first()


def resolve(db: Session, phone: str | None, name: str | None = None, cpf: str | None = None) -> ResolvedCustomer | None:
    """Find-or-create the customer behind a phone number.

    Returns ``None`` for anonymous sales. Supplied name/cpf overwrite stored
    values when they differ. A racing insert of the same phone loses on the
    unique constraint and re-reads the winner instead of duplicating it.
    Commits its own writes.
    """
    phone = normalize_phone(phone)
    if not phone:
        return None
    name, cpf = _clean(name), _clean(cpf)

    existing = lookup(db, phone)
    if existing is not None:
        changed = False
        if name and name != existing.name:
            existing.name = name
            changed = True
        if cpf and cpf != existing.cpf:
            existing.cpf = cpf
            changed = True
        if changed:
            db.commit()
        out = ResolvedCustomer(customer=existing)
    else:
        c = Customer(phone=phone, name=name, cpf=cpf, loyalty_points=0, is_suspicious=False)
        db.add(c)
        try:
            db.commit()
            out = ResolvedCustomer(customer=c, created=True)
            logger.info("customer created for phone %s", phone)
        except IntegrityError:
            db.rollback()
            winner = lookup(db, phone)
            if winner is None:
                raise
            logger.info("customer %s created concurrently, reusing it", winner.id)
            return resolve(db, phone, name, cpf)

    if out.customer.is_suspicious:
        out.warnings.append(suspicious_warning(out.customer))
    return out


def flag_suspicious(db: Session, customer: Customer, flagged: bool, reason: str | None) -> Customer:
    customer.is_suspicious = flagged
    customer.suspicious_reason = reason if flagged else None
    return customer


def loyalty_statement(db: Session, customer: Customer) -> dict:
    txns = (
        db.query(LoyaltyTransaction)
        .filter(LoyaltyTransaction.customer_id == customer.id)
        .order_by(LoyaltyTransaction.created_at.asc())
        .all()
    )
    ledger_sum = (
        db.query(func.coalesce(func.sum(LoyaltyTransaction.points), 0))
        .filter(LoyaltyTransaction.customer_id == customer.id)
        .scalar()
    )
    return {
        "customer_id": customer.id,
        "balance": customer.loyalty_points,
        "ledger_sum": int(ledger_sum or 0),
        "consistent": int(ledger_sum or 0) == customer.loyalty_points,
        "transactions": [
            {
                "id": t.id,
                "order_id": t.order_id,
                "type": t.type.value,
                "points": t.points,
                "description": t.description,
                "created_at": t.created_at,
            }
            for t in txns
        ],
    }
