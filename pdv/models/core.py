from sqlalchemy import (
    String, ForeignKey, Boolean, Numeric, Enum, Text, DateTime, Date, Integer, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column
from enum import Enum as PyEnum
from datetime import datetime, date
from decimal import Decimal
from pdv.db import Base
from pdv.models.common import IdMixin, TSMMixin

# ── Enums ───────────────────────────────────────────────────────────────────
class SalesChannel(PyEnum):
    COUNTER = "counter"
    KIOSK = "kiosk"
    DINE_IN = "dine_in"
    ONLINE = "online"

class DeliveryType(PyEnum):
    COUNTER = "counter"
    DINE_IN = "dine_in"
    PICKUP = "pickup"
    DELIVERY = "delivery"

class OrderStatus(PyEnum):
    NEW = "new"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    READY_FOR_PAYMENT = "ready_for_payment"
    COMPLETED = "completed"
    CANCELED = "canceled"

class PaymentMethod(PyEnum):
    CASH = "cash"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    PIX = "pix"
    PENDING = "pending"

class LoyaltyTxnType(PyEnum):
    EARN = "earn"
    REDEEM = "redeem"

class CashMovementType(PyEnum):
    INCOME = "income"
    EXPENSE = "expense"

class TableStatus(PyEnum):
    FREE = "free"
    OCCUPIED = "occupied"

class PrinterType(PyEnum):
    BILLING = "BILLING"
    KITCHEN = "KITCHEN"

class KioskSessionState(PyEnum):
    ACTIVE = "active"
    CHECKING_OUT = "checking_out"
    AWAITING_PAYMENT = "awaiting_payment"
    EXPIRED = "expired"
    CLOSED = "closed"

# ── Operators ───────────────────────────────────────────────────────────────
class User(Base, IdMixin, TSMMixin):
    __tablename__ = "user"
    name: Mapped[str] = mapped_column(String(160))
    mobile: Mapped[str | None] = mapped_column(String(20), unique=True)
    email: Mapped[str | None] = mapped_column(String(160))
    pass_hash: Mapped[str] = mapped_column(String(200))
    active: Mapped[bool] = mapped_column(Boolean, default=True)

class Role(Base, IdMixin, TSMMixin):
    __tablename__ = "role"
    code: Mapped[str] = mapped_column(String(50), unique=True)

class Permission(Base, IdMixin, TSMMixin):
    __tablename__ = "permission"
    code: Mapped[str] = mapped_column(String(60), unique=True)  # VOID, REPRINT, CASH_EDIT, CUSTOMER_EDIT
    description: Mapped[str | None] = mapped_column(Text)

class RolePermission(Base, TSMMixin):
    __tablename__ = "role_permission"
    role_id: Mapped[str] = mapped_column(String(36), ForeignKey("role.id"), primary_key=True)
    permission_id: Mapped[str] = mapped_column(String(36), ForeignKey("permission.id"), primary_key=True)

class UserRole(Base, TSMMixin):
    __tablename__ = "user_role"
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("user.id"), primary_key=True)
    role_id: Mapped[str] = mapped_column(String(36), ForeignKey("role.id"), primary_key=True)

# ── Printers & settings ─────────────────────────────────────────────────────
class Printer(Base, IdMixin, TSMMixin):
    __tablename__ = "printer"
    name: Mapped[str] = mapped_column(String(120))
    type: Mapped[PrinterType] = mapped_column(Enum(PrinterType))
    connection_url: Mapped[str | None] = mapped_column(String(300))  # local print agent webhook
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)

class RestaurantSettings(Base, IdMixin, TSMMixin):
    __tablename__ = "restaurant_settings"
    name: Mapped[str] = mapped_column(String(200))
    address: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(String(20))
    service_fee_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("10.00"))
    loyalty_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    loyalty_points_per_real: Mapped[Decimal] = mapped_column(Numeric(8, 3), default=Decimal("1"))
    loyalty_redemption_value: Mapped[Decimal] = mapped_column(Numeric(8, 4), default=Decimal("0.01"))
    billing_printer_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("printer.id"))
    kitchen_printer_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("printer.id"))
    receipt_footer: Mapped[str | None] = mapped_column(String(200), default="Obrigado pela preferência!")

# ── Catalog (read-only for the order core) ──────────────────────────────────
class MenuCategory(Base, IdMixin, TSMMixin):
    __tablename__ = "menu_category"
    name: Mapped[str] = mapped_column(String(120))
    sort_order: Mapped[int] = mapped_column(default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

class MenuItem(Base, IdMixin, TSMMixin):
    __tablename__ = "menu_item"
    category_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("menu_category.id"))
    name: Mapped[str] = mapped_column(String(160))
    description: Mapped[str | None] = mapped_column(Text)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    promotional_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    is_available: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_order: Mapped[int] = mapped_column(default=0)

class ItemVariation(Base, IdMixin, TSMMixin):
    __tablename__ = "item_variation"
    menu_item_id: Mapped[str] = mapped_column(String(36), ForeignKey("menu_item.id"))
    name: Mapped[str] = mapped_column(String(120))
    price_adjustment: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

class DeliveryZone(Base, IdMixin, TSMMixin):
    __tablename__ = "delivery_zone"
    min_distance: Mapped[Decimal] = mapped_column(Numeric(6, 2))  # km, inclusive
    max_distance: Mapped[Decimal] = mapped_column(Numeric(6, 2))  # km, exclusive
    fee: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

# ── Dining, customers & couriers ────────────────────────────────────────────
class DiningTable(Base, IdMixin, TSMMixin):
    __tablename__ = "dining_table"
    number: Mapped[int] = mapped_column(Integer, unique=True)
    status: Mapped[TableStatus] = mapped_column(Enum(TableStatus), default=TableStatus.FREE)
    seats: Mapped[int | None]

class Customer(Base, IdMixin, TSMMixin):
    __tablename__ = "customer"
    phone: Mapped[str] = mapped_column(String(32), unique=True)  # natural key
    name: Mapped[str | None] = mapped_column(String(160))
    cpf: Mapped[str | None] = mapped_column(String(14))
    loyalty_points: Mapped[int] = mapped_column(Integer, default=0)
    is_suspicious: Mapped[bool] = mapped_column(Boolean, default=False)
    suspicious_reason: Mapped[str | None] = mapped_column(Text)

class Motoboy(Base, IdMixin, TSMMixin):
    __tablename__ = "motoboy"
    name: Mapped[str] = mapped_column(String(160))
    phone: Mapped[str | None] = mapped_column(String(32))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

# ── Orders ──────────────────────────────────────────────────────────────────
class Order(Base, IdMixin, TSMMixin):
    __tablename__ = "order"
    order_number: Mapped[str] = mapped_column(String(30), unique=True)
    sequential_number: Mapped[int] = mapped_column(Integer, unique=True)
    channel: Mapped[SalesChannel] = mapped_column(Enum(SalesChannel))
    delivery_type: Mapped[DeliveryType] = mapped_column(Enum(DeliveryType))
    status: Mapped[OrderStatus] = mapped_column(Enum(OrderStatus), default=OrderStatus.NEW)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    service_fee_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    service_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    delivery_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    discount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    redeemed_points: Mapped[int] = mapped_column(Integer, default=0)  # loyalty points behind part of the discount
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    payment_method: Mapped[PaymentMethod] = mapped_column(Enum(PaymentMethod), default=PaymentMethod.PENDING)
    customer_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("customer.id"))
    # snapshot for receipts, survives later customer edits
    customer_name: Mapped[str | None] = mapped_column(String(160))
    customer_phone: Mapped[str | None] = mapped_column(String(32))
    customer_cpf: Mapped[str | None] = mapped_column(String(14))
    table_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("dining_table.id"))
    motoboy_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("motoboy.id"))
    notes: Mapped[str | None] = mapped_column(Text)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancel_reason: Mapped[str | None] = mapped_column(Text)
    pending_effects: Mapped[str | None] = mapped_column(String(120))  # "cash,loyalty,print,courier"
    opened_by_user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("user.id"))
    closed_by_user_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("user.id"))

class OrderItem(Base, IdMixin, TSMMixin):
    __tablename__ = "order_item"
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("order.id"))
    menu_item_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("menu_item.id"))
    name: Mapped[str] = mapped_column(String(160))
    quantity: Mapped[int] = mapped_column(Integer)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    notes: Mapped[str | None] = mapped_column(Text)

# ── Ledgers ─────────────────────────────────────────────────────────────────
class LoyaltyTransaction(Base, IdMixin, TSMMixin):
    __tablename__ = "loyalty_transaction"
    customer_id: Mapped[str] = mapped_column(String(36), ForeignKey("customer.id"))
    order_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("order.id"))
    type: Mapped[LoyaltyTxnType] = mapped_column(Enum(LoyaltyTxnType))
    points: Mapped[int] = mapped_column(Integer)  # signed
    description: Mapped[str | None] = mapped_column(Text)
    __table_args__ = (
        UniqueConstraint("order_id", "type", name="uq_loyalty_order_type"),
    )

class CashMovement(Base, IdMixin, TSMMixin):
    __tablename__ = "cash_movement"
    type: Mapped[CashMovementType] = mapped_column(Enum(CashMovementType))
    category: Mapped[str] = mapped_column(String(60))
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    payment_method: Mapped[str | None] = mapped_column(String(20))
    description: Mapped[str | None] = mapped_column(Text)
    movement_date: Mapped[date] = mapped_column(Date)
    order_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("order.id"), unique=True)

# ── Kiosk sessions ──────────────────────────────────────────────────────────
class KioskSession(Base, IdMixin, TSMMixin):
    __tablename__ = "kiosk_session"
    token: Mapped[str] = mapped_column(String(64), unique=True)
    state: Mapped[KioskSessionState] = mapped_column(Enum(KioskSessionState), default=KioskSessionState.ACTIVE)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    order_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("order.id"))

# ── Audit ───────────────────────────────────────────────────────────────────
class AuditLog(Base, IdMixin, TSMMixin):
    __tablename__ = "audit_log"
    actor_user_id: Mapped[str] = mapped_column(String(36))
    entity: Mapped[str] = mapped_column(String(60))
    entity_id: Mapped[str] = mapped_column(String(36))
    action: Mapped[str] = mapped_column(String(60))
    reason: Mapped[str | None] = mapped_column(Text)
    before: Mapped[str | None] = mapped_column(Text)
    after: Mapped[str | None] = mapped_column(Text)
