# Importing the module registers tables with Base for create_all()
from .core import (  # noqa: F401
    # Enums
    SalesChannel, DeliveryType, OrderStatus, PaymentMethod, LoyaltyTxnType,
    CashMovementType, TableStatus, PrinterType, KioskSessionState,

    # Operators
    User, Role, Permission, RolePermission, UserRole,

    # Settings / printers
    RestaurantSettings, Printer,

    # Catalog
    MenuCategory, MenuItem, ItemVariation, DeliveryZone,

    # Dining, customers, couriers
    DiningTable, Customer, Motoboy,

    # Orders & ledgers
    Order, OrderItem, LoyaltyTransaction, CashMovement,

    # Kiosk & audit
    KioskSession, AuditLog,
)

__all__ = [
    "SalesChannel", "DeliveryType", "OrderStatus", "PaymentMethod", "LoyaltyTxnType",
    "CashMovementType", "TableStatus", "PrinterType", "KioskSessionState",
    "User", "Role", "Permission", "RolePermission", "UserRole",
    "RestaurantSettings", "Printer",
    "MenuCategory", "MenuItem", "ItemVariation", "DeliveryZone",
    "DiningTable", "Customer", "Motoboy",
    "Order", "OrderItem", "LoyaltyTransaction", "CashMovement",
    "KioskSession", "AuditLog",
]

all_models = True
