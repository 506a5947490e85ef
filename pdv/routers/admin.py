from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from pdv.db import get_db
from pdv.config import settings
from pdv.util.security import hash_pw
from pdv.models.core import (
    User, Role, Permission, RolePermission, UserRole,
    RestaurantSettings, Printer, PrinterType,
    MenuCategory, MenuItem, ItemVariation, DeliveryZone, DiningTable, Motoboy,
)

router = APIRouter(prefix="/admin", tags=["admin"])

PERMISSIONS = ["VOID", "REPRINT", "CASH_EDIT", "CUSTOMER_EDIT", "SETTINGS_EDIT"]

DEMO_MENU = {
    "Lanches": [
        ("X-Burger", "25.00", None, [("Bacon", "4.00"), ("Queijo extra", "2.50")]),
        ("X-Salada", "22.00", "19.90", [("Sem cebola", "0.00")]),
    ],
    "Bebidas": [
        ("Refrigerante Lata", "6.00", None, []),
        ("Suco Natural", "9.50", None, [("Com leite", "1.50")]),
    ],
}

DEMO_ZONES = [("0", "3", "5.00"), ("3", "6", "8.00"), ("6", "10", "12.00")]


@router.post("/dev-bootstrap")
def dev_bootstrap(db: Session = Depends(get_db)):
    if settings.APP_ENV != "dev":
        raise HTTPException(403, detail="Not allowed")

    # Admin operator
    u = db.query(User).filter(User.mobile == "9999999999").first()
    if not u:
        u = User(name="Admin", mobile="9999999999", email="admin@example.com",
                 pass_hash=hash_pw("admin"), active=True)
        db.add(u); db.flush()

    # Billing + kitchen printers behind the local print agent
    billing_pr = db.query(Printer).filter(Printer.type == PrinterType.BILLING).first()
    if not billing_pr:
        billing_pr = Printer(name="Caixa", type=PrinterType.BILLING, is_default=True,
                             connection_url="http://localhost:9100/agent")
        db.add(billing_pr); db.flush()
    kitchen_pr = db.query(Printer).filter(Printer.type == PrinterType.KITCHEN).first()
    if not kitchen_pr:
        kitchen_pr = Printer(name="Cozinha", type=PrinterType.KITCHEN, is_default=True,
                             connection_url="http://localhost:9101/agent")
        db.add(kitchen_pr); db.flush()

    rs = db.query(RestaurantSettings).first()
    if not rs:
        rs = RestaurantSettings(
            name="Restaurante Demo",
            address="Rua das Flores, 123",
            phone="1133334444",
            service_fee_percent=Decimal("10.00"),
            loyalty_enabled=True,
            loyalty_points_per_real=Decimal("1"),
            loyalty_redemption_value=Decimal("0.01"),
            billing_printer_id=billing_pr.id,
            kitchen_printer_id=kitchen_pr.id,
            receipt_footer="Obrigado pela preferência!",
        )
        db.add(rs)

    # Floor
    for n in range(1, 7):
        if not db.query(DiningTable).filter(DiningTable.number == n).first():
            db.add(DiningTable(number=n, seats=4))

    # Demo catalog
    items: dict[str, str] = {}
    variations: dict[str, str] = {}
    for pos, (cat_name, rows) in enumerate(DEMO_MENU.items()):
        cat = db.query(MenuCategory).filter(MenuCategory.name == cat_name).first()
        if not cat:
            cat = MenuCategory(name=cat_name, sort_order=pos)
            db.add(cat); db.flush()
        for name, price, promo, vars_ in rows:
            it = db.query(MenuItem).filter(MenuItem.name == name).first()
            if not it:
                it = MenuItem(category_id=cat.id, name=name, price=Decimal(price),
                              promotional_price=Decimal(promo) if promo else None, is_available=True)
                db.add(it); db.flush()
            items[name] = it.id
            for vname, adj in vars_:
                v = (db.query(ItemVariation)
                     .filter(ItemVariation.menu_item_id == it.id, ItemVariation.name == vname).first())
                if not v:
                    v = ItemVariation(menu_item_id=it.id, name=vname, price_adjustment=Decimal(adj))
                    db.add(v); db.flush()
                variations[f"{name}/{vname}"] = v.id

    for lo, hi, fee in DEMO_ZONES:
        exists = (db.query(DeliveryZone)
                  .filter(DeliveryZone.min_distance == Decimal(lo), DeliveryZone.max_distance == Decimal(hi)).first())
        if not exists:
            db.add(DeliveryZone(min_distance=Decimal(lo), max_distance=Decimal(hi), fee=Decimal(fee)))

    motoboy = db.query(Motoboy).filter(Motoboy.name == "Carlos").first()
    if not motoboy:
        motoboy = Motoboy(name="Carlos", phone="11988887777", is_active=True)
        db.add(motoboy); db.flush()

    # RBAC: ADMIN holds every permission the order core checks
    admin_role = db.query(Role).filter(Role.code == "ADMIN").first()
    if not admin_role:
        admin_role = Role(code="ADMIN")
        db.add(admin_role); db.flush()

    existing = {p.code: p for p in db.query(Permission).filter(Permission.code.in_(PERMISSIONS)).all()}
    for code in PERMISSIONS:
        perm = existing.get(code)
        if not perm:
            perm = Permission(code=code, description=None)
            db.add(perm); db.flush()
        if not db.query(RolePermission).filter_by(role_id=admin_role.id, permission_id=perm.id).first():
            db.add(RolePermission(role_id=admin_role.id, permission_id=perm.id))

    if not db.query(UserRole).filter_by(user_id=u.id, role_id=admin_role.id).first():
        db.add(UserRole(user_id=u.id, role_id=admin_role.id))

    db.commit()
    return {
        "admin_mobile": u.mobile,
        "admin_password": "admin",
        "billing_printer_id": billing_pr.id,
        "kitchen_printer_id": kitchen_pr.id,
        "menu_items": items,
        "variations": variations,
        "motoboy_id": motoboy.id,
    }
