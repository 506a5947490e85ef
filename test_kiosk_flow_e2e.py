# test_kiosk_flow_e2e.py
from datetime import timedelta
from decimal import Decimal

import pytest

from pdv.models.common import utcnow
from pdv.models.core import CashMovement, Customer, KioskSession, MenuItem, Order
from pdv.services import lifecycle


def jprint(step, r):
    """Helper to print response and assert on failure."""
    assert 200 <= r.status_code < 300, f"{step} -> {r.status_code}: {r.text}"
    return r.json() if r.headers.get("content-type", "").startswith("application/json") else r.text


@pytest.fixture
def combo(db, boot):
    it = MenuItem(name="Combo Totem", price=Decimal("39.90"), is_available=True)
    db.add(it)
    db.commit()
    return it.id


def _age(db, token, seconds=1):
    s = db.query(KioskSession).filter(KioskSession.token == token).one()
    s.expires_at = utcnow() - timedelta(seconds=seconds)
    db.commit()


def test_kiosk_order_goes_to_kitchen_then_gets_paid(client, base_url, combo, printers, db):
    s = jprint("POST /kiosk/sessions", client.post(f"{base_url}/kiosk/sessions"))
    token = s["token"]
    assert s["state"] == "active"

    r = client.post(f"{base_url}/kiosk/sessions/{token}/checkout", json={
        "items": [{"menu_item_id": combo}],
        "customer_name": "Nina", "customer_phone": "11966667777", "customer_cpf": "321.654.987-00",
    })
    body = jprint("POST /kiosk/.../checkout", r)
    order = body["order"]
    assert order["order_number"].startswith("TOTEM-")
    assert order["status"] == "preparing"
    assert order["payment_method"] == "pix"
    assert order["delivery_type"] == "pickup"
    assert order["total"] == 39.9
    assert body["session"]["state"] == "awaiting_payment"
    assert body["session"]["order_id"] == order["id"]

    # kitchen ticket right away, no customer receipt yet
    assert len(printers.kitchen.documents) == 1
    ticket = printers.kitchen.documents[0]["text"]
    assert "PENDENTE" in ticket and order["order_number"] in ticket
    assert printers.billing.documents == []
    assert db.query(CashMovement).count() == 0

    r = client.post(f"{base_url}/kiosk/sessions/{token}/confirm-payment", json={})
    paid = jprint("POST /kiosk/.../confirm-payment", r)
    assert paid["order"]["status"] == "completed"
    assert paid["session"]["state"] == "closed"
    assert paid["loyalty_points_earned"] == 39
    assert [d["via"] for d in printers.billing.documents] == [1, 2]

    cash = db.query(CashMovement).filter(CashMovement.order_id == order["id"]).all()
    assert len(cash) == 1
    assert cash[0].amount == Decimal("39.90")
    assert cash[0].payment_method == "pix"
    c = db.query(Customer).filter(Customer.phone == "11966667777").one()
    assert c.loyalty_points == 39

    # a second confirmation is a no-op
    again = jprint("confirm-payment again", client.post(f"{base_url}/kiosk/sessions/{token}/confirm-payment", json={}))
    assert again["order"]["status"] == "completed"
    assert db.query(CashMovement).filter(CashMovement.order_id == order["id"]).count() == 1
    assert len(printers.billing.documents) == 2


def test_anonymous_kiosk_order_uses_default_name(client, base_url, combo):
    token = jprint("open", client.post(f"{base_url}/kiosk/sessions"))["token"]
    r = client.post(f"{base_url}/kiosk/sessions/{token}/checkout", json={"items": [{"menu_item_id": combo}]})
    order = jprint("anonymous checkout", r)["order"]
    assert order["customer_name"] == "Cliente Totem"
    assert order["customer_id"] is None


def test_inactivity_blocks_checkout(client, base_url, combo, db):
    token = jprint("open", client.post(f"{base_url}/kiosk/sessions"))["token"]
    _age(db, token)

    r = client.post(f"{base_url}/kiosk/sessions/{token}/checkout", json={"items": [{"menu_item_id": combo}]})
    assert r.status_code == 410
    assert r.json()["code"] == "kiosk_session_expired"
    assert db.query(Order).count() == 0

    r = client.get(f"{base_url}/kiosk/sessions/{token}")
    assert jprint("GET session", r)["state"] == "expired"

    r = client.post(f"{base_url}/kiosk/sessions/{token}/touch")
    assert r.status_code == 410


def test_touch_extends_the_deadline(client, base_url, db):
    s = jprint("open", client.post(f"{base_url}/kiosk/sessions"))
    row = db.query(KioskSession).filter(KioskSession.token == s["token"]).one()
    row.expires_at = utcnow() + timedelta(seconds=5)
    db.commit()

    touched = jprint("touch", client.post(f"{base_url}/kiosk/sessions/{s['token']}/touch"))
    assert touched["state"] == "active"
    db.refresh(row)
    from pdv.models.common import as_utc
    assert as_utc(row.expires_at) > utcnow() + timedelta(seconds=60)


def test_expiry_after_checkout_keeps_the_order(client, base_url, combo, printers, db):
    token = jprint("open", client.post(f"{base_url}/kiosk/sessions"))["token"]
    order = jprint("checkout", client.post(f"{base_url}/kiosk/sessions/{token}/checkout",
                                           json={"items": [{"menu_item_id": combo}]}))["order"]
    _age(db, token)

    assert jprint("GET session", client.get(f"{base_url}/kiosk/sessions/{token}"))["state"] == "expired"
    o = db.get(Order, order["id"])
    db.refresh(o)
    assert o.status.value == "preparing"

    # the customer still pays for what reached the kitchen
    paid = jprint("confirm after expiry",
                  client.post(f"{base_url}/kiosk/sessions/{token}/confirm-payment", json={"print_receipt": False}))
    assert paid["order"]["status"] == "completed"
    assert printers.billing.documents == []
    assert db.query(CashMovement).filter(CashMovement.order_id == order["id"]).count() == 1


def test_rejected_checkout_releases_the_session(client, base_url, db):
    token = jprint("open", client.post(f"{base_url}/kiosk/sessions"))["token"]
    r = client.post(f"{base_url}/kiosk/sessions/{token}/checkout", json={"items": []})
    assert r.status_code == 422
    assert jprint("GET session", client.get(f"{base_url}/kiosk/sessions/{token}"))["state"] == "active"


def test_unknown_session(client, base_url):
    assert client.get(f"{base_url}/kiosk/sessions/nope").status_code == 404
    r = client.post(f"{base_url}/kiosk/sessions/nope/checkout", json={"items": []})
    assert r.status_code == 404


def test_unexpected_checkout_error_releases_the_session(client, base_url, combo, db, monkeypatch):
    def boom(db, body):
        raise RuntimeError("order sequence unavailable")

    token = jprint("open", client.post(f"{base_url}/kiosk/sessions"))["token"]
    monkeypatch.setattr(lifecycle, "kiosk_checkout", boom)
    with pytest.raises(RuntimeError):
        client.post(f"{base_url}/kiosk/sessions/{token}/checkout", json={"items": [{"menu_item_id": combo}]})
    monkeypatch.undo()

    assert jprint("GET session", client.get(f"{base_url}/kiosk/sessions/{token}"))["state"] == "active"
    r = client.post(f"{base_url}/kiosk/sessions/{token}/checkout", json={"items": [{"menu_item_id": combo}]})
    assert jprint("retry checkout", r)["order"]["total"] == 39.9
    assert db.query(Order).count() == 1
