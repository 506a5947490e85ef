# test_counter_checkout_e2e.py
from decimal import Decimal

from pdv.models.core import CashMovement, Customer, LoyaltyTransaction, Order, OrderItem


def jprint(step, r):
    """Helper to print response and assert on failure."""
    assert 200 <= r.status_code < 300, f"{step} -> {r.status_code}: {r.text}"
    return r.json() if r.headers.get("content-type", "").startswith("application/json") else r.text


def _assert_totals(order):
    items_sum = sum(Decimal(str(i["total_price"])) for i in order["items"])
    assert Decimal(str(order["subtotal"])) == items_sum
    expected = (Decimal(str(order["subtotal"])) - Decimal(str(order["discount"]))
                + Decimal(str(order["service_fee"])) + Decimal(str(order["delivery_fee"])))
    assert Decimal(str(order["total"])) == expected


def test_counter_sale_full_flow(client, base_url, auth_headers, boot, printers, messenger, rng_suffix, db):
    burger = boot["menu_items"]["X-Burger"]
    bacon = boot["variations"]["X-Burger/Bacon"]
    phone = f"1198{rng_suffix}"

    r = client.post(f"{base_url}/orders/counter", headers=auth_headers, json={
        "items": [
            {"menu_item_id": burger, "quantity": 2},
            {"menu_item_id": burger, "quantity": 2},
            {"menu_item_id": burger, "variation_ids": [bacon], "quantity": 1},
        ],
        "customer_name": "Fernanda",
        "customer_phone": phone,
        "customer_cpf": "123.456.789-09",
        "payment_method": "cash",
        "include_service_fee": True,
    })
    body = jprint("POST /orders/counter", r)
    order = body["order"]

    assert order["status"] == "completed"
    assert order["channel"] == "counter"
    assert order["order_number"].startswith("BAL-")
    assert body["customer_created"] is True
    assert body["warnings"] == []
    # identical lines merge, the bacon one stays separate
    assert [(i["quantity"], i["unit_price"]) for i in order["items"]] == [(4, 25.0), (1, 29.0)]
    assert order["subtotal"] == 129.0
    assert order["service_fee"] == 12.9
    assert order["total"] == 141.9
    _assert_totals(order)
    assert body["loyalty_points_earned"] == 141
    assert order["pending_effects"] == []

    # ledgers
    cash = db.query(CashMovement).filter(CashMovement.order_id == order["id"]).all()
    assert len(cash) == 1 and cash[0].amount == Decimal("141.90")
    c = db.query(Customer).filter(Customer.phone == phone).one()
    earns = db.query(LoyaltyTransaction).filter(LoyaltyTransaction.order_id == order["id"]).all()
    assert [t.points for t in earns] == [141]
    assert c.loyalty_points == 141

    # two customer copies, staggered
    docs = printers.billing.documents
    assert [d["via"] for d in docs] == [1, 2]
    assert "VIA 1 DE 2" in docs[0]["text"] and "VIA 2 DE 2" in docs[1]["text"]
    assert docs[1]["at"] - docs[0]["at"] >= 0.49
    assert messenger.sent == []


def test_counter_requires_name_and_phone(client, base_url, auth_headers, boot, printers, db):
    burger = boot["menu_items"]["X-Burger"]
    r = client.post(f"{base_url}/orders/counter", headers=auth_headers, json={
        "items": [{"menu_item_id": burger}], "customer_name": "Sem Telefone", "payment_method": "pix",
    })
    assert r.status_code == 422
    assert r.json()["code"] == "validation_error"

    r = client.post(f"{base_url}/orders/counter", headers=auth_headers, json={
        "items": [], "customer_name": "Gui", "customer_phone": "11911112222", "payment_method": "pix",
    })
    assert r.status_code == 422
    assert db.query(Order).count() == 0
    assert db.query(Customer).count() == 0
    assert printers.billing.documents == []


def test_print_failure_does_not_undo_sale(client, base_url, auth_headers, boot, printers, db):
    printers.billing.fail = True
    r = client.post(f"{base_url}/orders/counter", headers=auth_headers, json={
        "items": [{"menu_item_id": boot["menu_items"]["Refrigerante Lata"]}],
        "customer_name": "Heitor", "customer_phone": "11933334444", "payment_method": "debit_card",
    })
    body = jprint("POST /orders/counter (printer offline)", r)
    assert body["order"]["status"] == "completed"
    assert len(body["warnings"]) == 2
    assert body["order"]["pending_effects"] == ["print"]
    assert db.query(CashMovement).filter(CashMovement.order_id == body["order"]["id"]).count() == 1

    # printer back: reconciliation prints and clears the marker
    printers.billing.fail = False
    r = client.post(f"{base_url}/orders/reconcile", headers=auth_headers)
    rec = jprint("POST /orders/reconcile", r)
    assert rec["count"] == 1
    assert rec["orders"][0]["retried"] == ["print"]
    assert rec["orders"][0]["pending"] == []
    assert [d["via"] for d in printers.billing.documents] == [1, 2]

    r = client.post(f"{base_url}/orders/reconcile", headers=auth_headers)
    assert jprint("POST /orders/reconcile (again)", r)["count"] == 0


def test_delivery_sale_notifies_courier(client, base_url, auth_headers, boot, messenger):
    r = client.get(f"{base_url}/delivery/fee", params={"distance_km": 4.2}, headers=auth_headers)
    assert jprint("GET /delivery/fee", r)["fee"] == 8.0

    r = client.post(f"{base_url}/orders/counter", headers=auth_headers, json={
        "items": [{"menu_item_id": boot["menu_items"]["X-Salada"], "quantity": 2}],
        "customer_name": "Iara", "customer_phone": "11955556666", "payment_method": "pix",
        "delivery_type": "delivery", "distance_km": 4.2, "discount": 1.8,
        "motoboy_id": boot["motoboy_id"], "print_receipt": False,
    })
    body = jprint("POST /orders/counter (delivery)", r)
    order = body["order"]
    assert order["delivery_fee"] == 8.0
    assert order["subtotal"] == 39.8
    assert order["total"] == 46.0
    _assert_totals(order)

    # the background notification has run by the time the client gets control back
    assert len(messenger.sent) == 1
    phone, text = messenger.sent[0]
    assert phone == "11988887777"
    assert order["order_number"] in text
    assert "Iara" in text
    assert "R$ 46.00" in text

    r = client.get(f"{base_url}/orders/{order['id']}", headers=auth_headers)
    assert jprint("GET /orders/{id}", r)["pending_effects"] == []


def test_courier_without_phone_is_a_warning(client, base_url, auth_headers, boot, messenger, db):
    from pdv.models.core import Motoboy
    m = Motoboy(name="Sem Fone", phone=None, is_active=True)
    db.add(m)
    db.commit()

    r = client.post(f"{base_url}/orders/counter", headers=auth_headers, json={
        "items": [{"menu_item_id": boot["menu_items"]["X-Burger"]}],
        "customer_name": "João", "customer_phone": "11977778888", "payment_method": "cash",
        "motoboy_id": m.id, "print_receipt": False,
    })
    body = jprint("POST /orders/counter (courier w/o phone)", r)
    assert body["order"]["status"] == "completed"
    assert body["warnings"] == ["Motoboy Sem Fone sem telefone cadastrado"]
    assert messenger.sent == []


def test_excessive_discount_rejected(client, base_url, auth_headers, boot, db):
    r = client.post(f"{base_url}/orders/counter", headers=auth_headers, json={
        "items": [{"menu_item_id": boot["menu_items"]["Refrigerante Lata"]}],
        "customer_name": "Kátia", "customer_phone": "11900001111", "payment_method": "cash",
        "discount": 6.01,
    })
    assert r.status_code == 422
    assert db.query(Order).count() == 0


def test_redeem_points_at_checkout(client, base_url, auth_headers, boot, db):
    phone = "11922223333"
    first = {
        "items": [{"menu_item_id": boot["menu_items"]["X-Burger"], "quantity": 4}],
        "customer_name": "Lia", "customer_phone": phone, "customer_cpf": "999.888.777-66",
        "payment_method": "cash", "print_receipt": False,
    }
    jprint("first sale", client.post(f"{base_url}/orders/counter", headers=auth_headers, json=first))

    r = client.post(f"{base_url}/cart/quote", headers=auth_headers, json={
        "items": [{"menu_item_id": boot["menu_items"]["Refrigerante Lata"]}],
        "customer_phone": phone, "redeem_points": 100,
    })
    q = jprint("POST /cart/quote", r)
    assert q["discount"] == 1.0
    assert q["total"] == 5.0

    r = client.post(f"{base_url}/orders/counter", headers=auth_headers, json={
        "items": [{"menu_item_id": boot["menu_items"]["Refrigerante Lata"]}],
        "customer_name": "Lia", "customer_phone": phone, "payment_method": "pix",
        "redeem_points": 100, "print_receipt": False,
    })
    body = jprint("second sale with redemption", r)
    assert body["order"]["total"] == 5.0
    assert body["loyalty_points_redeemed"] == 100
    assert body["loyalty_points_earned"] == 5

    c = db.query(Customer).filter(Customer.phone == phone).one()
    db.refresh(c)
    ledger = sum(t.points for t in db.query(LoyaltyTransaction).filter(LoyaltyTransaction.customer_id == c.id))
    assert c.loyalty_points == 100 - 100 + 5 == ledger

    r = client.get(f"{base_url}/customers/{c.id}/loyalty", headers=auth_headers)
    st = jprint("GET /customers/{id}/loyalty", r)
    assert st["consistent"] is True
    assert [t["type"] for t in st["transactions"]] == ["earn", "redeem", "earn"]


def test_item_snapshot_survives_catalog_edits(client, base_url, auth_headers, boot, db):
    from pdv.models.core import MenuItem
    burger_id = boot["menu_items"]["X-Burger"]
    r = client.post(f"{base_url}/orders/counter", headers=auth_headers, json={
        "items": [{"menu_item_id": burger_id}],
        "customer_name": "Mia", "customer_phone": "11944445555", "payment_method": "cash", "print_receipt": False,
    })
    order_id = jprint("POST /orders/counter", r)["order"]["id"]

    item = db.get(MenuItem, burger_id)
    item.name, item.price = "X-Burger Novo", Decimal("99.00")
    db.commit()

    line = db.query(OrderItem).filter(OrderItem.order_id == order_id).one()
    assert line.name == "X-Burger"
    assert line.unit_price == Decimal("25.00")


def test_rejected_redemption_writes_no_customer(client, base_url, auth_headers, boot, db):
    r = client.post(f"{base_url}/orders/counter", headers=auth_headers, json={
        "items": [{"menu_item_id": boot["menu_items"]["X-Burger"]}],
        "customer_name": "Rui", "customer_phone": "11956565656", "customer_cpf": "444.555.666-77",
        "payment_method": "cash", "redeem_points": 50,
    })
    assert r.status_code == 422
    assert r.json()["code"] == "validation_error"
    assert db.query(Order).count() == 0
    assert db.query(Customer).count() == 0


def test_rejected_redemption_keeps_stored_customer(client, base_url, auth_headers, boot, db):
    db.add(Customer(phone="11957575757", name="Sara", cpf="101.202.303-40", loyalty_points=10, is_suspicious=False))
    db.commit()

    r = client.post(f"{base_url}/orders/counter", headers=auth_headers, json={
        "items": [{"menu_item_id": boot["menu_items"]["X-Burger"]}],
        "customer_name": "Sara Lima", "customer_phone": "11957575757", "customer_cpf": "999.999.999-99",
        "payment_method": "cash", "redeem_points": 11,
    })
    assert r.status_code == 422
    c = db.query(Customer).filter(Customer.phone == "11957575757").one()
    db.refresh(c)
    assert (c.name, c.cpf, c.loyalty_points) == ("Sara", "101.202.303-40", 10)
    assert db.query(Order).count() == 0


def test_cpf_given_with_the_sale_allows_redemption(client, base_url, auth_headers, boot, db):
    db.add(Customer(phone="11958585858", name="Tito", loyalty_points=200, is_suspicious=False))
    db.commit()

    r = client.post(f"{base_url}/orders/counter", headers=auth_headers, json={
        "items": [{"menu_item_id": boot["menu_items"]["Refrigerante Lata"]}],
        "customer_name": "Tito", "customer_phone": "11958585858", "customer_cpf": "121.232.343-45",
        "payment_method": "pix", "redeem_points": 100, "print_receipt": False,
    })
    body = jprint("sale with cpf and redemption", r)
    assert body["order"]["total"] == 5.0
    assert body["loyalty_points_redeemed"] == 100
