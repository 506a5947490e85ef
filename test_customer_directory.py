# test_customer_directory.py
from pdv.models.core import Customer
from pdv.services import customers


def test_anonymous_sale_has_no_identity(db):
    assert customers.resolve(db, None) is None
    assert customers.resolve(db, "   ") is None
    assert db.query(Customer).count() == 0


def test_resolve_is_idempotent(db):
    first = customers.resolve(db, "11999990000", "Ana")
    second = customers.resolve(db, "11999990000")
    assert first.created is True
    assert second.created is False
    assert first.customer.id == second.customer.id
    assert first.customer.loyalty_points == 0
    assert db.query(Customer).filter(Customer.phone == "11999990000").count() == 1


def test_supplied_values_overwrite_stored_ones(db):
    customers.resolve(db, "11999990001", "Bruno", "111.111.111-11")
    res = customers.resolve(db, "11999990001", "Bruno Silva", "222.222.222-22")
    assert res.customer.name == "Bruno Silva"
    assert res.customer.cpf == "222.222.222-22"
    # blanks never erase what is on file
    res = customers.resolve(db, "11999990001", "", None)
    assert res.customer.name == "Bruno Silva"


def test_phone_is_an_opaque_key(db):
    a = customers.resolve(db, "(11) 99999-0002", "Carla")
    b = customers.resolve(db, "  (11) 99999-0002  ")
    c = customers.resolve(db, "11999990002")
    assert a.customer.id == b.customer.id
    assert c.customer.id != a.customer.id


def test_suspicious_customer_gets_a_warning_not_a_block(db):
    res = customers.resolve(db, "11999990003", "Diego")
    customers.flag_suspicious(db, res.customer, True, "chargeback em 2024")
    db.commit()

    again = customers.resolve(db, "11999990003")
    assert again.customer.id == res.customer.id
    assert len(again.warnings) == 1
    assert "chargeback em 2024" in again.warnings[0]

    customers.flag_suspicious(db, again.customer, False, None)
    db.commit()
    assert customers.resolve(db, "11999990003").warnings == []


def test_racing_insert_returns_the_winner(db, session_factory, monkeypatch):
    # another session commits the same phone between our lookup and insert
    other = session_factory()
    other.add(Customer(phone="11999990004", name="Winner", loyalty_points=0, is_suspicious=False))
    other.commit()
    other.close()

    original_lookup = customers.lookup
    calls = {"n": 0}

    def stale_lookup(session, phone):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return original_lookup(session, phone)

    monkeypatch.setattr(customers, "lookup", stale_lookup)
    res = customers.resolve(db, "11999990004", "Loser")

    assert res.customer.phone == "11999990004"
    assert db.query(Customer).filter(Customer.phone == "11999990004").count() == 1


def test_lookup_through_api(client, base_url, auth_headers, rng_suffix):
    phone = f"119{rng_suffix}"
    r = client.get(f"{base_url}/customers/lookup", params={"phone": phone}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json() == {"found": False, "customer": None}

    r = client.post(f"{base_url}/customers/resolve", headers=auth_headers, json={"phone": phone, "name": "Eva"})
    assert r.status_code == 200, r.text
    cid = r.json()["id"]

    r = client.post(f"{base_url}/customers/{cid}/suspicious", headers=auth_headers,
                    json={"is_suspicious": True, "reason": "troco falso"})
    assert r.status_code == 200, r.text

    r = client.get(f"{base_url}/customers/lookup", params={"phone": phone}, headers=auth_headers)
    body = r.json()
    assert body["found"] is True
    assert body["customer"]["id"] == cid
    assert body["customer"]["warnings"] == ["Cliente marcado como suspeito: troco falso"]
