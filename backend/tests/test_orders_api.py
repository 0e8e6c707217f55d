from decimal import Decimal

from fastapi.testclient import TestClient

from marketplace.main import app
from marketplace.models import User, UserType
from marketplace.utils.auth import get_password_hash

ITEMS = [
    {"product_id": "p-1", "seller_store_id": "s-1", "quantity": 2, "unit_price": "49.99"},
    {"product_id": "p-2", "seller_store_id": "s-2", "quantity": 1, "unit_price": "200.01"},
]


def _register_and_login(client, email="Buyer@Test.com", password="correct-horse"):
    res = client.post(
        "/auth/register",
        json={"email": email, "password": password, "first_name": "Thandi", "last_name": "M"},
    )
    assert res.status_code == 201, res.text
    res = client.post("/auth/login", data={"username": email, "password": password})
    assert res.status_code == 200
    return {"Authorization": f"Bearer {res.json()['access_token']}"}


def test_register_login_and_create_order(session_factory):
    client = TestClient(app)
    headers = _register_and_login(client)

    res = client.post("/api/v1/orders/", json={"items": ITEMS, "payment_method": "qrpay"}, headers=headers)
    assert res.status_code == 201
    order = res.json()
    assert Decimal(order["total_amount"]) == Decimal("299.99")
    assert Decimal(order["total_commission"]) == Decimal("24.00")
    assert (order["status"], order["payment_status"], order["currency"]) == ("pending", "unpaid", "ZAR")
    assert [Decimal(i["item_total"]) for i in order["items"]] == [Decimal("99.98"), Decimal("200.01")]

    listed = client.get("/api/v1/orders/", headers=headers).json()
    assert [o["id"] for o in listed] == [order["id"]]

    status = client.get(f"/api/v1/orders/{order['id']}/status", headers=headers).json()
    assert status == {
        "order_id": order["id"],
        "status": "pending",
        "payment_status": "unpaid",
        "payment_method": "qrpay",
    }


def test_register_rules(session_factory):
    client = TestClient(app)
    _register_and_login(client, email="dup@test.com")

    res = client.post(
        "/auth/register",
        json={"email": "DUP@test.com", "password": "another-one", "first_name": "a", "last_name": "b"},
    )
    assert res.status_code == 409

    res = client.post(
        "/auth/register",
        json={
            "email": "boss@test.com",
            "password": "another-one",
            "first_name": "a",
            "last_name": "b",
            "user_type": "admin",
        },
    )
    assert res.status_code == 403


def test_login_rejects_bad_password(session_factory):
    db = session_factory()
    db.add(
        User(
            email="foo@test.com",
            password=get_password_hash("right-password"),
            first_name="Foo",
            last_name="Bar",
            user_type=UserType.BUYER,
        )
    )
    db.commit()
    db.close()
    client = TestClient(app)

    res = client.post("/auth/login", data={"username": "foo@test.com", "password": "wrong"})
    assert res.status_code == 401


def test_orders_require_authentication(session_factory):
    client = TestClient(app)
    assert client.get("/api/v1/orders/").status_code == 401
    res = client.get("/api/v1/orders/x", headers={"Authorization": "Bearer not-a-jwt"})
    assert res.status_code == 401


def test_order_is_visible_to_its_buyer_only(session_factory, buyer, other_buyer, act_as, make_order):
    order_id = make_order(buyer)
    client = TestClient(app)

    act_as(other_buyer)
    assert client.get(f"/api/v1/orders/{order_id}").status_code == 403
    assert client.get(f"/api/v1/orders/{order_id}/status").status_code == 403
    assert client.get(f"/api/v1/payments/{order_id}").status_code == 403
    assert client.get("/api/v1/orders/no-such-order").status_code == 404

    act_as(buyer)
    assert client.get(f"/api/v1/orders/{order_id}").json()["id"] == order_id
    # No attempt has been made yet
    assert client.get(f"/api/v1/payments/{order_id}").status_code == 404


def test_payment_record_endpoint(session_factory, settings_override, buyer, act_as, make_order):
    settings_override()
    act_as(buyer)
    order_id = make_order(buyer)
    client = TestClient(app)

    res = client.post(
        "/api/v1/payments/qrpay/initiate",
        json={"orderId": order_id, "amount": "299.99"},
    )
    reference = res.json()["paymentId"]

    record = client.get(f"/api/v1/payments/{order_id}").json()
    assert record["provider_reference"] == reference
    assert record["status"] == "pending"
    assert record["payment_method"] == "qrpay"
    assert Decimal(record["amount"]) == Decimal("299.99")


def test_empty_order_is_rejected(session_factory, buyer, act_as):
    act_as(buyer)
    client = TestClient(app)
    res = client.post("/api/v1/orders/", json={"items": [], "payment_method": "qrpay"})
    assert res.status_code == 422
    assert res.json()["detail"]["message"] == "Validation error"
    assert "items" in res.json()["detail"]["field_errors"]
