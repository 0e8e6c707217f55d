import base64
import hashlib
import hmac
import logging
from urllib.parse import urlencode

from fastapi.testclient import TestClient
from sqlalchemy.exc import SQLAlchemyError

from marketplace.main import app
from marketplace.crud import crud_order, crud_payment
from marketplace.services.payments.providers.base import mint_reference
from marketplace.services.payments.providers.formpay import sign_fields
from payment_helpers import (
    FORMPAY_MERCHANT_ID,
    FORMPAY_PASSPHRASE,
    cardlink_event,
    cardlink_headers,
    link_response,
    qrpay_event,
)

CARDLINK_HOOK = "/api/v1/payments/cardlink/webhook"
QRPAY_HOOK = "/api/v1/payments/qrpay/webhook"
FORMPAY_NOTIFY = "/api/v1/payments/formpay/notify"


def _initiate(client, provider, order_id, amount="299.99"):
    res = client.post(
        f"/api/v1/payments/{provider}/initiate",
        json={"orderId": order_id, "amount": amount, "description": "Beaded necklace"},
    )
    assert res.status_code == 200, res.text
    return res.json()["paymentId"]


def _post_cardlink(client, body, headers=None):
    return client.post(CARDLINK_HOOK, content=body, headers=headers or cardlink_headers(body))


def _post_qrpay(client, body):
    return client.post(QRPAY_HOOK, content=body, headers={"content-type": "application/json"})


def _state(session_factory, order_id):
    db = session_factory()
    order = crud_order.get_order(db, order_id)
    record = crud_payment.get_by_order(db, order_id)
    snapshot = (
        order.status,
        order.payment_status,
        None if record is None else (record.provider_reference, record.status),
    )
    db.close()
    return snapshot


# ── CardLink ─────────────────────────────────────────────────────────────────


def test_paid_webhook_settles_order_once(
    session_factory, settings_override, buyer, act_as, make_order, fake_cardlink
):
    settings_override()
    act_as(buyer)
    order_id = make_order(buyer, "299.99")
    client = TestClient(app)

    reference = _initiate(client, "cardlink", order_id)
    assert _state(session_factory, order_id) == ("pending_payment", "pending", (reference, "pending"))

    body = cardlink_event(order_id, reference)
    for _ in range(3):
        res = _post_cardlink(client, body)
        assert res.status_code == 200
        assert res.json() == {"success": True}
        assert _state(session_factory, order_id) == ("processing", "paid", (reference, "paid"))


def test_base64_signature_is_accepted(
    session_factory, settings_override, buyer, act_as, make_order, fake_cardlink
):
    cfg = settings_override()
    act_as(buyer)
    order_id = make_order(buyer)
    client = TestClient(app)
    reference = _initiate(client, "cardlink", order_id)

    body = cardlink_event(order_id, reference)
    digest = hmac.new(
        cfg.CARDLINK_WEBHOOK_SECRET.encode(), b"1760659200" + body, hashlib.sha256
    ).digest()
    headers = {
        "content-type": "application/json",
        "X-CardLink-Signature": base64.b64encode(digest).decode(),
        "X-CardLink-Timestamp": "1760659200",
    }
    assert _post_cardlink(client, body, headers).status_code == 200
    assert _state(session_factory, order_id)[1] == "paid"


def test_forged_signature_is_acked_but_ignored(
    session_factory, settings_override, buyer, act_as, make_order, fake_cardlink
):
    settings_override()
    act_as(buyer)
    order_id = make_order(buyer)
    client = TestClient(app)
    reference = _initiate(client, "cardlink", order_id)

    body = cardlink_event(order_id, reference)
    forged = cardlink_headers(body, secret="not-the-secret")
    res = _post_cardlink(client, body, forged)
    assert res.status_code == 200
    assert res.json() == {"success": True}
    assert _state(session_factory, order_id) == ("pending_payment", "pending", (reference, "pending"))

    headers = cardlink_headers(body)
    del headers["x-cardlink-timestamp"]
    assert _post_cardlink(client, body, headers).status_code == 200
    assert _state(session_factory, order_id)[1] == "pending"


def test_unsigned_webhook_is_rejected_when_secret_missing(
    session_factory, settings_override, buyer, act_as, make_order, fake_cardlink
):
    settings_override(CARDLINK_WEBHOOK_SECRET="")
    act_as(buyer)
    order_id = make_order(buyer)
    client = TestClient(app)
    reference = _initiate(client, "cardlink", order_id)

    res = _post_cardlink(client, cardlink_event(order_id, reference))
    assert res.status_code == 200
    assert _state(session_factory, order_id)[1] == "pending"


def test_malformed_body_gets_400(session_factory, settings_override):
    settings_override()
    client = TestClient(app)

    res = _post_cardlink(client, b"not json at all")
    assert res.status_code == 400
    assert res.json() == {"success": False, "error": "malformed"}

    res = _post_cardlink(client, b'{"type": "payment.succeeded", "data": {"status": "succeeded"}}')
    assert res.status_code == 400


def test_reinitiation_pins_the_new_reference(
    session_factory, settings_override, buyer, act_as, make_order, fake_cardlink
):
    settings_override()
    act_as(buyer)
    order_id = make_order(buyer)
    fake_cardlink.responses = [link_response("lnk_1"), link_response("lnk_2")]
    client = TestClient(app)

    first = _initiate(client, "cardlink", order_id)
    assert _post_cardlink(client, cardlink_event(order_id, first, status="failed")).status_code == 200
    assert _state(session_factory, order_id) == ("failed", "failed", ("lnk_1", "failed"))

    second = _initiate(client, "cardlink", order_id)
    assert second == "lnk_2"
    assert _state(session_factory, order_id) == ("pending_payment", "pending", ("lnk_2", "pending"))

    # A late success for the superseded link does not settle the order
    assert _post_cardlink(client, cardlink_event(order_id, first)).status_code == 200
    assert _state(session_factory, order_id) == ("pending_payment", "pending", ("lnk_2", "pending"))

    assert _post_cardlink(client, cardlink_event(order_id, second)).status_code == 200
    assert _state(session_factory, order_id) == ("processing", "paid", ("lnk_2", "paid"))


def test_cancel_policy_closes_the_order(
    session_factory, settings_override, buyer, act_as, make_order, fake_cardlink
):
    settings_override(FAILED_PAYMENT_POLICY="cancel")
    act_as(buyer)
    order_id = make_order(buyer)
    client = TestClient(app)
    reference = _initiate(client, "cardlink", order_id)

    res = _post_cardlink(client, cardlink_event(order_id, reference, status="cancelled"))
    assert res.status_code == 200
    assert _state(session_factory, order_id) == ("cancelled", "failed", (reference, "cancelled"))

    res = client.post(
        "/api/v1/payments/cardlink/initiate",
        json={"orderId": order_id, "amount": "299.99"},
    )
    assert res.status_code == 409


def test_paid_order_never_reverts(
    session_factory, settings_override, buyer, act_as, make_order, fake_cardlink
):
    settings_override()
    act_as(buyer)
    order_id = make_order(buyer)
    client = TestClient(app)
    reference = _initiate(client, "cardlink", order_id)

    assert _post_cardlink(client, cardlink_event(order_id, reference)).status_code == 200
    res = _post_cardlink(client, cardlink_event(order_id, reference, status="failed"))
    assert res.status_code == 200
    assert _state(session_factory, order_id) == ("processing", "paid", (reference, "paid"))


def test_unrecognized_status_is_a_no_op(
    session_factory, settings_override, buyer, act_as, make_order, fake_cardlink
):
    settings_override()
    act_as(buyer)
    order_id = make_order(buyer)
    client = TestClient(app)
    reference = _initiate(client, "cardlink", order_id)

    res = _post_cardlink(client, cardlink_event(order_id, reference, status="processing"))
    assert res.status_code == 200
    assert _state(session_factory, order_id) == ("pending_payment", "pending", (reference, "pending"))


def test_store_failure_asks_provider_to_redeliver(
    session_factory, settings_override, buyer, act_as, make_order, fake_cardlink, monkeypatch
):
    settings_override()
    act_as(buyer)
    order_id = make_order(buyer)
    client = TestClient(app)
    reference = _initiate(client, "cardlink", order_id)
    body = cardlink_event(order_id, reference)

    def boom(*args, **kwargs):
        raise SQLAlchemyError("database is locked")

    with monkeypatch.context() as m:
        m.setattr(crud_order, "mark_paid", boom)
        res = _post_cardlink(client, body)
    assert res.status_code == 503

    # Redelivery completes the transition
    assert _post_cardlink(client, body).status_code == 200
    assert _state(session_factory, order_id) == ("processing", "paid", (reference, "paid"))


# ── QRPay ────────────────────────────────────────────────────────────────────


def test_qrpay_scenario_paid(session_factory, settings_override, buyer, act_as, make_order):
    settings_override()
    act_as(buyer)
    order_id = make_order(buyer, "299.99")
    client = TestClient(app)
    reference = _initiate(client, "qrpay", order_id)

    res = _post_qrpay(client, qrpay_event(reference))
    assert res.status_code == 200
    assert _state(session_factory, order_id) == ("processing", "paid", (reference, "paid"))

    res = _post_qrpay(client, qrpay_event(reference))
    assert res.status_code == 200
    assert res.json() == {"success": True}
    assert _state(session_factory, order_id) == ("processing", "paid", (reference, "paid"))


def test_reference_conflict_is_logged_and_ignored(
    session_factory, settings_override, buyer, act_as, make_order, caplog
):
    settings_override()
    act_as(buyer)
    order_id = make_order(buyer)
    client = TestClient(app)
    r1 = _initiate(client, "qrpay", order_id)
    r2 = mint_reference("QRPAY", order_id, now_ms=1)
    assert r1 != r2

    caplog.set_level(logging.ERROR, logger="marketplace.services.payments.reconciler")
    res = _post_qrpay(client, qrpay_event(r2))
    assert res.status_code == 200
    assert _state(session_factory, order_id) == ("pending_payment", "pending", (r1, "pending"))

    conflicts = [
        r for r in caplog.records
        if r.levelno == logging.ERROR and "reference conflict" in r.getMessage()
    ]
    assert len(conflicts) == 1
    assert r1 in conflicts[0].getMessage()
    assert r2 in conflicts[0].getMessage()


def test_qrpay_cross_checks_are_enforced(
    session_factory, settings_override, buyer, act_as, make_order
):
    settings_override()
    act_as(buyer)
    order_id = make_order(buyer, "299.99")
    client = TestClient(app)
    reference = _initiate(client, "qrpay", order_id)

    rejected = [
        qrpay_event(reference, merchant_id="M-00000"),
        qrpay_event(reference, amount=100),
        qrpay_event(mint_reference("QRPAY", "no-such-order", now_ms=5)),
        qrpay_event(f"OTHER-{order_id}-5"),
    ]
    for body in rejected:
        res = _post_qrpay(client, body)
        assert res.status_code == 200
        assert _state(session_factory, order_id)[1] == "pending"

    assert _post_qrpay(client, qrpay_event(reference, amount=None)).status_code == 400
    assert _post_qrpay(client, b"[]").status_code == 400


def test_qrpay_non_finite_amount_is_malformed(
    session_factory, settings_override, buyer, act_as, make_order
):
    settings_override()
    act_as(buyer)
    order_id = make_order(buyer, "299.99")
    client = TestClient(app)
    reference = _initiate(client, "qrpay", order_id)

    huge = qrpay_event(reference).replace(b'"amount": 29999', b'"amount": 1e400')
    for body in (qrpay_event(reference, amount="Infinity"), huge):
        res = _post_qrpay(client, body)
        assert res.status_code == 400
        assert res.json() == {"success": False, "error": "malformed"}
    assert _state(session_factory, order_id)[1] == "pending"


def test_missing_record_is_recreated_from_webhook(
    session_factory, settings_override, buyer, act_as, make_order, monkeypatch
):
    settings_override()
    act_as(buyer)
    order_id = make_order(buyer)

    def boom(*args, **kwargs):
        raise SQLAlchemyError("disk I/O error")

    client = TestClient(app)
    with monkeypatch.context() as m:
        m.setattr(crud_payment, "upsert_for_order", boom)
        reference = _initiate(client, "qrpay", order_id)
    assert _state(session_factory, order_id) == ("pending_payment", "pending", None)

    res = _post_qrpay(client, qrpay_event(reference))
    assert res.status_code == 200
    assert _state(session_factory, order_id) == ("processing", "paid", (reference, "paid"))

    db = session_factory()
    record = crud_payment.get_by_order(db, order_id)
    assert record.provider_metadata["created_by"] == "webhook"
    db.close()


def test_failed_qrpay_payment_can_be_retried(
    session_factory, settings_override, buyer, act_as, make_order
):
    settings_override()
    act_as(buyer)
    order_id = make_order(buyer)
    client = TestClient(app)
    reference = _initiate(client, "qrpay", order_id)

    assert _post_qrpay(client, qrpay_event(reference, status="declined")).status_code == 200
    assert _state(session_factory, order_id) == ("failed", "failed", (reference, "failed"))

    res = client.get(f"/api/v1/orders/{order_id}/status")
    assert res.json()["status"] == "failed"

    retry = _initiate(client, "formpay", order_id)
    assert retry.startswith(f"FORMPAY-{order_id}-")
    assert _state(session_factory, order_id) == ("pending_payment", "pending", (retry, "pending"))


# ── FormPay ──────────────────────────────────────────────────────────────────


def _formpay_notification(reference, order_id, status="COMPLETE", amount="299.99", passphrase=FORMPAY_PASSPHRASE):
    fields = {
        "m_payment_id": reference,
        "fp_payment_id": "1089250",
        "payment_status": status,
        "item_name": "Beaded necklace",
        "amount_gross": amount,
        "amount_fee": "-6.90",
        "amount_net": "293.09",
        "custom_str1": order_id,
        "name_first": "Thandi",
        "email_address": "buyer@test.com",
        "merchant_id": FORMPAY_MERCHANT_ID,
    }
    fields["signature"] = sign_fields(fields, passphrase)
    return urlencode(fields)


def _post_formpay(client, body):
    return client.post(
        FORMPAY_NOTIFY,
        content=body,
        headers={"content-type": "application/x-www-form-urlencoded"},
    )


def test_formpay_notification_settles_order(
    session_factory, settings_override, buyer, act_as, make_order
):
    settings_override()
    act_as(buyer)
    order_id = make_order(buyer)
    client = TestClient(app)
    reference = _initiate(client, "formpay", order_id)

    res = _post_formpay(client, _formpay_notification(reference, order_id))
    assert res.status_code == 200
    assert _state(session_factory, order_id) == ("processing", "paid", (reference, "paid"))


def test_formpay_bad_signature_and_amount_are_ignored(
    session_factory, settings_override, buyer, act_as, make_order
):
    settings_override()
    act_as(buyer)
    order_id = make_order(buyer)
    client = TestClient(app)
    reference = _initiate(client, "formpay", order_id)

    for body in (
        _formpay_notification(reference, order_id, passphrase="wrong"),
        _formpay_notification(reference, order_id, amount="2.99"),
        _formpay_notification(reference, "another-order"),
    ):
        res = _post_formpay(client, body)
        assert res.status_code == 200
        assert _state(session_factory, order_id)[1] == "pending"

    assert _post_formpay(client, _formpay_notification(reference, order_id, amount="n/a")).status_code == 400
