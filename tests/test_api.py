import pytest
import stripe
from storefront.config import settings
from storefront.models import CheckoutDetails, Order

CART = [{"productId": "shirt-1", "name": "Home Shirt", "price": 25.0, "quantity": 2}]


@pytest.fixture
def card_enabled(monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_123")


def test_create_payment_intent_success(client, db, mocker, card_enabled):
    mock_intent = mocker.Mock()
    mock_intent.id = "pi_123"
    mock_intent.client_secret = "secret_123"
    create = mocker.patch("storefront.routes.create_payment", return_value=mock_intent)

    response = client.post("/payment/intent", json={"items": CART, "addressId": "addr-1"})

    assert response.status_code == 200
    assert response.json() == {"clientSecret": "secret_123", "paymentIntentId": "pi_123"}
    amount, currency, metadata = create.call_args[0]
    assert amount == 5000
    assert currency == "eur"
    assert metadata["addressId"] == "addr-1"

    details = db.get(CheckoutDetails, "pi_123")
    assert details.provider == "card"
    assert details.amount_cents == 5000
    assert details.status == "created"


def test_create_payment_intent_applies_coupon_server_side(client, mocker, card_enabled):
    mock_intent = mocker.Mock(id="pi_456", client_secret="secret_456")
    create = mocker.patch("storefront.routes.create_payment", return_value=mock_intent)

    response = client.post(
        "/payment/intent",
        json={
            "items": CART,
            "addressId": "addr-1",
            "coupon": {"code": "TEN", "discountPercentage": 10},
        },
    )

    assert response.status_code == 200
    assert create.call_args[0][0] == 4500


def test_create_payment_intent_when_card_not_configured(client, mocker, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", None)
    create = mocker.patch("storefront.routes.create_payment")

    response = client.post("/payment/intent", json={"items": CART, "addressId": "addr-1"})

    assert response.status_code == 503
    assert response.json()["success"] is False
    create.assert_not_called()


def test_create_payment_intent_rejects_empty_cart(client, card_enabled):
    response = client.post("/payment/intent", json={"items": [], "addressId": "addr-1"})
    assert response.status_code == 422


def test_refund_order_success(client, mocker, make_order, as_admin):
    order_id = make_order(payment_intent_id="pi_123")
    mocker.patch("storefront.orders.refund_payment", return_value=mocker.Mock(id="re_123"))

    response = client.post(f"/orders/{order_id}/refund", json={"paymentIntentId": "pi_123"})

    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Refund processed successfully"
    assert body["order"]["refunded"] is True
    assert body["order"]["refundReference"] == "re_123"
    assert body["order"]["status"] == "pending"


def test_refund_requires_admin(client, mocker, make_order):
    order_id = make_order()
    refund = mocker.patch("storefront.orders.refund_payment")

    response = client.post(f"/orders/{order_id}/refund")

    assert response.status_code == 403
    refund.assert_not_called()


def test_stripe_webhook_success(client, db, mocker, sent_emails):
    db.add(CheckoutDetails(
        id="pi_mock_123", provider="card", user_id="user-1", customer_email="buyer@example.com",
        items=CART, address_id="addr-1", amount_cents=5000, currency="eur", status="created",
    ))
    db.commit()

    mock_event = {
        "type": "payment_intent.succeeded",
        "data": {
            "object": {
                "id": "pi_mock_123",
                "amount": 5000
            }
        }
    }
    mocker.patch("stripe.Webhook.construct_event", return_value=mock_event)

    response = client.post(
        "/webhook",
        content="raw_payload",
        headers={"stripe-signature": "fake_sig"}
    )

    assert response.status_code == 200
    assert response.json() == {"ok": True}

    order = db.query(Order).filter_by(payment_intent_id="pi_mock_123").first()
    assert order is not None
    assert order.status == "pending"
    assert order.payment_provider == "card"
    assert order.amount_cents == 5000
    assert db.get(CheckoutDetails, "pi_mock_123").status == "paid"
    sent_emails.assert_called_once()


def test_stripe_webhook_replay_creates_one_order(client, db, mocker, sent_emails):
    db.add(CheckoutDetails(
        id="pi_replay", provider="card", user_id="user-1", customer_email="buyer@example.com",
        items=CART, amount_cents=5000, currency="eur", status="created",
    ))
    db.commit()

    mock_event = {"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_replay"}}}
    mocker.patch("stripe.Webhook.construct_event", return_value=mock_event)

    for _ in range(2):
        response = client.post("/webhook", content="raw", headers={"stripe-signature": "sig"})
        assert response.status_code == 200

    assert db.query(Order).filter_by(payment_intent_id="pi_replay").count() == 1
    sent_emails.assert_called_once()


def test_stripe_webhook_invalid_signature(client, mocker):
    mocker.patch("stripe.Webhook.construct_event",
                 side_effect=stripe.SignatureVerificationError("Invalid", "sig"))

    response = client.post(
        "/webhook",
        headers={"stripe-signature": "invalid_sig"}
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid signature"


def test_stripe_webhook_invalid_payload(client, mocker):
    mocker.patch("stripe.Webhook.construct_event", side_effect=ValueError("bad json"))

    response = client.post("/webhook", content="{", headers={"stripe-signature": "sig"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid payload"


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
