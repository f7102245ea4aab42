import json
from decimal import Decimal

import pytest

from storefront.orders import repository as orders_repository
from storefront.payments import repository as payments_repository
from storefront.payments.models import GatewayCallback

HOOK = "/api/v1/payments/webhook"
SIGNED = {"X-Fake-Signature": "test-signature", "Content-Type": "application/json"}


@pytest.fixture
def pending_order(orders_repo, sessions_repo, fake_gateway):
    # La passerelle confirme le paiement de tx-1 lors de la vérification
    fake_gateway.set_result(GatewayCallback(tx_ref="tx-1", status="success", amount=Decimal("1000"), currency="MWK"))
    orders_repo.add({
        "id": "o1",
        "order_number": "ORD-1",
        "status": "pending",
        "customer_email": "chikondi@example.com",
        "pricing": {"total": 1000.0, "currency": "MWK"},
    })
    sessions_repo.add(tx_ref="tx-1", transaction_id="tx-1", order_id="o1", amount=Decimal("1000"),
                      currency="MWK", gateway="fake")
    return orders_repo


@pytest.fixture
def real_repos_on_fakes(monkeypatch, orders_repo, sessions_repo):
    """Les vues qui lisent directement les dépôts voient les doublures."""
    monkeypatch.setattr(orders_repository, "get_order", orders_repo.get_order)
    monkeypatch.setattr(payments_repository, "insert_session", sessions_repo.insert_session)
    monkeypatch.setattr(payments_repository, "get_session_by_tx_ref", sessions_repo.get_session_by_tx_ref)


def _hook_body(**fields):
    body = {"tx_ref": "tx-1", "status": "success", "amount": 1000, "currency": "MWK"}
    body.update(fields)
    return json.dumps(body)


# --- Ouverture de session ---

def test_create_session_for_pending_order(wired, pending_order, real_repos_on_fakes, fake_gateway, sessions_repo):
    # Arrange
    payload = {"orderId": "o1", "amount": 1000, "currency": "MWK",
               "customerEmail": "chikondi@example.com", "customerName": "Chikondi Banda"}
    # Act
    res = wired.post("/api/v1/payments", json=payload)
    # Assert
    assert res.status_code == 200, res.text
    data = res.json()["data"]
    assert data["checkoutUrl"].startswith("https://pay.example.test/checkout/")
    assert data["txRef"] == data["transactionId"]
    assert sessions_repo.rows[data["txRef"]].order_id == "o1"
    call = fake_gateway.calls[-1]
    assert call["callback_url"].endswith(HOOK)
    assert call["metadata"]["orderId"] == "o1"


def test_create_session_amount_must_match_total(wired, pending_order, real_repos_on_fakes, fake_gateway):
    payload = {"orderId": "o1", "amount": 10, "customerEmail": "chikondi@example.com"}
    res = wired.post("/api/v1/payments", json=payload)
    assert res.status_code == 400
    assert res.json()["code"] == "amount_mismatch"
    assert fake_gateway.calls == []


def test_create_session_unknown_order(wired, real_repos_on_fakes):
    res = wired.post("/api/v1/payments", json={"orderId": "nope", "amount": 10, "customerEmail": "a@example.com"})
    assert res.status_code == 404


def test_create_session_requires_exactly_one_target(wired):
    res = wired.post("/api/v1/payments", json={"orderId": "o1", "bookingId": "b1", "amount": 10, "customerEmail": "a@example.com"})
    assert res.status_code == 422


# --- Webhook ---

def test_webhook_marks_order_paid_once(wired, pending_order, ledger):
    # Act
    first = wired.post(HOOK, content=_hook_body(), headers=SIGNED)
    second = wired.post(HOOK, content=_hook_body(), headers=SIGNED)
    # Assert
    assert first.status_code == 200
    assert first.json()["status"] == "ok"
    assert first.json()["outcome"] == "paid"
    assert second.json()["outcome"] == "duplicate"
    assert pending_order.get_order("o1")["status"] == "paid"
    assert list(ledger.entries) == ["payment_tx-1"]


def test_webhook_with_bad_signature_is_rejected(wired, pending_order):
    res = wired.post(HOOK, content=_hook_body(), headers={"X-Fake-Signature": "forged"})
    assert res.status_code == 400
    assert res.json()["code"] == "invalid_signature"
    assert pending_order.get_order("o1")["status"] == "pending"


def test_webhook_without_transaction_is_ignored(wired):
    res = wired.post(HOOK, content=json.dumps({"event": "ping"}), headers=SIGNED)
    assert res.status_code == 200
    assert res.json() == {"status": "ignored"}


def test_webhook_asks_for_retry_when_gateway_unreachable(wired, pending_order, fake_gateway):
    fake_gateway.configure(should_succeed=False)
    res = wired.post(HOOK, content=_hook_body(), headers=SIGNED)
    assert res.status_code == 502
    assert res.json()["status"] == "retry"
    assert pending_order.get_order("o1")["status"] == "pending"


def test_webhook_is_not_subject_to_csrf(wired, pending_order):
    wired.cookies.set("sb_access", "token")
    res = wired.post(HOOK, content=_hook_body(), headers=SIGNED)
    assert res.status_code == 200


# --- Retour navigateur et vérification ---

def test_return_redirects_to_order_confirmation(wired, pending_order, real_repos_on_fakes):
    res = wired.get(HOOK, params={"tx_ref": "tx-1"}, follow_redirects=False)
    assert res.status_code == 302
    assert res.headers["location"] == "/order-confirmed?orderId=o1&txRef=tx-1"


def test_return_without_reference_goes_home(wired):
    res = wired.get(HOOK, follow_redirects=False)
    assert res.status_code == 302
    assert res.headers["location"] == "/"


def test_verify_reconciles_with_gateway(wired, pending_order, fake_gateway):
    # Act
    res = wired.get("/api/v1/payments/verify", params={"txRef": "tx-1"})
    # Assert
    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert body["data"]["outcome"] == "paid"
    assert body["data"]["orderId"] == "o1"


def test_verify_unknown_transaction_is_404(wired):
    res = wired.get("/api/v1/payments/verify", params={"txRef": "tx-ghost"})
    assert res.status_code == 404
