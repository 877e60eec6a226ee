"""HTTP contract for /api/credits."""
import pytest

from arcade.api.deps import get_payment_provider
from arcade.features.billing.stripe_provider import StripeProvider
from arcade.features.credits import ledger
from arcade.main import app
from arcade.tests.mocks import WEBHOOK_SECRET, checkout_completed_event, make_jwt, stripe_signature


@pytest.fixture
def stripe_webhooks(client):
    """Route webhooks through a real StripeProvider so signatures are checked."""
    provider = StripeProvider(secret_key="sk_test_dummy", webhook_secret=WEBHOOK_SECRET)
    app.dependency_overrides[get_payment_provider] = lambda: provider
    return provider


def _save_run(client, headers, wave=5):
    token = client.post("/api/saves/session", headers=headers).json()["token"]
    resp = client.put(
        "/api/saves",
        headers=headers,
        json={"sessionToken": token, "saveData": {"hp": 50}, "wave": wave, "gameState": "playing"},
    )
    assert resp.status_code == 200


def test_balance_requires_auth(client):
    resp = client.get("/api/credits")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


def test_expired_jwt_rejected(client):
    token = make_jwt("user_alice", expires_in=-10)
    resp = client.get("/api/credits", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


def test_jwt_signed_with_other_secret_rejected(client):
    token = make_jwt("user_alice", secret="not-the-secret-0123456789abcdef0123")
    resp = client.get("/api/credits", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


def test_new_user_balance(client, auth_headers):
    resp = client.get("/api/credits", headers=auth_headers())
    assert resp.status_code == 200
    assert resp.json() == {"credits": {"freeRemaining": 3, "purchased": 0, "total": 3}}


def test_continue_then_redeem(client, auth_headers):
    headers = auth_headers()
    _save_run(client, headers)

    resp = client.post("/api/credits/continue", headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["save"]["wave"] == 5
    assert body["save"]["hp"] == 50
    assert body["creditBalance"]["total"] == 2

    redeem = client.post("/api/credits/redeem", headers=headers, json={"continueToken": body["continueToken"]})
    assert redeem.status_code == 200
    assert redeem.json() == {"ok": True}

    again = client.post("/api/credits/redeem", headers=headers, json={"continueToken": body["continueToken"]})
    assert again.status_code == 403
    assert again.json()["error"]["code"] == "invalid_continue_token"


def test_continue_without_save_is_404_and_refunded(client, auth_headers):
    headers = auth_headers()
    resp = client.post("/api/credits/continue", headers=headers)

    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "no_save"
    assert client.get("/api/credits", headers=headers).json()["credits"]["total"] == 3


def test_continue_without_credits_is_402(client, auth_headers, engine):
    headers = auth_headers()
    _save_run(client, headers)
    for _ in range(3):
        ledger.deduct(engine, "user_alice")

    resp = client.post("/api/credits/continue", headers=headers)
    assert resp.status_code == 402
    assert resp.json()["error"]["code"] == "insufficient_credits"


def test_redeem_token_of_other_user_rejected(client, auth_headers):
    alice = auth_headers("user_alice")
    _save_run(client, alice)
    token = client.post("/api/credits/continue", headers=alice).json()["continueToken"]

    resp = client.post("/api/credits/redeem", headers=auth_headers("user_bob"), json={"continueToken": token})
    assert resp.status_code == 403


def test_redeem_requires_token_in_body(client, auth_headers):
    resp = client.post("/api/credits/redeem", headers=auth_headers(), json={})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"


def test_continue_is_rate_limited_per_user(client, auth_headers, monkeypatch):
    from arcade.core.config import settings

    monkeypatch.setattr(settings, "CONTINUE_RATE_LIMIT_PER_MINUTE", 2)
    alice = auth_headers("user_alice")

    statuses = [client.post("/api/credits/continue", headers=alice).status_code for _ in range(3)]
    assert statuses[:2] == [404, 404]
    assert statuses[2] == 429

    limited = client.post("/api/credits/continue", headers=alice)
    assert limited.json()["error"]["code"] == "rate_limited"
    assert limited.headers.get("Retry-After")

    # Other users have their own bucket
    assert client.post("/api/credits/continue", headers=auth_headers("user_bob")).status_code == 404


def test_checkout_rejects_foreign_redirect_host(client, auth_headers, payment_provider):
    resp = client.post(
        "/api/credits/checkout",
        headers=auth_headers(),
        json={"successUrl": "https://evil.example/x", "cancelUrl": "https://game.example/cancel"},
    )

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"
    payment_provider.create_checkout_session.assert_not_called()


def test_checkout_returns_session(client, auth_headers, payment_provider):
    resp = client.post(
        "/api/credits/checkout",
        headers=auth_headers("user_alice", email="alice@example.com"),
        json={"successUrl": "https://game.example/ok", "cancelUrl": "https://game.example/cancel"},
    )

    assert resp.status_code == 200
    assert resp.json() == {"url": "https://checkout.stripe.com/c/pay/cs_test_123", "sessionId": "cs_test_123"}
    kwargs = payment_provider.create_checkout_session.call_args.kwargs
    assert kwargs["customer_email"] == "alice@example.com"
    assert kwargs["metadata"]["userId"] == "user_alice"


def test_checkout_is_rate_limited(client, auth_headers):
    body = {"successUrl": "https://game.example/ok", "cancelUrl": "https://game.example/cancel"}
    statuses = [client.post("/api/credits/checkout", headers=auth_headers(), json=body).status_code for _ in range(4)]
    assert statuses == [200, 200, 200, 429]


def test_webhook_grants_and_history_shows_purchase(client, stripe_webhooks, auth_headers):
    payload = checkout_completed_event()
    resp = client.post(
        "/api/credits/webhook",
        content=payload,
        headers={"stripe-signature": stripe_signature(payload), "content-type": "application/json"},
    )
    assert resp.status_code == 200
    assert resp.json() == {"received": True}

    headers = auth_headers()
    assert client.get("/api/credits", headers=headers).json()["credits"]["purchased"] == 10
    history = client.get("/api/credits/history", headers=headers).json()
    assert [(row["kind"], row["amount"], row["externalRef"]) for row in history] == [("purchase", 10, "cs_test_123")]


def test_webhook_bad_signature_is_400(client, stripe_webhooks):
    payload = checkout_completed_event()
    resp = client.post(
        "/api/credits/webhook",
        content=payload,
        headers={"stripe-signature": stripe_signature(payload, secret="whsec_wrong")},
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_signature"


def test_webhook_with_unusable_metadata_is_acknowledged(client, stripe_webhooks):
    payload = checkout_completed_event(metadata={})
    resp = client.post("/api/credits/webhook", content=payload, headers={"stripe-signature": stripe_signature(payload)})
    assert resp.status_code == 200
