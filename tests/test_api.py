from __future__ import annotations

from types import SimpleNamespace

import pytest
import stripe
from fastapi.testclient import TestClient

from esyasil.api.app import create_app
from esyasil.api.dependencies import build_container
from esyasil.config import Settings
from esyasil.errors import ConfigurationError, GenerationFailure
from esyasil.models.user import AuthenticatedUser, SubscriptionStatus, UserAccount

from conftest import WEBHOOK_SECRET, FakeDispatcher, FakeVerifier, sign, webhook_event

ALICE = AuthenticatedUser(uid="alice", email="alice@example.com", display_name="Alice")
ADMIN = AuthenticatedUser(uid="admin")
AUTH = {"Authorization": "Bearer alice-token"}


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        _env_file=None,
        mongo_uri=None,
        ledger_log_path=tmp_path / "ledger.log",
        stripe_webhook_secret=WEBHOOK_SECRET,
        stripe_secret_key="sk_test_123",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def container(tmp_path):
    return build_container(
        make_settings(tmp_path),
        dispatcher=FakeDispatcher(
            failures={
                "broken": RuntimeError("boom"),
                "empty": GenerationFailure("model returned no image"),
            }
        ),
        verifier=FakeVerifier({"alice-token": ALICE, "admin-token": ADMIN}),
    )


@pytest.fixture
def client(container):
    with TestClient(create_app(container=container)) as client:
        yield client


def seed(client, container, **fields):
    client.portal.call(container.db.create_user_if_absent, UserAccount(**fields))


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_process_images_returns_ordered_results(client, container):
    seed(client, container, id="alice", credits=5)

    resp = client.post("/processImages", json={"images": ["a", "b"]}, headers=AUTH)

    assert resp.status_code == 200
    results = resp.json()["results"]
    assert [r["index"] for r in results] == [0, 1]
    assert [r["status"] for r in results] == ["success", "success"]
    assert [r["data"] for r in results] == ["done-a", "done-b"]
    assert client.portal.call(container.db.get_user, "alice").credits == 3


def test_results_carry_only_data_or_error(client, container):
    seed(client, container, id="alice", credits=5)

    resp = client.post("/processImages", json={"images": ["a", "empty"]}, headers=AUTH)

    assert resp.status_code == 200
    assert resp.json()["results"] == [
        {"status": "success", "index": 0, "data": "done-a"},
        {"status": "error", "index": 1, "error": "processing failed"},
    ]


def test_first_batch_without_profile_call_gets_initial_grant(client):
    resp = client.post("/processImages", json={"images": ["a", "b", "c"]}, headers=AUTH)

    assert resp.status_code == 200
    body = client.get("/me", headers=AUTH).json()
    assert body["credits"] == 2
    assert body["email"] == "alice@example.com"


@pytest.mark.parametrize("images", [[], ["x"] * 6])
def test_invalid_batch_size_is_bad_request(client, container, images):
    resp = client.post("/processImages", json={"images": images}, headers=AUTH)

    assert resp.status_code == 400
    assert client.portal.call(container.db.count_usage_logs) == 0


def test_process_images_requires_token(client):
    resp = client.post("/processImages", json={"images": ["a"]})
    assert resp.status_code == 401

    resp = client.post(
        "/processImages", json={"images": ["a"]}, headers={"Authorization": "Bearer nope"}
    )
    assert resp.status_code == 401


def test_insufficient_credits_is_forbidden(client, container):
    seed(client, container, id="alice", credits=1)

    resp = client.post("/processImages", json={"images": ["a", "b"]}, headers=AUTH)

    assert resp.status_code == 403
    assert resp.json()["detail"] == "Insufficient credits. Please subscribe."
    assert client.portal.call(container.db.get_user, "alice").credits == 1


def test_unexpected_failure_is_generic_server_error(client, container):
    seed(client, container, id="alice", credits=5)

    resp = client.post("/processImages", json={"images": ["broken"]}, headers=AUTH)

    assert resp.status_code == 500
    assert resp.json()["detail"] == "Server error"
    account = client.portal.call(container.db.get_user, "alice")
    assert account.credits == 5
    assert account.reserved_credits == 0


def test_webhook_grants_subscription(client, container):
    payload = webhook_event(
        "checkout.session.completed", {"client_reference_id": "alice", "customer": "cus_1"}
    )

    resp = client.post(
        "/stripeWebhook", content=payload, headers={"Stripe-Signature": sign(payload)}
    )

    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    assert client.portal.call(container.db.get_user, "alice").is_subscribed


def test_webhook_with_bad_signature_is_rejected(client, container):
    payload = webhook_event("checkout.session.completed", {"client_reference_id": "alice"})

    resp = client.post(
        "/stripeWebhook",
        content=payload,
        headers={"Stripe-Signature": sign(payload, secret="whsec_wrong")},
    )

    assert resp.status_code == 400
    assert resp.json()["detail"].startswith("Webhook error:")
    assert client.portal.call(container.db.get_user, "alice") is None


def test_create_checkout_session(client, monkeypatch):
    monkeypatch.setattr(
        stripe.checkout.Session,
        "create",
        lambda **kwargs: SimpleNamespace(url="https://checkout.example/s"),
    )

    resp = client.post("/createCheckoutSession", headers=AUTH)

    assert resp.status_code == 200
    assert resp.json() == {"url": "https://checkout.example/s"}


def test_create_checkout_session_requires_token(client):
    assert client.post("/createCheckoutSession").status_code == 401


def test_me_creates_default_account(client, container):
    resp = client.get("/me", headers=AUTH)

    assert resp.status_code == 200
    body = resp.json()
    assert body["uid"] == "alice"
    assert body["credits"] == 5
    assert body["displayName"] == "Alice"
    assert body["subscriptionStatus"] == "none"

    # A second login keeps the balance instead of regranting
    client.portal.call(container.entitlements.consume, "alice", 2)
    assert client.get("/me", headers=AUTH).json()["credits"] == 3


def test_admin_stats(client, container):
    seed(client, container, id="alice", credits=5)
    seed(client, container, id="bob", subscription_status=SubscriptionStatus.ACTIVE)
    client.post("/processImages", json={"images": ["a", "b", "c"]}, headers=AUTH)
    client.post("/processImages", json={"images": ["d"]}, headers=AUTH)

    resp = client.get("/adminStats", headers=AUTH)

    assert resp.status_code == 200
    assert resp.json() == {
        "totalUsers": 2,
        "totalProcessedBatches": 2,
        "totalProcessedImages": 4,
    }
    assert client.post("/adminStats", headers=AUTH).status_code == 200


def test_admin_stats_restricted_to_admins(tmp_path):
    container = build_container(
        make_settings(tmp_path, admin_user_ids=["admin"]),
        dispatcher=FakeDispatcher(),
        verifier=FakeVerifier({"alice-token": ALICE, "admin-token": ADMIN}),
    )
    with TestClient(create_app(container=container)) as client:
        assert client.get("/adminStats", headers=AUTH).status_code == 403
        resp = client.get("/adminStats", headers={"Authorization": "Bearer admin-token"})
        assert resp.status_code == 200


def test_container_requires_model_key_without_dispatcher(tmp_path):
    with pytest.raises(ConfigurationError):
        build_container(make_settings(tmp_path, gemini_api_key=None), verifier=FakeVerifier())
