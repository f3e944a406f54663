"""Tests for the /stripe endpoints.

Webhook requests are signed with the test endpoint secret and verified by the
real ``stripe.Webhook.construct_event``.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from app.main import create_app

pytestmark = pytest.mark.integration


def _event_payload(event_id: str, event_type: str, data: dict) -> bytes:
    return json.dumps(
        {"id": event_id, "object": "event", "type": event_type, "data": {"object": data}}
    ).encode()


@pytest.fixture
def post_webhook(api_client, stripe_signature):
    def _post(payload: bytes, signature: str | None = None):
        headers = {"Content-Type": "application/json"}
        headers["stripe-signature"] = signature if signature is not None else stripe_signature(payload)
        return api_client.post("/stripe/webhook", content=payload, headers=headers)

    return _post


class TestProducts:
    def test_lists_recurring_plans(self, api_client, stripe_gateway):
        stripe_gateway.prices = [
            SimpleNamespace(
                id="price_monthly",
                product=SimpleNamespace(id="prod_premium", name="Premium", description=None),
                nickname=None,
                unit_amount=10000,
                currency="mxn",
                recurring=SimpleNamespace(interval="month"),
            )
        ]

        response = api_client.get("/stripe/products")

        assert response.status_code == 200
        assert response.json() == [
            {
                "priceId": "price_monthly",
                "productId": "prod_premium",
                "name": "Premium",
                "description": None,
                "unitAmount": 10000,
                "currency": "mxn",
                "interval": "month",
            }
        ]

    def test_no_prices_is_empty_list(self, api_client):
        response = api_client.get("/stripe/products")

        assert response.status_code == 200
        assert response.json() == []


class TestPaymentLink:
    def test_requires_authentication(self, api_client, stripe_gateway):
        response = api_client.get("/stripe/payment-link", params={"priceId": "price_monthly"})

        assert response.status_code == 401
        assert stripe_gateway.checkout_calls == []

    def test_requires_price_id(self, api_client, register_user, auth_headers, stripe_gateway):
        user = register_user()

        response = api_client.get("/stripe/payment-link", headers=auth_headers(user["token"]))

        assert response.status_code == 400
        assert response.json()["detail"] == "priceId is required"
        assert stripe_gateway.customer_calls == []

    def test_returns_checkout_url_and_links_customer(
        self, api_client, register_user, auth_headers, stripe_gateway, user_row
    ):
        user = register_user()

        response = api_client.get(
            "/stripe/payment-link",
            params={"priceId": "price_monthly"},
            headers=auth_headers(user["token"]),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["paymentUrl"] == "https://checkout.stripe.com/c/pay/cs_test_1"
        assert body["message"]

        (call,) = stripe_gateway.checkout_calls
        assert call["customer_id"] == "cus_test_1"
        assert call["price_id"] == "price_monthly"
        assert call["user_id"] == user["id"]
        assert call["success_url"] == "http://testserver/stripe/success?session_id={CHECKOUT_SESSION_ID}"
        assert call["cancel_url"] == "http://testserver/stripe/cancel"
        assert user_row(user["id"]).stripe_customer_id == "cus_test_1"

    def test_repeat_requests_reuse_customer(self, api_client, register_user, auth_headers, stripe_gateway):
        user = register_user()
        headers = auth_headers(user["token"])

        for _ in range(2):
            response = api_client.get("/stripe/payment-link", params={"priceId": "price_monthly"}, headers=headers)
            assert response.status_code == 200

        assert len(stripe_gateway.customer_calls) == 1
        assert [c["customer_id"] for c in stripe_gateway.checkout_calls] == ["cus_test_1", "cus_test_1"]


class TestPortal:
    def test_returns_portal_url(self, api_client, register_user, auth_headers, stripe_gateway):
        user = register_user()

        response = api_client.post("/stripe/portal", headers=auth_headers(user["token"]))

        assert response.status_code == 200
        assert response.json() == {"url": "https://billing.stripe.com/p/session/bps_test_1"}
        assert stripe_gateway.portal_calls == [{"customer_id": "cus_test_1", "return_url": "http://testserver"}]

    def test_requires_authentication(self, api_client):
        assert api_client.post("/stripe/portal").status_code == 401


class TestWebhook:
    def test_invalid_signature_changes_nothing(
        self, post_webhook, register_user, update_user, user_row, webhook_log_rows, stripe_signature
    ):
        user = register_user()
        update_user(user["id"], stripe_customer_id="cus_123", subscription_status="active")
        payload = _event_payload("evt_forged", "invoice.payment_failed", {"customer": "cus_123"})

        response = post_webhook(payload, signature=stripe_signature(payload, secret="whsec_wrong"))

        assert response.status_code == 400
        assert response.json()["error"].startswith("Webhook Error")
        assert user_row(user["id"]).subscription_status == "active"
        assert webhook_log_rows() == []

    def test_missing_signature_is_rejected(self, api_client, webhook_log_rows):
        payload = _event_payload("evt_unsigned", "invoice.payment_failed", {"customer": "cus_123"})

        response = api_client.post("/stripe/webhook", content=payload)

        assert response.status_code == 400
        assert response.json() == {"error": "Webhook Error: Missing stripe-signature header"}
        assert webhook_log_rows() == []

    def test_payment_failed_marks_past_due(self, post_webhook, register_user, update_user, user_row, webhook_log_rows):
        user = register_user()
        update_user(user["id"], stripe_customer_id="cus_123", subscription_status="active")

        response = post_webhook(_event_payload("evt_invoice", "invoice.payment_failed", {"customer": "cus_123"}))

        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert user_row(user["id"]).subscription_status == "past_due"

        (log,) = webhook_log_rows()
        assert log.stripe_event_id == "evt_invoice"
        assert log.type == "invoice.payment_failed"
        assert log.status == "processed"
        assert log.payload["data"]["object"]["customer"] == "cus_123"

    def test_checkout_to_cancellation_flow(
        self, api_client, post_webhook, register_user, auth_headers, user_row, webhook_log_rows
    ):
        user = register_user()
        api_client.get(
            "/stripe/payment-link",
            params={"priceId": "price_monthly"},
            headers=auth_headers(user["token"]),
        )

        post_webhook(
            _event_payload(
                "evt_checkout",
                "checkout.session.completed",
                {"id": "cs_test_1", "subscription": "sub_abc", "metadata": {"userId": user["id"]}},
            )
        )
        row = user_row(user["id"])
        assert row.stripe_subscription_id == "sub_abc"
        assert row.subscription_status == "active"

        post_webhook(
            _event_payload("evt_updated", "customer.subscription.updated", {"id": "sub_abc", "status": "past_due"})
        )
        assert user_row(user["id"]).subscription_status == "past_due"

        post_webhook(_event_payload("evt_deleted", "customer.subscription.deleted", {"id": "sub_abc"}))
        row = user_row(user["id"])
        assert row.stripe_subscription_id is None
        assert row.subscription_status == "canceled"

        status = api_client.get("/auth/check-auth-status", headers=auth_headers(user["token"])).json()
        assert status["subscriptionStatus"] == "canceled"
        assert [log.status for log in webhook_log_rows()] == ["processed", "processed", "processed"]

    def test_unknown_customer_is_acknowledged(self, post_webhook, webhook_log_rows):
        response = post_webhook(_event_payload("evt_nobody", "invoice.payment_failed", {"customer": "cus_nobody"}))

        assert response.status_code == 200
        assert response.json() == {"received": True}
        (log,) = webhook_log_rows()
        assert log.status == "ignored"

    def test_unhandled_event_type_is_acknowledged(self, post_webhook, webhook_log_rows):
        response = post_webhook(_event_payload("evt_created", "customer.created", {"id": "cus_1"}))

        assert response.status_code == 200
        (log,) = webhook_log_rows()
        assert log.type == "customer.created"
        assert log.status == "ignored"

    @pytest.mark.parametrize("payload", [b"[]", b'"hello"'])
    def test_signed_non_object_body_is_rejected(self, post_webhook, webhook_log_rows, payload):
        response = post_webhook(payload)

        assert response.status_code == 400
        assert response.json()["error"].startswith("Webhook Error: Invalid payload")
        assert webhook_log_rows() == []

    def test_event_without_data_object_is_logged_as_failed(self, post_webhook, webhook_log_rows):
        payload = json.dumps({"id": "evt_x", "type": "invoice.payment_failed", "data": "oops"}).encode()

        response = post_webhook(payload)

        assert response.status_code == 400
        assert response.json()["error"].startswith("Webhook Error")
        (log,) = webhook_log_rows()
        assert log.stripe_event_id == "evt_x"
        assert log.status == "failed"

    def test_non_string_user_id_is_acknowledged(
        self, post_webhook, register_user, user_row, webhook_log_rows
    ):
        user = register_user()
        payload = _event_payload(
            "evt_y", "checkout.session.completed", {"subscription": "sub_1", "metadata": {"userId": 42}}
        )

        response = post_webhook(payload)

        assert response.status_code == 200
        assert user_row(user["id"]).subscription_status == "inactive"
        (log,) = webhook_log_rows()
        assert log.status == "ignored"

    def test_handler_failure_returns_400_and_logs(
        self, api_client, post_webhook, register_user, update_user, webhook_log_rows
    ):
        user = register_user()
        update_user(user["id"], stripe_customer_id="cus_123")
        billing = api_client.app.state.billing_service

        with patch.object(
            billing,
            "_update_one_user",
            new_callable=AsyncMock,
            side_effect=RuntimeError("database went away"),
        ):
            response = post_webhook(_event_payload("evt_boom", "invoice.payment_failed", {"customer": "cus_123"}))

        assert response.status_code == 400
        assert "database went away" in response.json()["error"]
        (log,) = webhook_log_rows()
        assert log.status == "failed"
        assert log.error_message == "database went away"

    def test_unconfigured_secret_is_rejected(self, settings, stripe_gateway, stripe_signature):
        stripe_gateway.webhook_secret = ""
        app = create_app(settings, gateway=stripe_gateway)
        payload = _event_payload("evt_any", "invoice.payment_failed", {"customer": "cus_123"})

        with TestClient(app) as client:
            response = client.post(
                "/stripe/webhook",
                content=payload,
                headers={"stripe-signature": stripe_signature(payload)},
            )

        assert response.status_code == 400
        assert response.json() == {"error": "Webhook Error: Webhook signing secret is not configured"}


class TestCheckoutOutcome:
    def test_success_page(self, api_client):
        response = api_client.get("/stripe/success", params={"session_id": "cs_test_1"})

        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_cancel_page(self, api_client):
        response = api_client.get("/stripe/cancel")

        assert response.status_code == 200
        assert response.json()["success"] is False
