"""Stripe integration: customers, hosted checkout, customer portal, webhooks.

Thin wrapper over the ``stripe`` SDK async resource methods. The secret key is
passed per call instead of being assigned to the module-global
``stripe.api_key``, so several gateways with different keys can coexist.
"""

import json
from dataclasses import dataclass

import stripe

from app.core.config import Settings
from app.core.exceptions import WebhookVerificationError


@dataclass(frozen=True)
class HostedSession:
    """Provider-hosted page (checkout or portal) the user is redirected to."""

    id: str
    url: str


class StripeGateway:
    """Client for the Stripe operations the billing service needs."""

    def __init__(self, secret_key: str, webhook_secret: str):
        """Initialize Stripe gateway.

        Args:
            secret_key: Stripe secret API key (``sk_...``)
            webhook_secret: signing secret of the webhook endpoint (``whsec_...``)
        """
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeGateway":
        return cls(settings.stripe_secret_key, settings.stripe_webhook_secret)

    async def create_customer(self, email: str, name: str, user_id: str) -> str:
        """Create a Stripe customer tagged with the local user id; return its id."""
        customer = await stripe.Customer.create_async(
            api_key=self.secret_key,
            idempotency_key=f"customer-create-{user_id}",
            email=email,
            name=name,
            metadata={"userId": user_id},
        )
        return customer.id

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        user_id: str,
        success_url: str,
        cancel_url: str,
    ) -> HostedSession:
        session = await stripe.checkout.Session.create_async(
            api_key=self.secret_key,
            customer=customer_id,
            mode="subscription",
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata={"userId": user_id},
        )
        return HostedSession(id=session.id, url=session.url)

    async def create_portal_session(self, customer_id: str, return_url: str) -> HostedSession:
        session = await stripe.billing_portal.Session.create_async(
            api_key=self.secret_key,
            customer=customer_id,
            return_url=return_url,
        )
        return HostedSession(id=session.id, url=session.url)

    async def list_recurring_prices(self) -> list:
        """Active recurring prices with their product objects expanded."""
        prices = await stripe.Price.list_async(
            api_key=self.secret_key,
            active=True,
            type="recurring",
            expand=["data.product"],
        )
        return list(prices.data)

    def construct_event(self, payload: bytes, signature: str | None) -> dict:
        """Verify a raw webhook payload and return the event as a plain dict.

        Raises:
            WebhookVerificationError: the secret or header is missing, the signature does not
                match, or the body is not a JSON object
        """
        if not self.webhook_secret:
            raise WebhookVerificationError("Webhook signing secret is not configured")
        if not signature:
            raise WebhookVerificationError("Missing stripe-signature header")

        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body, signature, self.webhook_secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE
            )
            event = json.loads(body)
        except stripe.SignatureVerificationError as exc:
            raise WebhookVerificationError(f"Invalid signature: {exc}") from exc
        except ValueError as exc:
            raise WebhookVerificationError(f"Invalid payload: {exc}") from exc

        if not isinstance(event, dict):
            raise WebhookVerificationError(f"Invalid payload: expected a JSON object, got {type(event).__name__}")
        return event
