"""Billing routes: plans, Stripe Checkout, Customer Portal, and webhooks."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from app.api.deps import get_billing_service
from app.core.auth import require_auth
from app.core.exceptions import BillingError
from app.db.models.user import User
from app.schemas.billing import (
    CheckoutOutcomeResponse,
    PaymentLinkResponse,
    PlanResponse,
    PortalResponse,
    WebhookAck,
)
from app.services.billing_service import BillingService

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/products", response_model=list[PlanResponse])
async def list_products(billing: BillingService = Depends(get_billing_service)):
    """Return the subscription plans currently offered."""
    return await billing.list_products()


@router.post("/portal", response_model=PortalResponse)
async def create_portal_session(
    user: User = Depends(require_auth),
    billing: BillingService = Depends(get_billing_service),
):
    """Create a Stripe Customer Portal session and return the URL."""
    url = await billing.create_customer_portal_session(user)
    return PortalResponse(url=url)


@router.get("/payment-link", response_model=PaymentLinkResponse)
async def get_payment_link(
    price_id: str | None = Query(None, alias="priceId"),
    user: User = Depends(require_auth),
    billing: BillingService = Depends(get_billing_service),
):
    """Create a Stripe Checkout session for ``priceId`` and return the URL."""
    if not price_id:
        raise HTTPException(status_code=400, detail="priceId is required")

    payment_url = await billing.create_payment_link(user, price_id)
    return PaymentLinkResponse(
        payment_url=payment_url,
        message="Redirect the user to this URL to complete the payment",
    )


@router.post("/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    billing: BillingService = Depends(get_billing_service),
):
    """Handle Stripe webhook events with signature verification."""
    body = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = billing.construct_webhook_event(body, signature)
        await billing.handle_webhook_event(event)
    except BillingError as exc:
        logger.warning("stripe_webhook_rejected", error=str(exc), error_type=type(exc).__name__)
        return JSONResponse(status_code=400, content={"error": f"Webhook Error: {exc}"})

    return WebhookAck(received=True)


@router.get("/success", response_model=CheckoutOutcomeResponse)
async def checkout_success():
    return CheckoutOutcomeResponse(
        success=True,
        message="Thanks for subscribing! Your account is now active.",
    )


@router.get("/cancel", response_model=CheckoutOutcomeResponse)
async def checkout_cancel():
    return CheckoutOutcomeResponse(
        success=False,
        message="The payment was canceled. You can try again whenever you like.",
    )
