"""Pydantic schemas for the Stripe billing endpoints."""

from app.schemas.auth import CamelModel


class PlanResponse(CamelModel):
    price_id: str
    product_id: str
    name: str
    description: str | None = None
    unit_amount: int | None  # smallest currency unit; None for custom pricing
    currency: str
    interval: str | None  # "month" | "year" | ...


class PaymentLinkResponse(CamelModel):
    payment_url: str
    message: str


class PortalResponse(CamelModel):
    url: str


class WebhookAck(CamelModel):
    received: bool = True


class CheckoutOutcomeResponse(CamelModel):
    success: bool
    message: str
