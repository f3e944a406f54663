"""Dependencies resolving the services built by the application lifespan."""

from fastapi import Request

from app.services.auth_service import AuthService
from app.services.billing_service import BillingService


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_billing_service(request: Request) -> BillingService:
    return request.app.state.billing_service
