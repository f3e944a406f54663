"""User model: account credentials plus Stripe billing linkage."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, String, Text, Uuid

from app.db.base import Base

SUBSCRIPTION_INACTIVE = "inactive"
SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_PAST_DUE = "past_due"
SUBSCRIPTION_CANCELED = "canceled"

VALID_ROLES = ("admin", "super-user", "user")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class User(Base):
    """One row per account.

    ``subscription_status`` is free-form text. Besides the local labels above
    it stores whatever status Stripe reports on
    ``customer.subscription.updated`` (``trialing``, ``unpaid``, ...).
    """

    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(Text, unique=True, nullable=False)
    password = Column(Text, nullable=False)  # bcrypt hash
    full_name = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    roles = Column(JSON, nullable=False, default=lambda: ["user"])

    # Stripe
    stripe_customer_id = Column(String(255), unique=True, nullable=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True, index=True)
    subscription_status = Column(String(50), nullable=False, default=SUBSCRIPTION_INACTIVE)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
