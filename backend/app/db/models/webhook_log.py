"""StripeWebhookLog model: append-only audit copy of verified Stripe events."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Column, DateTime, String, Text, Uuid
from sqlalchemy.dialects.postgresql import JSONB

from app.db.base import Base

LOG_STATUS_PROCESSED = "processed"
LOG_STATUS_FAILED = "failed"
LOG_STATUS_IGNORED = "ignored"


class StripeWebhookLog(Base):
    """One row per verified webhook delivery. Rows are never updated.

    Fields:
    - stripe_event_id: provider-assigned ``evt_...`` id (not unique: Stripe may redeliver)
    - type: event type tag, e.g. ``invoice.payment_failed``
    - payload: the full event envelope as received
    - status: processed | failed | ignored
    - error_message: handler failure reason when status is ``failed``
    """

    __tablename__ = "stripe_webhook_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    stripe_event_id = Column(Text, nullable=False, index=True)
    type = Column(Text, nullable=False)
    payload = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)
    status = Column(String(20), nullable=False, default=LOG_STATUS_PROCESSED)
    error_message = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
