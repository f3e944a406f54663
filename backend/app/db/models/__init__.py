"""Re-export all models so Base.metadata sees them."""

from app.db.models.user import User
from app.db.models.webhook_log import StripeWebhookLog

__all__ = [
    "StripeWebhookLog",
    "User",
]
