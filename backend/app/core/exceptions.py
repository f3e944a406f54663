class SubscriptionsError(Exception):
    """Base exception for the subscriptions backend."""

    pass


class BillingError(SubscriptionsError):
    """Raised when a billing operation cannot be completed."""

    pass


class WebhookVerificationError(BillingError):
    """Raised when a Stripe webhook payload fails signature or parse checks."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class WebhookProcessingError(BillingError):
    """Raised when a verified webhook event fails inside its handler."""

    def __init__(self, event_id: str, event_type: str, reason: str):
        self.event_id = event_id
        self.event_type = event_type
        self.reason = reason
        super().__init__(f"Failed to process {event_type} ({event_id}): {reason}")
