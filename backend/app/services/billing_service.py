"""BillingService: Stripe customers, checkout, portal, and webhook reconciliation.

Webhook reconciliation keeps the billing columns of ``users`` in step with
Stripe. Every handler resolves its target user and writes in one conditional
``UPDATE ... RETURNING`` statement, so concurrent deliveries for the same
subscription cannot interleave between lookup and write; the last statement
to commit wins.

Event → effect:
  checkout.session.completed     metadata.userId → subscription id set, status "active"
  customer.subscription.updated  subscription id → status copied from the event
  customer.subscription.deleted  subscription id → subscription id cleared, status "canceled"
  invoice.payment_failed         customer id     → status "past_due"

Unknown references are not errors: Stripe gets a 200 so it stops redelivering.
"""

import uuid
from collections.abc import Awaitable, Callable

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.core.exceptions import BillingError, WebhookProcessingError
from app.db.models.user import (
    SUBSCRIPTION_ACTIVE,
    SUBSCRIPTION_CANCELED,
    SUBSCRIPTION_PAST_DUE,
    User,
)
from app.db.models.webhook_log import (
    LOG_STATUS_FAILED,
    LOG_STATUS_IGNORED,
    LOG_STATUS_PROCESSED,
    StripeWebhookLog,
)
from app.integrations.stripe_gateway import StripeGateway
from app.schemas.billing import PlanResponse

logger = structlog.get_logger(__name__)


def _reference_id(value) -> str | None:
    """Stripe references arrive as an id string or, when expanded, as an object."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _event_object(event: dict) -> dict:
    """Return ``data.object`` of an event envelope.

    Raises ``ValueError`` when the envelope does not carry an object.
    """
    data = event.get("data")
    data_object = data.get("object") if isinstance(data, dict) else None
    if not isinstance(data_object, dict):
        raise ValueError("Event has no data.object")
    return data_object


class BillingService:
    """Service layer for the ``/stripe`` endpoints."""

    def __init__(
        self,
        gateway: StripeGateway,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
    ):
        self.gateway = gateway
        self.session_factory = session_factory
        self.settings = settings
        self._handlers: dict[str, Callable[[dict], Awaitable[bool]]] = {
            "checkout.session.completed": self._handle_checkout_completed,
            "customer.subscription.updated": self._handle_subscription_updated,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "invoice.payment_failed": self._handle_payment_failed,
        }

    # ── Customers, checkout, portal ─────────────────────────────────

    async def get_or_create_customer(self, user: User) -> str:
        """Return the user's Stripe customer id, creating the customer on first use.

        The id is persisted with ``WHERE stripe_customer_id IS NULL``; if another
        request stored one first, the stored id is returned instead.
        """
        if user.stripe_customer_id:
            return user.stripe_customer_id

        customer_id = await self.gateway.create_customer(
            email=user.email,
            name=user.full_name,
            user_id=str(user.id),
        )

        async with self.session_factory() as session:
            result = await session.execute(
                update(User)
                .where(User.id == user.id, User.stripe_customer_id.is_(None))
                .values(stripe_customer_id=customer_id)
                .returning(User.id)
                .execution_options(synchronize_session=False)
            )
            claimed = result.scalar_one_or_none()
            await session.commit()

            if claimed is None:
                stored = await session.scalar(select(User.stripe_customer_id).where(User.id == user.id))
                if stored is None:
                    raise BillingError(f"User {user.id} no longer exists")
                logger.warning(
                    "stripe_customer_already_linked",
                    user_id=str(user.id),
                    stored_customer_id=stored,
                    discarded_customer_id=customer_id,
                )
                customer_id = stored
            else:
                logger.info("stripe_customer_created", customer_id=customer_id, user_id=str(user.id))

        user.stripe_customer_id = customer_id
        return customer_id

    async def create_payment_link(self, user: User, price_id: str) -> str:
        """Create a hosted subscription checkout for ``price_id`` and return its URL."""
        customer_id = await self.get_or_create_customer(user)
        host = self.settings.host_api.rstrip("/")

        session = await self.gateway.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            user_id=str(user.id),
            success_url=f"{host}/stripe/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{host}/stripe/cancel",
        )

        logger.info("checkout_session_created", checkout_session_id=session.id, user_id=str(user.id))
        return session.url

    async def create_customer_portal_session(self, user: User) -> str:
        customer_id = await self.get_or_create_customer(user)
        return_url = self.settings.portal_return_url or self.settings.host_api

        session = await self.gateway.create_portal_session(customer_id, return_url)
        logger.info("portal_session_created", user_id=str(user.id))
        return session.url

    async def list_products(self) -> list[PlanResponse]:
        """Active recurring prices, one plan entry per price."""
        plans = []
        for price in await self.gateway.list_recurring_prices():
            product = price.product
            if isinstance(product, str):
                product_id, name, description = product, price.nickname or product, None
            else:
                product_id, name, description = product.id, product.name, getattr(product, "description", None)

            recurring = getattr(price, "recurring", None)
            plans.append(
                PlanResponse(
                    price_id=price.id,
                    product_id=product_id,
                    name=name,
                    description=description,
                    unit_amount=price.unit_amount,
                    currency=price.currency,
                    interval=recurring.interval if recurring else None,
                )
            )
        return plans

    # ── Webhooks ────────────────────────────────────────────────────

    def construct_webhook_event(self, payload: bytes, signature: str | None) -> dict:
        """Verify the Stripe signature and return the parsed event.

        Raises ``WebhookVerificationError`` on failure.
        """
        return self.gateway.construct_event(payload, signature)

    async def handle_webhook_event(self, event: dict) -> str:
        """Apply one verified event and append its webhook log row.

        Returns the log status written: ``processed`` when a user row changed,
        ``ignored`` for unhandled types and tolerated misses.

        Raises:
            WebhookProcessingError: the handler failed; a ``failed`` row is logged first
        """
        event_id = event.get("id", "")
        event_type = event.get("type", "")

        logger.info("stripe_webhook_received", event_id=event_id, event_type=event_type)

        handler = self._handlers.get(event_type) if isinstance(event_type, str) else None
        if handler is None:
            logger.info("stripe_webhook_unhandled", event_id=event_id, event_type=event_type)
            await self._append_log(event, LOG_STATUS_IGNORED)
            return LOG_STATUS_IGNORED

        try:
            applied = await handler(_event_object(event))
        except Exception as exc:
            logger.error(
                "stripe_webhook_failed",
                event_id=event_id,
                event_type=event_type,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            await self._append_log(event, LOG_STATUS_FAILED, error_message=str(exc))
            raise WebhookProcessingError(event_id, event_type, str(exc)) from exc

        status = LOG_STATUS_PROCESSED if applied else LOG_STATUS_IGNORED
        await self._append_log(event, status)
        return status

    async def _append_log(self, event: dict, status: str, error_message: str | None = None) -> None:
        async with self.session_factory() as session:
            session.add(
                StripeWebhookLog(
                    stripe_event_id=str(event.get("id", "")),
                    type=str(event.get("type", "")),
                    payload=event,
                    status=status,
                    error_message=error_message,
                )
            )
            await session.commit()

    async def _update_one_user(self, criterion, **values) -> uuid.UUID | None:
        """Update the first user matching ``criterion`` in a single statement.

        Returns the updated user's id, or None when nothing matched.
        """
        target = select(User.id).where(criterion).limit(1).correlate(None).scalar_subquery()
        async with self.session_factory() as session:
            result = await session.execute(
                update(User)
                .where(User.id == target)
                .values(**values)
                .returning(User.id)
                .execution_options(synchronize_session=False)
            )
            user_id = result.scalar_one_or_none()
            await session.commit()
        return user_id

    async def _handle_checkout_completed(self, checkout_session: dict) -> bool:
        metadata = checkout_session.get("metadata")
        raw_user_id = metadata.get("userId") if isinstance(metadata, dict) else None
        if not raw_user_id:
            logger.warning("checkout_completed_missing_user_id", checkout_session_id=checkout_session.get("id"))
            return False

        try:
            user_id = uuid.UUID(raw_user_id) if isinstance(raw_user_id, str) else None
        except ValueError:
            user_id = None
        if user_id is None:
            logger.warning("checkout_completed_invalid_user_id", user_id=repr(raw_user_id))
            return False

        subscription_id = _reference_id(checkout_session.get("subscription"))
        updated = await self._update_one_user(
            User.id == user_id,
            stripe_subscription_id=subscription_id,
            subscription_status=SUBSCRIPTION_ACTIVE,
        )
        if updated is None:
            logger.warning("checkout_completed_unknown_user", user_id=raw_user_id)
            return False

        logger.info("subscription_activated", user_id=raw_user_id, subscription_id=subscription_id)
        return True

    async def _handle_subscription_updated(self, subscription: dict) -> bool:
        subscription_id = subscription.get("id")
        status = subscription.get("status")
        if not subscription_id or not status:
            logger.warning("subscription_updated_incomplete", subscription_id=subscription_id)
            return False

        updated = await self._update_one_user(
            User.stripe_subscription_id == subscription_id,
            subscription_status=status,
        )
        if updated is None:
            logger.warning("subscription_updated_unknown_subscription", subscription_id=subscription_id)
            return False

        logger.info("subscription_status_updated", user_id=str(updated), status=status)
        return True

    async def _handle_subscription_deleted(self, subscription: dict) -> bool:
        subscription_id = subscription.get("id")
        if not subscription_id:
            logger.warning("subscription_deleted_missing_id")
            return False

        updated = await self._update_one_user(
            User.stripe_subscription_id == subscription_id,
            stripe_subscription_id=None,
            subscription_status=SUBSCRIPTION_CANCELED,
        )
        if updated is None:
            logger.warning("subscription_deleted_unknown_subscription", subscription_id=subscription_id)
            return False

        logger.info("subscription_canceled", user_id=str(updated), subscription_id=subscription_id)
        return True

    async def _handle_payment_failed(self, invoice: dict) -> bool:
        customer_id = _reference_id(invoice.get("customer"))
        if not customer_id:
            logger.warning("payment_failed_missing_customer", invoice_id=invoice.get("id"))
            return False

        updated = await self._update_one_user(
            User.stripe_customer_id == customer_id,
            subscription_status=SUBSCRIPTION_PAST_DUE,
        )
        if updated is None:
            logger.warning("payment_failed_unknown_customer", customer_id=customer_id)
            return False

        logger.info("subscription_past_due", user_id=str(updated), customer_id=customer_id)
        return True
