"""
Subscription reconciliation for Stripe webhook events.

Flow: raw body + Stripe-Signature -> verify_event -> SubscriptionReconciler.reconcile
-> one of three profile updates, or an acknowledged no-op.

Only paid_until, subscription_status and stripe_customer_id are ever written.
Profiles are created at signup elsewhere; a missing profile is a correlation
miss, not an error.
"""
import datetime
import enum
import logging
from typing import Any, Callable, Dict, Optional

import stripe
from dateutil.parser import isoparse
from pydantic import BaseModel, Field

from store import ProfileStore

logger = logging.getLogger(__name__)

# Fixed entitlement window granted by a completed checkout
GRANT_DAYS = 200

STATUS_ACTIVE = "active"
STATUS_CANCELLED = "cancelled"
STATUS_EXPIRED = "expired"

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"


class SignatureInvalid(Exception):
    """The webhook payload could not be authenticated."""


class CorrelationMiss(Exception):
    """An event could not be mapped back to a profile."""


class ReconcileOutcome(str, enum.Enum):
    APPLIED = "applied"
    CORRELATION_MISS = "correlation_miss"
    IGNORED = "ignored"


class EventData(BaseModel):
    object: Dict[str, Any] = Field(default_factory=dict)


class WebhookEvent(BaseModel):
    id: Optional[str] = None
    type: str
    data: EventData = Field(default_factory=EventData)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def has_entitlement(profile: Dict[str, Any], now: Optional[datetime.datetime] = None) -> bool:
    """Paid access is active iff now < paid_until. The status flag plays no part."""
    paid_until = profile.get("paid_until")
    if not paid_until:
        return False
    if isinstance(paid_until, str):
        try:
            paid_until = isoparse(paid_until)
        except ValueError:
            logger.warning(f"Unreadable paid_until {paid_until!r} on profile {profile.get('id')}")
            return False
    if paid_until.tzinfo is None:
        paid_until = paid_until.replace(tzinfo=datetime.timezone.utc)
    return (now or utcnow()) < paid_until


def verify_event(payload: bytes, signature: Optional[str], secret: str) -> WebhookEvent:
    """
    Authenticate a webhook delivery against the endpoint secret.

    The signature covers the raw body bytes, so payload must be exactly what
    arrived on the wire. Raises SignatureInvalid on any failure.
    """
    if not signature:
        raise SignatureInvalid("Missing Stripe-Signature header")
    try:
        stripe.Webhook.construct_event(payload, signature, secret)
    except stripe.SignatureVerificationError as e:
        raise SignatureInvalid(str(e)) from e
    except ValueError as e:
        raise SignatureInvalid(f"Invalid payload: {e}") from e
    return WebhookEvent.model_validate_json(payload)


def _customer_id(obj: Dict[str, Any]) -> Optional[str]:
    customer = obj.get("customer")
    if isinstance(customer, dict):
        return customer.get("id")
    return customer or None


class SubscriptionReconciler:
    """Applies verified Stripe events to profiles."""

    def __init__(self, store: ProfileStore, clock: Callable[[], datetime.datetime] = utcnow):
        self.store = store
        self.clock = clock
        self._handlers = {
            CHECKOUT_COMPLETED: self.grant_checkout,
            SUBSCRIPTION_UPDATED: self.update_status,
            SUBSCRIPTION_DELETED: self.revoke_status,
        }

    def reconcile(self, event: WebhookEvent) -> ReconcileOutcome:
        """
        Route an event to its action.

        Unknown event types and correlation misses are acknowledged so Stripe
        does not keep retrying them. PersistenceFailure propagates.
        """
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info(f"Ignoring Stripe event {event.id} of type {event.type}")
            return ReconcileOutcome.IGNORED

        try:
            handler(event.data.object)
        except CorrelationMiss as e:
            logger.warning(f"Stripe event {event.id} ({event.type}) not correlated: {e}")
            return ReconcileOutcome.CORRELATION_MISS

        logger.info(f"Applied Stripe event {event.id} ({event.type})")
        return ReconcileOutcome.APPLIED

    def grant_checkout(self, session: Dict[str, Any]) -> None:
        metadata = session.get("metadata") or {}
        user_id = metadata.get("userId")
        if not user_id:
            raise CorrelationMiss(f"checkout session {session.get('id')} has no userId metadata")

        profile = self.store.get_profile(user_id)
        if profile is None:
            raise CorrelationMiss(f"no profile for user {user_id}")

        # Absolute assignment so replays land on the same value
        paid_until = self.clock() + datetime.timedelta(days=GRANT_DAYS)
        fields: Dict[str, Any] = {"paid_until": paid_until.isoformat()}

        customer_id = _customer_id(session)
        if customer_id and not profile.get("stripe_customer_id"):
            fields["stripe_customer_id"] = customer_id
        if not profile.get("subscription_status"):
            fields["subscription_status"] = STATUS_ACTIVE

        self.store.update_profile(user_id, fields)
        logger.info(
            f"Granted {GRANT_DAYS} days to user {user_id} until {fields['paid_until']}"
            f" (fast {metadata.get('fastId')}, customer {customer_id})"
        )

    def update_status(self, subscription: Dict[str, Any]) -> None:
        new_status = STATUS_ACTIVE if subscription.get("status") == "active" else STATUS_CANCELLED
        self._set_status_by_customer(subscription, new_status)

    def revoke_status(self, subscription: Dict[str, Any]) -> None:
        self._set_status_by_customer(subscription, STATUS_EXPIRED)

    def _set_status_by_customer(self, subscription: Dict[str, Any], new_status: str) -> None:
        customer_id = _customer_id(subscription)
        if not customer_id:
            raise CorrelationMiss(f"subscription {subscription.get('id')} has no customer")

        rows = self.store.update_profiles_by_customer(customer_id, {"subscription_status": new_status})
        if not rows:
            raise CorrelationMiss(f"no profile for customer {customer_id}")
        logger.info(f"Customer {customer_id} is now '{new_status}' ({len(rows)} profile(s))")
