"""
Billing Router - Stripe Checkout and Billing Portal sessions.

Checkout attaches the app user id as metadata; the webhook relies on it to
find the profile when the session completes.
"""
import logging
from typing import Annotated, Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from dependencies import limiter
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Billing"])


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    price_id: str
    user_id: str
    email: str
    fast_id: Optional[str] = None
    success_url: str
    cancel_url: str


class PortalRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    customer_id: str
    return_url: str


def _configure_stripe(settings: Settings) -> None:
    if not settings.stripe_secret_key:
        logger.error("STRIPE_SECRET_KEY is not set. Stripe functionality is unavailable.")
        raise HTTPException(status_code=500, detail="Stripe not configured")
    stripe.api_key = settings.stripe_secret_key


def correlation_metadata(body: CheckoutRequest) -> dict:
    """Metadata the webhook uses to map a completed checkout back to a profile."""
    metadata = {"userId": body.user_id}
    if body.fast_id:
        metadata["fastId"] = body.fast_id
    return metadata


@router.post("/create-checkout")
@limiter.limit("10/minute")
def create_checkout(
    request: Request,
    body: CheckoutRequest,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Create a subscription Checkout session, reusing the Stripe customer for this email."""
    _configure_stripe(settings)

    try:
        metadata = correlation_metadata(body)
        params = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [{"price": body.price_id, "quantity": 1}],
            "success_url": body.success_url,
            "cancel_url": body.cancel_url,
            "subscription_data": {"metadata": metadata},
            "metadata": metadata,
        }

        existing = stripe.Customer.list(email=body.email, limit=1)
        if existing.data:
            params["customer"] = existing.data[0].id
        else:
            params["customer_email"] = body.email

        session = stripe.checkout.Session.create(**params)
        logger.info(f"Created checkout session {session.id} for user {body.user_id}")
        return {"sessionId": session.id, "url": session.url}
    except Exception as e:
        logger.exception("Checkout error")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/create-portal")
@limiter.limit("10/minute")
def create_portal(
    request: Request,
    body: PortalRequest,
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Create a Billing Portal session for an existing Stripe customer."""
    _configure_stripe(settings)

    try:
        session = stripe.billing_portal.Session.create(
            customer=body.customer_id,
            return_url=body.return_url,
        )
        return {"url": session.url}
    except Exception as e:
        logger.exception("Portal error")
        raise HTTPException(status_code=500, detail=str(e))
