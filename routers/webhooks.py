"""
Stripe webhook endpoint.
Secured by the endpoint signing secret, not a user token.
"""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from dependencies import get_store
from settings import Settings, get_settings
from store import PersistenceFailure, ProfileStore
from subscriptions import SignatureInvalid, SubscriptionReconciler, verify_event

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Webhooks"])


@router.post("/stripe-webhook", response_class=PlainTextResponse)
async def stripe_webhook(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    store: Annotated[ProfileStore, Depends(get_store)],
):
    """
    Verify the delivery, then reconcile it against profiles.
    200 "OK" for applied events and no-ops, 400 for untrusted input,
    500 when the database write fails so Stripe retries.
    """
    if not settings.stripe_webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not set.")
        return PlainTextResponse("Webhook not configured", status_code=500)

    # Raw bytes: the signature does not survive a JSON round trip
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = verify_event(payload, signature, settings.stripe_webhook_secret)
    except SignatureInvalid as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return PlainTextResponse(f"Webhook Error: {e}", status_code=400)
    except ValidationError as e:
        logger.warning(f"Webhook payload is not a Stripe event: {e}")
        return PlainTextResponse("Webhook Error: malformed event", status_code=400)

    try:
        # Supabase client is blocking
        await run_in_threadpool(SubscriptionReconciler(store).reconcile, event)
    except PersistenceFailure as e:
        logger.exception(f"Webhook handler error for event {event.id}")
        return PlainTextResponse(str(e), status_code=500)

    return PlainTextResponse("OK")
