import json
import logging

import stripe
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse

from api.deps import get_orchestrator
from errors import ValidationError
from payments.checkout import handle_stripe_checkout_completed, handle_stripe_checkout_expired
from txn_manager import BookingOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

HANDLERS = {
    "checkout.session.completed": handle_stripe_checkout_completed,
    "checkout.session.expired": handle_stripe_checkout_expired,
}


def _parse(payload: bytes) -> dict:
    try:
        event = json.loads(payload)
    except ValueError:
        raise ValidationError("Invalid webhook payload")
    if not isinstance(event, dict):
        raise ValidationError("Invalid webhook payload")
    return event


@router.post("/webhook/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
):
    payload = await request.body()
    secret = request.app.state.settings.stripe_webhook_secret
    if not secret:
        # If not set, parse without verification (only for local dev; NOT for prod)
        logger.warning("STRIPE_WEBHOOK_SECRET not set; accepting unverified event")
    else:
        try:
            stripe.WebhookSignature.verify_header(payload.decode("utf-8"), stripe_signature or "", secret)
        except UnicodeDecodeError:
            raise ValidationError("Invalid webhook payload")
        except stripe.SignatureVerificationError:
            logger.error("Rejected Stripe webhook with a bad signature")
            raise ValidationError("Invalid Stripe signature")
    # handlers work on the plain JSON dict, not a stripe.Event
    event = _parse(payload)

    # Handle the event types we care about
    event_type = event.get("type")
    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.info("Ignoring Stripe event %s", event_type)
        return JSONResponse(content={"received": True})

    session = (event.get("data") or {}).get("object") or {}
    result = handler(session, orchestrator)
    return JSONResponse(content={"received": True, "result": result})
