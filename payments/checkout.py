import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict
from uuid import uuid4

import stripe

from booking_schemas import Booking
from config import Settings
from errors import UpstreamFetchError

logger = logging.getLogger(__name__)


@dataclass
class CheckoutSessionStub:
    """
    Stand-in for stripe.checkout.Session when no secret key is configured.

    Local development and tests do not hit Stripe; the identifiers are shaped
    like Stripe's so the rest of the flow (ledger, webhook confirmation) works
    unchanged.
    """

    id: str
    url: str


def to_minor_units(amount: Decimal) -> int:
    # Stripe expects unit_amount in cents
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def describe_booking(booking: Booking) -> str:
    kind = {"flight": "Flight", "hotel": "Hotel", "car": "Car Rental"}.get(booking.booking_type or "", "Travel")
    return f"{kind} Booking {booking.id[:8]}"


class StripeCheckout:
    def __init__(self, settings: Settings):
        self.secret_key = settings.stripe_secret_key
        self.use_stub = settings.stripe_use_stub
        self.success_url = settings.success_url
        self.cancel_url = settings.cancel_url
        self.frontend_url = settings.frontend_url

    def should_use_stub(self) -> bool:
        return self.use_stub or not self.secret_key

    def create_session(self, booking: Booking):
        """
        Create a Stripe Checkout Session (or stub equivalent) for a booking.
        The booking id travels in the session metadata so the webhook can find it.
        """
        amount_minor = to_minor_units(booking.amount)
        if self.should_use_stub():
            session_id = f"cs_test_{uuid4().hex}"
            return CheckoutSessionStub(
                id=session_id,
                url=(
                    f"{self.frontend_url.rstrip('/')}/payments/preview?"
                    f"booking={booking.id}&amount={amount_minor}&session={session_id}"
                ),
            )

        try:
            session = stripe.checkout.Session.create(
                api_key=self.secret_key,
                payment_method_types=["card"],
                line_items=[{
                    "price_data": {
                        "currency": booking.currency.lower(),
                        "product_data": {"name": describe_booking(booking)[:100]},
                        "unit_amount": amount_minor,
                    },
                    "quantity": 1,
                }],
                mode="payment",
                success_url=self.success_url + "?session_id={CHECKOUT_SESSION_ID}",
                cancel_url=self.cancel_url,
                metadata={
                    "booking_id": booking.id,
                    "booking_type": booking.booking_type or "",
                },
            )
        except stripe.StripeError as exc:
            logger.error("Stripe checkout session failed for booking %s: %s", booking.id, exc)
            raise UpstreamFetchError("Failed to create checkout session", details=str(exc))
        return session


def handle_stripe_checkout_completed(session: Dict[str, Any], orchestrator) -> Dict[str, Any]:
    """
    Called after the webhook validates a 'checkout.session.completed' event.
    The checkout session id is the transaction id reserved when the session was created.
    """
    booking_id = (session.get("metadata") or {}).get("booking_id")
    if not booking_id:
        logger.error("Checkout session %s carries no booking id", session.get("id"))
        return {"error": "no booking id in session metadata"}

    result = orchestrator.confirm(booking_id, session.get("id"), "card")
    return {"status": "confirmed", "bookingId": result.booking_id}


def handle_stripe_checkout_expired(session: Dict[str, Any], orchestrator) -> Dict[str, Any]:
    booking_id = (session.get("metadata") or {}).get("booking_id")
    if not booking_id:
        return {"error": "no booking id in session metadata"}

    booking = orchestrator.fail_payment(booking_id, session.get("id"), reason="checkout session expired")
    return {"status": booking.payment_status, "bookingId": booking_id}
