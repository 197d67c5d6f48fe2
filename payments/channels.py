"""
Payment channel adapters.

Each adapter turns a channel-tagged payment request into the artifact the
traveler needs to pay (QR image, UPI transaction reference, card checkout
key). Adapters never write to storage: reserving the pending slot on the
booking is the orchestrator's job.
"""
import logging
from decimal import Decimal
from typing import Dict, Optional, get_args
from urllib.parse import quote

from booking_schemas import (
    Booking,
    CardPaymentArtifact,
    PaymentMethod,
    QrPaymentArtifact,
    QrPaymentRequest,
    UpiPaymentArtifact,
    UpiPaymentRequest,
)
from config import Settings
from errors import ConfigurationError

logger = logging.getLogger(__name__)

BOOKING_REF_LENGTH = 8


def format_amount(amount: Decimal) -> str:
    return f"{amount:f}"


def booking_reference(booking_id: str) -> str:
    return f"Booking{booking_id[:BOOKING_REF_LENGTH]}"


def build_upi_uri(payee_vpa: str, payee_name: str, amount: Decimal, currency: str, booking_id: str) -> str:
    return (
        f"upi://pay?pa={payee_vpa}&pn={payee_name}"
        f"&am={format_amount(amount)}&cu={currency}&tn={booking_reference(booking_id)}"
    )


def build_qr_image_url(service_url: str, data: str, size: int = 300) -> str:
    return f"{service_url}?size={size}x{size}&data={quote(data, safe='')}"


class PaymentChannelAdapter:
    channel: str = ""
    prefix: str = ""
    reserves_slot = True            # False: the channel never touches a booking
    attempt_ttl: Optional[int] = None

    def issue(self, request, booking: Optional[Booking], transaction_id: Optional[str]):
        raise NotImplementedError

    def payment_reference(self, request) -> Optional[str]:
        return None


class QrChannel(PaymentChannelAdapter):
    channel = "qr"
    prefix = "QR"

    def __init__(self, settings: Settings):
        self.payee_vpa = settings.upi_payee_vpa
        self.payee_name = settings.upi_payee_name
        self.service_url = settings.qr_service_url
        self.attempt_ttl = settings.qr_expires_in

    def issue(self, request: QrPaymentRequest, booking: Booking, transaction_id: str) -> QrPaymentArtifact:
        currency = (request.currency or booking.currency).upper()
        upi_string = build_upi_uri(self.payee_vpa, self.payee_name, request.amount, currency, booking.id)
        return QrPaymentArtifact(
            qr_code_url=build_qr_image_url(self.service_url, upi_string),
            transaction_id=transaction_id,
            upi_string=upi_string,
            expires_in=self.attempt_ttl,
        )


class UpiChannel(PaymentChannelAdapter):
    channel = "upi"
    prefix = "UPI"

    def issue(self, request: UpiPaymentRequest, booking: Booking, transaction_id: str) -> UpiPaymentArtifact:
        return UpiPaymentArtifact(transaction_id=transaction_id)

    def payment_reference(self, request: UpiPaymentRequest) -> Optional[str]:
        return request.upi_id


class CardChannel(PaymentChannelAdapter):
    """Card capture happens in hosted checkout; this channel only hands out the publishable key."""

    channel = "card"
    reserves_slot = False

    def __init__(self, settings: Settings):
        self.publishable_key = settings.stripe_publishable_key

    def issue(self, request=None, booking=None, transaction_id=None) -> CardPaymentArtifact:
        if not self.publishable_key:
            logger.error("STRIPE_PUBLISHABLE_KEY not found in environment")
            raise ConfigurationError("Stripe publishable key not configured")
        return CardPaymentArtifact(publishable_key=self.publishable_key)


def default_adapters(settings: Settings) -> Dict[str, PaymentChannelAdapter]:
    adapters = {
        "qr": QrChannel(settings),
        "upi": UpiChannel(),
        "card": CardChannel(settings),
    }
    missing = set(get_args(PaymentMethod)) - set(adapters)
    if missing:
        raise ConfigurationError("No adapter for payment channel(s)", details=", ".join(sorted(missing)))
    return adapters
