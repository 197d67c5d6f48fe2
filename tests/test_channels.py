from datetime import datetime, timezone
from decimal import Decimal
from urllib.parse import parse_qs, urlsplit

import pytest

from booking_schemas import Booking, QrPaymentRequest, UpiPaymentRequest
from config import Settings
from errors import ConfigurationError
from payments.channels import (
    CardChannel,
    QrChannel,
    UpiChannel,
    build_upi_uri,
    default_adapters,
)

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _booking(**overrides):
    fields = dict(id="b1c2d3e4-0000-4000-8000-000000000001", amount=Decimal("100"), currency="INR",
                  created_at=NOW, updated_at=NOW)
    fields.update(overrides)
    return Booking(**fields)


def test_upi_uri_carries_payee_amount_and_booking_reference():
    uri = build_upi_uri("pay@flynow", "FlyNow", Decimal("100.50"), "INR", "b1c2d3e4-rest")
    assert uri == "upi://pay?pa=pay@flynow&pn=FlyNow&am=100.50&cu=INR&tn=Bookingb1c2d3e4"


def test_qr_artifact_encodes_upi_string_in_image_url():
    adapter = QrChannel(Settings())
    booking = _booking()
    artifact = adapter.issue(QrPaymentRequest(booking_id=booking.id, amount=Decimal("100")), booking, "QR1abc")

    assert artifact.transaction_id == "QR1abc"
    assert artifact.expires_in == 300
    assert artifact.upi_string.startswith("upi://pay?pa=pay@flynow")
    assert "tn=Bookingb1c2d3e4" in artifact.upi_string

    parts = urlsplit(artifact.qr_code_url)
    query = parse_qs(parts.query)
    assert query["size"] == ["300x300"]
    assert query["data"] == [artifact.upi_string]
    assert "Bookingb1c2d3e4" in artifact.qr_code_url


def test_qr_currency_defaults_to_booking_currency():
    adapter = QrChannel(Settings())
    booking = _booking(currency="usd")
    artifact = adapter.issue(QrPaymentRequest(booking_id=booking.id, amount=Decimal("5")), booking, "QR2")
    assert "cu=USD" in artifact.upi_string


def test_upi_artifact_is_just_the_transaction_id():
    booking = _booking()
    request = UpiPaymentRequest(booking_id=booking.id, upi_id="traveler@okaxis", amount=Decimal("100"))
    artifact = UpiChannel().issue(request, booking, "UPI1xyz")
    assert artifact.model_dump(by_alias=True, exclude={"channel"}) == {"transactionId": "UPI1xyz"}


def test_card_channel_requires_publishable_key():
    with pytest.raises(ConfigurationError) as excinfo:
        CardChannel(Settings()).issue()
    assert excinfo.value.message == "Stripe publishable key not configured"
    assert excinfo.value.status_code == 400


def test_card_channel_returns_publishable_key():
    artifact = CardChannel(Settings(stripe_publishable_key="pk_test_1")).issue()
    assert artifact.publishable_key == "pk_test_1"


def test_default_adapters_cover_every_channel():
    adapters = default_adapters(Settings())
    assert set(adapters) == {"qr", "upi", "card"}
    assert adapters["qr"].prefix == "QR"
    assert adapters["upi"].prefix == "UPI"
    assert adapters["card"].reserves_slot is False
