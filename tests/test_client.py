from decimal import Decimal

import httpx
import pytest

from booking_schemas import CardPaymentArtifact, CardPaymentRequest, UpiPaymentArtifact, UpiPaymentRequest
from client import BookingApiClient
from config import Settings
from errors import ConflictError, NetworkError, NotFoundError, UpstreamFetchError, ValidationError


def _client(handler, sleeps=None):
    http = httpx.Client(base_url="http://booking.test", transport=httpx.MockTransport(handler))
    return BookingApiClient("http://booking.test", http=http, sleep=(sleeps.append if sleeps is not None else lambda _: None))


def test_end_to_end_qr_flow(api, api_booking):
    client = BookingApiClient("http://testserver", http=api)

    qr = client.generate_qr(api_booking.id, Decimal("100"), "INR")
    assert client.qr_status(qr.transaction_id).status == "pending"

    first = client.confirm(api_booking.id, qr.transaction_id, "qr")
    second = client.confirm(api_booking.id, qr.transaction_id, "qr")

    assert first == second
    assert client.payment_status(api_booking.id).status == "confirmed"
    assert client.qr_status(qr.transaction_id).status == "succeeded"


def test_tagged_initiate_returns_the_channel_artifact(api, api_booking):
    client = BookingApiClient("http://testserver", http=api)

    upi = client.initiate(UpiPaymentRequest(booking_id=api_booking.id, upi_id="traveler@okicici", amount=Decimal("100")))
    card = client.initiate(CardPaymentRequest())

    assert isinstance(upi, UpiPaymentArtifact)
    assert upi.transaction_id.startswith("UPI")
    assert isinstance(card, CardPaymentArtifact)
    assert card.publishable_key == "pk_test_123"
    assert client.payment_status(api_booking.id).transaction_id == upi.transaction_id

def test_errors_map_back_to_the_taxonomy(api, api_booking):
    client = BookingApiClient("http://testserver", http=api)

    with pytest.raises(NotFoundError):
        client.generate_qr("missing", Decimal("10"))
    with pytest.raises(ConflictError):
        client.confirm(api_booking.id, "QR0forged", "qr")
    with pytest.raises(ValidationError):
        client.convert(0)


def test_reads_retry_on_server_errors():
    statuses = iter([502, 503, 200])
    sleeps = []

    def handler(request):
        status = next(statuses)
        if status != 200:
            return httpx.Response(status, json={"error": "bad gateway"})
        return httpx.Response(200, json={"publishableKey": "pk_test_1"})

    key = _client(handler, sleeps).publishable_key()
    assert key.publishable_key == "pk_test_1"
    assert sleeps == [1.0, 2.0]


def test_read_server_error_surfaces_after_retries():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, json={"error": "Internal server error"})

    with pytest.raises(UpstreamFetchError):
        _client(handler).payment_status("b1")
    assert len(calls) == 3


def test_mutations_do_not_retry_server_errors():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, json={"error": "Internal server error"})

    with pytest.raises(UpstreamFetchError):
        _client(handler).confirm("b1", "QR1", "qr")
    assert len(calls) == 1


def test_mutations_retry_transport_errors_once():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkError):
        _client(handler).generate_qr("b1", Decimal("10"))
    assert len(calls) == 2


def test_min_price_deals_uses_client_cache():
    calls = []

    def handler(request):
        calls.append(dict(request.url.params))
        return httpx.Response(200, json={
            "deals": [{
                "id": "d1", "origin": "JFK", "destination": "LAX", "airline": "Delta", "price": 199.0,
                "departureDate": "2026-03-15", "returnDate": "2026-03-22", "bookingLink": "/deals/d1",
            }],
            "total": 1,
            "fromCache": True,
        })

    client = _client(handler)
    first = client.min_price_deals(limit=5)
    second = client.min_price_deals(limit=5)
    forced = client.min_price_deals(limit=5, force_refresh=True)

    assert first.from_cache is False
    assert second.from_cache is True
    assert forced.from_cache is False
    assert calls == [{"limit": "5"}, {"limit": "5", "refresh": "true"}]
    assert first.deals[0].airline == "Delta"


def test_min_price_deals_error_with_no_deals_raises():
    def handler(request):
        return httpx.Response(200, json={"deals": [], "total": 0, "fromCache": False, "error": "No deals available"})

    with pytest.raises(UpstreamFetchError) as excinfo:
        _client(handler).min_price_deals(limit=5)
    assert excinfo.value.message == "No deals available"


def test_client_ttl_comes_from_settings():
    client = BookingApiClient("http://booking.test", settings=Settings(client_deals_ttl=120))
    assert client.deals.ttl == 120
    client.close()
