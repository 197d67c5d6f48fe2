from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from booking_schemas import MinPriceDeal
from config import Settings
from deals.cache import DealFetch
from payments.channels import default_adapters
from payments.checkout import StripeCheckout
from payments.txn_ids import TransactionIdGenerator
from persistence.crud import BookingRecordStore, DealRecordStore
from persistence.db import init_db, make_engine, make_session_factory
from txn_manager import BookingOrchestrator


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class FakeDealSource:
    """Hands back scripted DealFetch results (or raises them) and counts calls."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def fetch_deals(self, limit, force_refresh=False):
        self.calls.append((limit, force_refresh))
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def make_deal(origin="JFK", destination="LAX", price=199.0, **overrides):
    fields = dict(
        id=f"live-{origin}-{destination}",
        origin=origin,
        origin_city="New York",
        destination=destination,
        dest_city="Los Angeles",
        airline="Delta Air Lines",
        airline_code="DL",
        price=price,
        currency="USD",
        departure_date="2026-03-15",
        return_date="2026-03-22",
        booking_link=f"/booking?type=flight&origin={origin}&dest={destination}",
    )
    fields.update(overrides)
    return MinPriceDeal(**fields)


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        stripe_publishable_key="pk_test_123",
        stripe_use_stub=True,
        amadeus_api_key="key",
        amadeus_api_secret="secret",
        strict_confirmation=True,
    )


@pytest.fixture
def sessions(settings):
    engine = make_engine(settings.database_url)
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(sessions):
    return BookingRecordStore(sessions)


@pytest.fixture
def deal_store(sessions):
    return DealRecordStore(sessions)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def orchestrator(store, settings, clock, notifications):
    return BookingOrchestrator(
        store,
        default_adapters(settings),
        TransactionIdGenerator(),
        settings,
        checkout=StripeCheckout(settings),
        clock=clock,
        on_confirmed=notifications.append,
    )


@pytest.fixture
def booking(store):
    return store.create_booking(amount=Decimal("100"), currency="INR", booking_type="flight")


def fx_handler(request: httpx.Request) -> httpx.Response:
    base = request.url.path.rsplit("/", 1)[-1]
    if base == "USD":
        return httpx.Response(200, json={"base": "USD", "rates": {"INR": 83.12345, "EUR": 0.92}})
    return httpx.Response(404, json={"error": "unknown base"})


@pytest.fixture
def live_deals():
    return FakeDealSource(DealFetch(deals=[make_deal(price=250.0), make_deal("ORD", "MIA", price=120.0)]))


@pytest.fixture
def app(settings, live_deals, notifications):
    fx_http = httpx.Client(transport=httpx.MockTransport(fx_handler))
    return create_app(settings, live_deals=live_deals, fx_http=fx_http, on_confirmed=notifications.append)


@pytest.fixture
def api(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def api_booking(app):
    return app.state.booking_store.create_booking(amount=Decimal("100"), currency="INR", booking_type="flight")


