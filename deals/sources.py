import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, List, Optional, Sequence

import httpx

from booking_schemas import MinPriceDeal
from config import Settings
from deals.cache import DealFetch, DealSource
from errors import ConfigurationError, NetworkError, UpstreamFetchError
from persistence.crud import DealRecordStore
from utils import now_utc

logger = logging.getLogger(__name__)

LIVE_SOURCE = "amadeus-live"
NO_DEALS = "No deals available"

BATCH_SIZE = 5
BATCH_PAUSE = 0.2
TOKEN_EXPIRY_SKEW = 60
DEPARTURE_OFFSET_DAYS = 14
STAY_DAYS = 7


@dataclass(frozen=True)
class Route:
    origin: str
    destination: str
    origin_city: str
    dest_city: str


POPULAR_ROUTES: Sequence[Route] = (
    Route("JFK", "LAX", "New York", "Los Angeles"),
    Route("LAX", "SFO", "Los Angeles", "San Francisco"),
    Route("ORD", "MIA", "Chicago", "Miami"),
    Route("DFW", "LAS", "Dallas", "Las Vegas"),
    Route("ATL", "DEN", "Atlanta", "Denver"),
    Route("SEA", "PHX", "Seattle", "Phoenix"),
    Route("BOS", "ORD", "Boston", "Chicago"),
    Route("JFK", "LHR", "New York", "London"),
    Route("LAX", "NRT", "Los Angeles", "Tokyo"),
    Route("SFO", "CDG", "San Francisco", "Paris"),
    Route("MIA", "CUN", "Miami", "Cancun"),
    Route("JFK", "FCO", "New York", "Rome"),
    Route("LAX", "HNL", "Los Angeles", "Honolulu"),
    Route("ORD", "LHR", "Chicago", "London"),
    Route("DFW", "MEX", "Dallas", "Mexico City"),
    Route("ATL", "SJU", "Atlanta", "San Juan"),
    Route("SEA", "ANC", "Seattle", "Anchorage"),
    Route("BOS", "DUB", "Boston", "Dublin"),
    Route("NYC", "BCN", "New York", "Barcelona"),
    Route("LAX", "SYD", "Los Angeles", "Sydney"),
)


class AmadeusDealSource:
    """
    Live cheapest-fare lookup over a fixed list of popular routes.

    One cheapest round-trip offer is requested per route, departing two weeks
    out for a one-week stay. Routes are queried in small parallel batches with
    a short pause in between to stay under the API rate limit; a route that
    errors is skipped rather than failing the whole fetch.
    """

    def __init__(
        self,
        settings: Settings,
        http: Optional[httpx.Client] = None,
        routes: Sequence[Route] = POPULAR_ROUTES,
        clock: Callable[[], float] = time.time,
        today: Callable[[], date] = date.today,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.base_url = settings.amadeus_base_url
        self.http = http or httpx.Client(timeout=settings.request_timeout)
        self.routes = routes
        self.clock = clock
        self.today = today
        self.sleep = sleep
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    def access_token(self) -> str:
        with self._token_lock:
            now = self.clock()
            if self._token and self._token_expires_at > now + TOKEN_EXPIRY_SKEW:
                return self._token

            if not self.settings.amadeus_api_key or not self.settings.amadeus_api_secret:
                raise ConfigurationError("Amadeus credentials not configured")

            env = "PROD" if self.settings.use_prod_apis else "TEST"
            logger.info("Authenticating with Amadeus (%s)", env)
            try:
                response = self.http.post(
                    f"{self.base_url}/v1/security/oauth2/token",
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self.settings.amadeus_api_key,
                        "client_secret": self.settings.amadeus_api_secret,
                    },
                )
            except httpx.HTTPError as exc:
                logger.error("Amadeus auth request failed: %s", exc)
                raise NetworkError("Amadeus auth request failed", details=str(exc))
            if response.status_code != 200:
                raise UpstreamFetchError(f"Amadeus auth failed: {response.status_code}")

            try:
                data = response.json()
                token = data["access_token"]
                expires_in = float(data.get("expires_in", 0))
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                logger.error("Amadeus auth returned a malformed body: %s", exc)
                raise UpstreamFetchError("Amadeus auth returned a malformed token", details=str(exc))
            self._token = token
            self._token_expires_at = now + expires_in
            return self._token

    def cheapest_offer(self, token: str, route: Route, departure: date, returning: date) -> Optional[MinPriceDeal]:
        params = {
            "originLocationCode": route.origin,
            "destinationLocationCode": route.destination,
            "departureDate": departure.isoformat(),
            "returnDate": returning.isoformat(),
            "adults": "1",
            "max": "1",
            "currencyCode": "USD",
        }
        try:
            response = self.http.get(
                f"{self.base_url}/v2/shopping/flight-offers",
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            logger.warning("Offer lookup for %s-%s failed: %s", route.origin, route.destination, exc)
            return None
        if response.status_code != 200:
            logger.info("No flights for %s-%s: %s", route.origin, route.destination, response.status_code)
            return None

        try:
            return self._deal_from(response.json(), route, departure, returning)
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as exc:
            logger.warning("Malformed offer for %s-%s: %s", route.origin, route.destination, exc)
            return None

    @staticmethod
    def _deal_from(payload, route: Route, departure: date, returning: date) -> Optional[MinPriceDeal]:
        offers = payload.get("data") or []
        if not offers:
            return None

        offer = offers[0]
        carrier = offer["itineraries"][0]["segments"][0]["carrierCode"]
        price = float(offer["price"]["total"])
        carriers = (payload.get("dictionaries") or {}).get("carriers") or {}
        pricings = offer.get("travelerPricings") or [{}]
        fare_details = pricings[0].get("fareDetailsBySegment") or [{}]
        fetched_at = now_utc()
        return MinPriceDeal(
            id=f"live-{route.origin}-{route.destination}-{int(fetched_at.timestamp() * 1000)}",
            origin=route.origin,
            origin_city=route.origin_city,
            destination=route.destination,
            dest_city=route.dest_city,
            airline=carriers.get(carrier, carrier),
            airline_code=carrier,
            price=price,
            currency=offer["price"].get("currency") or "USD",
            departure_date=departure.isoformat(),
            return_date=returning.isoformat(),
            cabin_class=fare_details[0].get("cabin") or "ECONOMY",
            booking_link=(
                f"/booking?type=flight&origin={route.origin}&dest={route.destination}"
                f"&date={departure.isoformat()}&return={returning.isoformat()}"
            ),
            fetched_at=fetched_at,
        )

    def fetch_deals(self, limit: int, force_refresh: bool = False) -> DealFetch:
        token = self.access_token()
        departure = self.today() + timedelta(days=DEPARTURE_OFFSET_DAYS)
        returning = departure + timedelta(days=STAY_DAYS)

        found: List[MinPriceDeal] = []
        with ThreadPoolExecutor(max_workers=BATCH_SIZE) as pool:
            for start in range(0, len(self.routes), BATCH_SIZE):
                batch = self.routes[start:start + BATCH_SIZE]
                results = pool.map(lambda r: self.cheapest_offer(token, r, departure, returning), batch)
                found.extend(deal for deal in results if deal is not None)
                if start + BATCH_SIZE < len(self.routes):
                    self.sleep(BATCH_PAUSE)

        deals = sorted(found, key=lambda d: d.price)[:limit]
        logger.info("Fetched %d live deals from Amadeus across %d routes", len(deals), len(self.routes))
        return DealFetch(deals=deals)


class MinPriceDealService:
    """
    Server-side deal source: durable store first, live fares second, any
    published deal as the last resort.
    """

    def __init__(self, store: DealRecordStore, live: DealSource):
        self.store = store
        self.live = live

    def fetch_deals(self, limit: int, force_refresh: bool = False) -> DealFetch:
        if not force_refresh:
            stored = self.store.list_published(limit, source=LIVE_SOURCE)
            if stored:
                logger.info("Using %d stored %s deals", len(stored), LIVE_SOURCE)
                return DealFetch(deals=stored, from_store=True)

        live: List[MinPriceDeal] = []
        try:
            live = self.live.fetch_deals(limit, force_refresh=True).deals
        except (ConfigurationError, UpstreamFetchError, NetworkError) as exc:
            logger.error("Live deal fetch failed: %s", exc.message)

        if live:
            self.store.replace_source(LIVE_SOURCE, live)
            return DealFetch(deals=live)

        fallback = self.store.list_published(limit)
        if fallback:
            logger.info("Falling back to %d published deals", len(fallback))
            return DealFetch(deals=fallback, from_store=True)
        return DealFetch(deals=[], error=NO_DEALS)
