import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

import httpx

from booking_schemas import ConversionResult
from config import Settings
from errors import NetworkError, UpstreamFetchError, ValidationError
from utils import now_utc

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
RATE_PLACES = Decimal("0.0001")


def parse_amount(raw) -> Decimal:
    try:
        amount = Decimal(str(raw))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Invalid amount", details=str(raw))
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Invalid amount", details=str(raw))
    return amount


@dataclass
class CurrencyConverter:
    """Converts amounts with the public latest-rates endpoint (base currency in the path)."""

    settings: Settings
    http: Optional[httpx.Client] = None

    def _client(self) -> httpx.Client:
        if self.http is None:
            self.http = httpx.Client(timeout=self.settings.request_timeout)
        return self.http

    def fetch_rate(self, base: str, quote: str) -> Decimal:
        url = f"{self.settings.fx_api_url.rstrip('/')}/{base}"
        try:
            response = self._client().get(url)
        except httpx.TimeoutException as exc:
            logger.error("FX rate request timed out for %s: %s", base, exc)
            raise NetworkError("Exchange rate service timed out", details=str(exc))
        except httpx.HTTPError as exc:
            logger.error("FX rate request failed for %s: %s", base, exc)
            raise UpstreamFetchError("Failed to fetch exchange rates", details=str(exc))

        if response.status_code != 200:
            logger.error("FX rate service returned %s for %s", response.status_code, base)
            raise UpstreamFetchError("Failed to fetch exchange rates", details=f"HTTP {response.status_code}")

        rate = (response.json().get("rates") or {}).get(quote)
        if not rate:
            raise UpstreamFetchError(f"Exchange rate not found for {quote}")
        return Decimal(str(rate))

    def convert(self, from_currency: str = "USD", to_currency: str = "INR", amount=None) -> ConversionResult:
        value = parse_amount(amount)
        base = (from_currency or "USD").upper()
        quote = (to_currency or "INR").upper()
        rate = self.fetch_rate(base, quote)
        converted = (value * rate).quantize(CENTS, rounding=ROUND_HALF_UP)
        return ConversionResult(
            from_currency=base,
            to=quote,
            original_amount=float(value),
            converted_amount=float(converted),
            rate=float(rate.quantize(RATE_PLACES, rounding=ROUND_HALF_UP)),
            timestamp=now_utc(),
        )
