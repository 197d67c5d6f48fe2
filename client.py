"""
HTTP client for the booking/payment endpoints.

Reads retry on transport errors and 5xx responses; mutations retry on
transport errors only, since a 5xx after the server acted must not be
replayed blindly. Deal listings go through a client-side DealCache whose TTL
never exceeds the server's.
"""
import logging
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import httpx

from booking_schemas import (
    AttemptStatusResult,
    CardPaymentArtifact,
    CheckoutSessionResult,
    ConfirmResult,
    ConversionResult,
    DealsResponse,
    PaymentArtifact,
    PaymentStatusResult,
    QrPaymentArtifact,
    UpiPaymentArtifact,
    payment_artifact_adapter,
)
from config import Settings
from deals.cache import DealCache, DealFetch, DealsPage
from errors import NetworkError, UpstreamFetchError, error_for_status
from retry import MUTATION_POLICY, READ_POLICY, RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


class _ServerError(Exception):
    """A 5xx on a read; retried, then surfaced through the error taxonomy."""

    def __init__(self, response: httpx.Response):
        super().__init__(f"HTTP {response.status_code}")
        self.response = response


class BookingApiClient:
    def __init__(
        self,
        base_url: str,
        settings: Optional[Settings] = None,
        http: Optional[httpx.Client] = None,
        sleep: Optional[Callable[[float], None]] = None,
        read_policy: RetryPolicy = READ_POLICY,
        mutation_policy: RetryPolicy = MUTATION_POLICY,
    ):
        self.settings = settings or Settings()
        self.http = http or httpx.Client(base_url=base_url.rstrip("/"), timeout=self.settings.request_timeout)
        self.read_policy = read_policy
        self.mutation_policy = mutation_policy
        self._retry_kwargs: Dict[str, Any] = {"sleep": sleep} if sleep is not None else {}
        self.deals = DealCache(_RemoteDealSource(self), ttl=self.settings.client_deals_ttl)

    # --- payments ---

    def generate_qr(self, booking_id: str, amount: Decimal, currency: Optional[str] = None) -> QrPaymentArtifact:
        body = {"bookingId": booking_id, "amount": str(amount)}
        if currency:
            body["currency"] = currency
        return QrPaymentArtifact.model_validate(self._mutate("/payments-qr-generate", body))

    def initiate_upi(self, booking_id: str, upi_id: str, amount: Decimal, currency: str = "INR") -> UpiPaymentArtifact:
        body = {"bookingId": booking_id, "upiId": upi_id, "amount": str(amount), "currency": currency}
        return UpiPaymentArtifact.model_validate(self._mutate("/payments-upi-initiate", body))

    def publishable_key(self) -> CardPaymentArtifact:
        return CardPaymentArtifact.model_validate(self._read("/payments-stripe-publishable-key"))

    def initiate(self, request) -> PaymentArtifact:
        """Send a channel-tagged payment request to the single initiate endpoint."""
        body = request.model_dump(by_alias=True, mode="json", exclude_none=True)
        return payment_artifact_adapter.validate_python(self._mutate("/payments-initiate", body))

    def create_checkout_session(self, booking_id: str) -> CheckoutSessionResult:
        data = self._mutate("/payments-create-checkout-session", {"bookingId": booking_id})
        return CheckoutSessionResult.model_validate(data)

    def confirm(self, booking_id: str, transaction_id: str, payment_method: Optional[str] = None) -> ConfirmResult:
        body = {"bookingId": booking_id, "transactionId": transaction_id}
        if payment_method:
            body["paymentMethod"] = payment_method
        return ConfirmResult.model_validate(self._mutate("/payments-confirm", body))

    def payment_status(self, booking_id: str) -> PaymentStatusResult:
        return PaymentStatusResult.model_validate(self._read(f"/payments-status/{booking_id}"))

    def qr_status(self, transaction_id: str) -> AttemptStatusResult:
        # a status poll changes nothing server-side, so it may retry like a read
        data = self._call("POST", "/payments-qr-status", self.read_policy, True, json={"transactionId": transaction_id})
        return AttemptStatusResult.model_validate(data)

    def convert(self, amount, from_currency: str = "USD", to_currency: str = "INR") -> ConversionResult:
        params = {"from": from_currency, "to": to_currency, "amount": str(amount)}
        return ConversionResult.model_validate(self._read("/payments-convert", params=params))

    # --- deals ---

    def min_price_deals(self, limit: int = 20, force_refresh: bool = False) -> DealsPage:
        return self.deals.get(limit, force_refresh=force_refresh)

    def fetch_min_price_deals(self, limit: int = 20, force_refresh: bool = False) -> DealsResponse:
        params: Dict[str, Any] = {"limit": limit}
        if force_refresh:
            params["refresh"] = "true"
        return DealsResponse.model_validate(self._read("/deals-min-price", params=params))

    def close(self) -> None:
        self.deals.close()
        self.http.close()

    # --- transport ---

    def _read(self, path: str, params: Optional[Dict[str, Any]] = None):
        return self._call("GET", path, self.read_policy, True, params=params)

    def _mutate(self, path: str, body: Dict[str, Any]):
        return self._call("POST", path, self.mutation_policy, False, json=body)

    def _call(self, method: str, path: str, policy: RetryPolicy, retry_server_errors: bool, **kwargs):
        def send() -> httpx.Response:
            response = self.http.request(method, path, **kwargs)
            if retry_server_errors and response.status_code >= 500:
                raise _ServerError(response)
            return response

        retry_on = (httpx.TransportError, _ServerError) if retry_server_errors else (httpx.TransportError,)
        try:
            response = call_with_retry(send, policy, retry_on, description=f"{method} {path}", **self._retry_kwargs)
        except httpx.TransportError as exc:
            raise NetworkError(f"{method} {path} failed", details=str(exc))
        except _ServerError as exc:
            response = exc.response

        if response.is_success:
            return response.json()
        raise _error_from(response)


def _error_from(response: httpx.Response):
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = body.get("error") or f"HTTP {response.status_code}"
    details = body.get("details")
    return error_for_status(response.status_code, message, details if isinstance(details, str) else None)


class _RemoteDealSource:
    def __init__(self, client: BookingApiClient):
        self.client = client

    def fetch_deals(self, limit: int, force_refresh: bool = False) -> DealFetch:
        response = self.client.fetch_min_price_deals(limit, force_refresh=force_refresh)
        if response.error and not response.deals:
            logger.error("Deals endpoint answered '%s' with no deals", response.error)
            raise UpstreamFetchError(response.error)
        return DealFetch(deals=response.deals, error=response.error, from_store=response.from_cache)
