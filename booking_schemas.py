from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator
from pydantic.alias_generators import to_camel

BookingStatus = Literal["pending", "confirmed", "failed", "cancelled"]
PaymentStatus = Literal["none", "pending", "succeeded", "failed"]
PaymentMethod = Literal["card", "upi", "qr"]
AttemptState = Literal["pending", "consumed", "superseded", "failed"]
AttemptStatus = Literal["pending", "succeeded", "failed", "expired", "superseded"]


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Booking(WireModel):
    id: str
    amount: Decimal
    currency: str                # ISO 4217
    booking_type: Optional[str] = None   # flight / hotel / car
    status: BookingStatus = "pending"
    payment_status: PaymentStatus = "none"
    payment_method: Optional[PaymentMethod] = None
    transaction_id: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    version: int = 0             # optimistic concurrency token

    @model_validator(mode="after")
    def _succeeded_implies_confirmed(self):
        if self.payment_status == "succeeded":
            if self.status != "confirmed" or not self.transaction_id:
                raise ValueError("payment_status=succeeded requires status=confirmed and a transaction_id")
        return self


class PaymentAttempt(WireModel):
    transaction_id: str
    booking_id: str
    channel: PaymentMethod
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    state: AttemptState = "pending"
    created_at: datetime
    expires_at: Optional[datetime] = None
    payment_reference: Optional[str] = None   # payer handle, e.g. the UPI id

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


# --- payment requests: a union tagged by `channel` ---

class QrPaymentRequest(WireModel):
    model_config = ConfigDict(extra="forbid")

    channel: Literal["qr"] = "qr"
    booking_id: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    currency: Optional[str] = None   # defaults to the booking's currency


class UpiPaymentRequest(WireModel):
    model_config = ConfigDict(extra="forbid")

    channel: Literal["upi"] = "upi"
    booking_id: str = Field(min_length=1)
    upi_id: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    currency: str = "INR"


class CardPaymentRequest(WireModel):
    model_config = ConfigDict(extra="forbid")

    channel: Literal["card"] = "card"


PaymentRequest = Annotated[
    Union[QrPaymentRequest, UpiPaymentRequest, CardPaymentRequest],
    Field(discriminator="channel"),
]
payment_request_adapter = TypeAdapter(PaymentRequest)


class QrPaymentArtifact(WireModel):
    channel: Literal["qr"] = "qr"
    qr_code_url: str
    transaction_id: str
    upi_string: str
    expires_in: int = 300


class UpiPaymentArtifact(WireModel):
    channel: Literal["upi"] = "upi"
    transaction_id: str


class CardPaymentArtifact(WireModel):
    channel: Literal["card"] = "card"
    publishable_key: str


PaymentArtifact = Annotated[
    Union[QrPaymentArtifact, UpiPaymentArtifact, CardPaymentArtifact],
    Field(discriminator="channel"),
]
payment_artifact_adapter = TypeAdapter(PaymentArtifact)


# --- confirmation / status ---

class ConfirmRequest(WireModel):
    booking_id: str = Field(min_length=1)
    transaction_id: str = Field(min_length=1)
    payment_method: Optional[PaymentMethod] = None


class ConfirmResult(WireModel):
    success: bool = True
    booking_id: str
    transaction_id: str


class CheckoutRequest(WireModel):
    booking_id: str = Field(min_length=1)


class CheckoutSessionResult(WireModel):
    checkout_url: str
    session_id: str
    transaction_id: str


class QrStatusRequest(WireModel):
    transaction_id: str = Field(min_length=1)


class AttemptStatusResult(WireModel):
    status: AttemptStatus
    booking_id: Optional[str] = None
    message: str


class PaymentStatusResult(WireModel):
    booking_id: str
    status: BookingStatus
    payment_status: PaymentStatus
    payment_method: Optional[PaymentMethod] = None
    transaction_id: Optional[str] = None
    amount: float
    currency: str
    confirmed_at: Optional[datetime] = None
    updated_at: datetime


class ConversionResult(WireModel):
    from_currency: str = Field(alias="from")
    to: str
    original_amount: float
    converted_amount: float
    rate: float
    timestamp: datetime


# --- deals ---

class MinPriceDeal(WireModel):
    model_config = ConfigDict(frozen=True)

    id: str
    origin: str
    origin_city: str = ""
    destination: str
    dest_city: str = ""
    airline: str
    airline_code: str = ""
    price: float
    currency: str = "USD"
    departure_date: str
    return_date: str
    cabin_class: str = "ECONOMY"
    booking_link: str
    fetched_at: Optional[datetime] = None


class DealsResponse(WireModel):
    deals: List[MinPriceDeal] = Field(default_factory=list)
    total: int = 0
    from_cache: bool = False
    fetched_at: Optional[datetime] = None
    error: Optional[str] = None
