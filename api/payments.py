import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError as PydanticValidationError

from api.deps import get_converter, get_orchestrator
from booking_schemas import (
    AttemptStatusResult,
    CardPaymentArtifact,
    CheckoutRequest,
    CheckoutSessionResult,
    ConfirmRequest,
    ConfirmResult,
    ConversionResult,
    PaymentArtifact,
    PaymentStatusResult,
    QrPaymentArtifact,
    QrPaymentRequest,
    QrStatusRequest,
    UpiPaymentArtifact,
    UpiPaymentRequest,
    payment_request_adapter,
)
from payments.fx import CurrencyConverter
from txn_manager import BookingOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


@router.post("/payments-qr-generate", response_model=QrPaymentArtifact, response_model_exclude={"channel"})
def qr_generate(body: QrPaymentRequest, orchestrator: BookingOrchestrator = Depends(get_orchestrator)):
    logger.info("Generating QR payment for booking %s", body.booking_id)
    return orchestrator.initiate(body)


@router.post("/payments-upi-initiate", response_model=UpiPaymentArtifact, response_model_exclude={"channel"})
def upi_initiate(body: UpiPaymentRequest, orchestrator: BookingOrchestrator = Depends(get_orchestrator)):
    logger.info("Initiating UPI payment for booking %s from %s", body.booking_id, body.upi_id)
    return orchestrator.initiate(body)


@router.get("/payments-stripe-publishable-key", response_model=CardPaymentArtifact, response_model_exclude={"channel"})
def stripe_publishable_key(orchestrator: BookingOrchestrator = Depends(get_orchestrator)):
    return orchestrator.publishable_key()


@router.post("/payments-initiate", response_model=PaymentArtifact)
def initiate(payload: Dict[str, Any] = Body(...), orchestrator: BookingOrchestrator = Depends(get_orchestrator)):
    """Single entry point for every channel; the body is tagged by `channel`."""
    try:
        request = payment_request_adapter.validate_python(payload)
    except PydanticValidationError as exc:
        raise RequestValidationError(exc.errors())
    return orchestrator.initiate(request)


@router.post("/payments-confirm", response_model=ConfirmResult)
def confirm(body: ConfirmRequest, orchestrator: BookingOrchestrator = Depends(get_orchestrator)):
    logger.info("Confirming booking %s with transaction %s", body.booking_id, body.transaction_id)
    return orchestrator.confirm(body.booking_id, body.transaction_id, body.payment_method)


@router.post("/payments-create-checkout-session", response_model=CheckoutSessionResult)
def create_checkout_session(body: CheckoutRequest, orchestrator: BookingOrchestrator = Depends(get_orchestrator)):
    return orchestrator.start_checkout(body.booking_id)


@router.get("/payments-status/{booking_id}", response_model=PaymentStatusResult)
def payment_status(booking_id: str, orchestrator: BookingOrchestrator = Depends(get_orchestrator)):
    return orchestrator.payment_status(booking_id)


@router.post("/payments-qr-status", response_model=AttemptStatusResult, response_model_exclude_none=True)
def qr_status(body: QrStatusRequest, orchestrator: BookingOrchestrator = Depends(get_orchestrator)):
    return orchestrator.attempt_status(body.transaction_id)


@router.get("/payments-convert", response_model=ConversionResult)
def convert(
    from_currency: str = Query("USD", alias="from"),
    to: str = Query("INR"),
    amount: Optional[str] = Query(None),
    converter: CurrencyConverter = Depends(get_converter),
):
    return converter.convert(from_currency, to, amount)
