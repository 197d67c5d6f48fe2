import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, Optional

from booking_schemas import (
    AttemptStatusResult,
    Booking,
    CardPaymentArtifact,
    CardPaymentRequest,
    CheckoutSessionResult,
    ConfirmResult,
    PaymentAttempt,
    PaymentStatusResult,
    QrPaymentArtifact,
    QrPaymentRequest,
    UpiPaymentArtifact,
    UpiPaymentRequest,
)
from config import Settings
from errors import ConfigurationError, ConflictError, ValidationError
from payments.channels import PaymentChannelAdapter
from payments.txn_ids import TransactionIdGenerator
from persistence.crud import BookingRecordStore
from utils import now_utc

logger = logging.getLogger(__name__)

# Compare-and-set rounds before a write is reported as a conflict.
MAX_WRITE_ROUNDS = 3


class BookingOrchestrator:
    """
    Drives a booking through its payment lifecycle:

        pending/none --initiate--> pending/pending --confirm--> confirmed/succeeded
                                                   --fail-----> pending/failed (retryable)

    Every state change is a compare-and-set on the booking row, so independent
    callers racing on one booking id (two tabs, a webhook and a poller) cannot
    interleave writes. A lost race re-reads the booking and decides again.
    """

    def __init__(
        self,
        store: BookingRecordStore,
        adapters: Dict[str, PaymentChannelAdapter],
        id_generator: TransactionIdGenerator,
        settings: Settings,
        checkout=None,
        clock: Callable[[], datetime] = now_utc,
        on_confirmed: Optional[Callable[[Booking], None]] = None,
    ):
        self.store = store
        self.adapters = adapters
        self.ids = id_generator
        self.settings = settings
        self.checkout = checkout
        self.clock = clock
        self.on_confirmed = on_confirmed

    # --- initiation ---

    def initiate(self, request):
        """Dispatch a channel-tagged payment request to its adapter."""
        adapter = self.adapters.get(request.channel)
        if adapter is None:
            raise ValidationError("Unsupported payment channel", details=str(request.channel))
        if not adapter.reserves_slot:
            return adapter.issue(request, None, None)

        def make_artifact(booking: Booking):
            transaction_id = self.ids.generate(adapter.prefix)
            return adapter.issue(request, booking, transaction_id), transaction_id

        currency = getattr(request, "currency", None)
        return self._reserve(
            request.booking_id,
            channel=adapter.channel,
            amount=request.amount,
            currency=currency,
            ttl=adapter.attempt_ttl,
            make_artifact=make_artifact,
            reference=adapter.payment_reference(request),
        )

    def generate_qr(self, booking_id: str, amount: Decimal, currency: Optional[str] = None) -> QrPaymentArtifact:
        return self.initiate(QrPaymentRequest(booking_id=booking_id, amount=amount, currency=currency))

    def initiate_upi(self, booking_id: str, upi_id: str, amount: Decimal, currency: str = "INR") -> UpiPaymentArtifact:
        return self.initiate(UpiPaymentRequest(booking_id=booking_id, upi_id=upi_id, amount=amount, currency=currency))

    def publishable_key(self) -> CardPaymentArtifact:
        return self.initiate(CardPaymentRequest())

    def start_checkout(self, booking_id: str) -> CheckoutSessionResult:
        """Open a hosted card checkout and reserve the booking's slot under the session id."""
        if self.checkout is None:
            raise ConfigurationError("Card checkout is not configured")

        def make_artifact(booking: Booking):
            session = self.checkout.create_session(booking)
            result = CheckoutSessionResult(checkout_url=session.url, session_id=session.id, transaction_id=session.id)
            return result, session.id

        booking = self.store.require_booking(booking_id)
        return self._reserve(
            booking_id,
            channel="card",
            amount=booking.amount,
            currency=booking.currency,
            ttl=None,
            make_artifact=make_artifact,
        )

    def _reserve(self, booking_id, channel, amount, currency, ttl, make_artifact, reference=None):
        booking = self.store.require_booking(booking_id)
        self._check_payable(booking, amount)
        artifact, transaction_id = make_artifact(booking)

        now = self.clock()
        attempt = PaymentAttempt(
            transaction_id=transaction_id,
            booking_id=booking.id,
            channel=channel,
            amount=amount,
            currency=(currency or booking.currency).upper(),
            created_at=now,
            expires_at=now + timedelta(seconds=ttl) if ttl else None,
            payment_reference=reference,
        )
        for _ in range(MAX_WRITE_ROUNDS):
            values = {
                "payment_method": channel,
                "payment_status": "pending",
                "transaction_id": transaction_id,
                "updated_at": _touch(booking, now),
            }
            if self.store.reserve_slot(booking.id, booking.version, values, attempt):
                logger.info("%s payment initiated for booking %s, transaction %s",
                            channel.upper(), booking.id, transaction_id)
                return artifact
            booking = self.store.require_booking(booking_id)
            self._check_payable(booking, amount)

        logger.error("Could not reserve %s payment for booking %s, transaction %s: concurrent writes",
                     channel, booking_id, transaction_id)
        raise ConflictError("Booking was modified concurrently", details=booking_id)

    @staticmethod
    def _check_payable(booking: Booking, amount) -> None:
        if booking.status != "pending":
            logger.warning("Payment requested for booking %s in status %s", booking.id, booking.status)
            raise ValidationError("Booking is not in pending status", details=booking.status)
        if amount is None or Decimal(str(amount)) <= 0:
            raise ValidationError("Invalid amount", details=str(amount))

    # --- settlement ---

    def confirm(self, booking_id: str, transaction_id: str, payment_method: Optional[str] = None) -> ConfirmResult:
        """
        Mark the booking paid. Repeating a confirmation that already landed
        returns the same result without writing or notifying again.
        """
        if not booking_id or not transaction_id:
            raise ValidationError("Missing required fields")

        for _ in range(MAX_WRITE_ROUNDS):
            booking = self.store.require_booking(booking_id)
            if booking.payment_status == "succeeded":
                if booking.transaction_id == transaction_id:
                    logger.info("Booking %s already confirmed with transaction %s", booking_id, transaction_id)
                    return ConfirmResult(booking_id=booking_id, transaction_id=transaction_id)
                logger.error("Rejected confirmation for booking %s: transaction %s, already paid by %s",
                             booking_id, transaction_id, booking.transaction_id)
                raise ConflictError("Booking already confirmed with a different transaction", details=transaction_id)
            if booking.status == "cancelled":
                logger.error("Rejected confirmation for cancelled booking %s, transaction %s", booking_id, transaction_id)
                raise ConflictError("Booking is cancelled", details=booking_id)
            if self.settings.strict_confirmation:
                self._check_issued(booking, transaction_id)

            now = self.clock()
            values = {
                "status": "confirmed",
                "payment_status": "succeeded",
                "transaction_id": transaction_id,
                "payment_method": payment_method or booking.payment_method,
                "confirmed_at": now,
                "updated_at": _touch(booking, now),
            }
            if self.store.settle(booking.id, booking.version, values, transaction_id, "consumed"):
                logger.info("Booking %s confirmed with transaction %s", booking_id, transaction_id)
                self._notify_confirmed(booking_id)
                return ConfirmResult(booking_id=booking_id, transaction_id=transaction_id)

        logger.error("Could not confirm booking %s with transaction %s: concurrent writes", booking_id, transaction_id)
        raise ConflictError("Booking was modified concurrently", details=booking_id)

    def _check_issued(self, booking: Booking, transaction_id: str) -> None:
        attempt = self.store.get_attempt(transaction_id)
        if attempt is None or attempt.booking_id != booking.id:
            logger.error("Rejected confirmation for booking %s: transaction %s was never issued for it",
                         booking.id, transaction_id)
            raise ConflictError("Transaction was not issued for this booking", details=transaction_id)
        if attempt.state != "pending":
            logger.error("Rejected confirmation for booking %s: transaction %s is %s",
                         booking.id, transaction_id, attempt.state)
            raise ConflictError(f"Transaction is {attempt.state}", details=transaction_id)

    def _notify_confirmed(self, booking_id: str) -> None:
        if self.on_confirmed is None:
            return
        try:
            self.on_confirmed(self.store.require_booking(booking_id))
        except Exception:
            # the booking is already confirmed; a lost notification must not undo that
            logger.exception("Confirmation notification failed for booking %s", booking_id)

    def fail_payment(self, booking_id: str, transaction_id: str, reason: Optional[str] = None) -> Booking:
        """
        Record a failed payment for the booking's current attempt. The booking
        stays pending so the traveler can start a fresh attempt.
        """
        for _ in range(MAX_WRITE_ROUNDS):
            booking = self.store.require_booking(booking_id)
            if booking.payment_status == "succeeded":
                raise ConflictError("Booking already paid", details=booking_id)
            if booking.transaction_id != transaction_id or booking.payment_status != "pending":
                logger.info("Ignoring failure of stale transaction %s for booking %s", transaction_id, booking_id)
                return booking
            now = self.clock()
            values = {"payment_status": "failed", "updated_at": _touch(booking, now)}
            if self.store.settle(booking.id, booking.version, values, transaction_id, "failed"):
                logger.warning("Payment failed for booking %s, transaction %s: %s",
                               booking_id, transaction_id, reason or "unknown reason")
                return self.store.require_booking(booking_id)

        raise ConflictError("Booking was modified concurrently", details=booking_id)

    # --- reads ---

    def payment_status(self, booking_id: str) -> PaymentStatusResult:
        booking = self.store.require_booking(booking_id)
        return PaymentStatusResult(
            booking_id=booking.id,
            status=booking.status,
            payment_status=booking.payment_status,
            payment_method=booking.payment_method,
            transaction_id=booking.transaction_id,
            amount=float(booking.amount),
            currency=booking.currency,
            confirmed_at=booking.confirmed_at,
            updated_at=booking.updated_at,
        )

    def attempt_status(self, transaction_id: str) -> AttemptStatusResult:
        if not transaction_id:
            raise ValidationError("Transaction ID is required")

        booking = self.store.get_booking_by_transaction(transaction_id)
        if booking is not None and booking.payment_status == "succeeded":
            return AttemptStatusResult(status="succeeded", booking_id=booking.id, message="Payment confirmed")

        attempt = self.store.get_attempt(transaction_id)
        if attempt is None:
            return AttemptStatusResult(status="pending", message="Payment not yet received")
        if attempt.state == "consumed":
            return AttemptStatusResult(status="succeeded", booking_id=attempt.booking_id, message="Payment confirmed")
        if attempt.state == "failed":
            return AttemptStatusResult(status="failed", booking_id=attempt.booking_id,
                                       message="Payment failed. Please try again.")
        if attempt.state == "superseded":
            return AttemptStatusResult(status="superseded", booking_id=attempt.booking_id,
                                       message="A newer payment attempt replaced this one")
        if attempt.is_expired(self.clock()):
            return AttemptStatusResult(status="expired", booking_id=attempt.booking_id,
                                       message="Payment window expired")
        return AttemptStatusResult(status="pending", booking_id=attempt.booking_id,
                                   message="Waiting for payment confirmation")


def _touch(booking: Booking, now: datetime) -> datetime:
    # updated_at never moves backwards, even if this host's clock lags the last writer's
    return max(now, booking.updated_at)
