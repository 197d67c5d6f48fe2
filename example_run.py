"""
Run this script to see a full QR payment flow against an in-memory database:
 - create a pending booking
 - generate a QR payment -> booking payment_status becomes 'pending'
 - confirm with the issued transaction id -> booking becomes 'confirmed'
 - deliver the same confirmation again -> same result, nothing rewritten
 - print final results
"""

from decimal import Decimal

from config import Settings, configure_logging
from payments.channels import default_adapters
from payments.txn_ids import TransactionIdGenerator
from persistence.crud import BookingRecordStore
from persistence.db import init_db, make_engine, make_session_factory
from txn_manager import BookingOrchestrator


def build_orchestrator(settings: Settings, notifications: list) -> BookingOrchestrator:
    engine = make_engine(settings.database_url)
    init_db(engine)
    store = BookingRecordStore(make_session_factory(engine))
    return BookingOrchestrator(
        store,
        default_adapters(settings),
        TransactionIdGenerator(),
        settings,
        on_confirmed=notifications.append,
    )


def main(settings: Settings = None):
    settings = settings or Settings(database_url="sqlite://", stripe_publishable_key="pk_test_demo")
    notifications = []
    orchestrator = build_orchestrator(settings, notifications)
    store = orchestrator.store

    booking = store.create_booking(amount=Decimal("4500.00"), currency="INR", booking_type="flight")
    print(f"Created booking {booking.id}: status={booking.status}, payment_status={booking.payment_status}")

    print("\n=== QR generate ===")
    qr = orchestrator.generate_qr(booking.id, booking.amount)
    print(f"transactionId={qr.transaction_id} expiresIn={qr.expires_in}")
    print(f"upiString={qr.upi_string}")
    booking = store.require_booking(booking.id)
    print(f"Booking payment_status={booking.payment_status}")

    print("\n=== Confirm ===")
    first = orchestrator.confirm(booking.id, qr.transaction_id, "qr")
    print(first.model_dump(by_alias=True))

    print("\n=== Confirm again (replayed delivery) ===")
    second = orchestrator.confirm(booking.id, qr.transaction_id, "qr")
    print(second.model_dump(by_alias=True))

    print("\n=== Final booking result ===")
    final = store.require_booking(booking.id)
    print(f"Booking status: {final.status}, payment_status: {final.payment_status}, "
          f"transaction_id: {final.transaction_id}, version: {final.version}")
    print(f"Confirmation notifications sent: {len(notifications)}")
    return final, notifications


if __name__ == "__main__":
    configure_logging(Settings().log_level)
    main()
